"""
Consumption analytics over historical drink logs.

Records are counted into zero-filled time buckets (hour of day, calendar day or
calendar month, depending on the range) and compared with the equally long
period just before the range. The bucketing does not care where the records
came from: AnalyticsService asks a remote aggregation first and recomputes
locally from the raw log list when that is unavailable.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from sipsafe import drinks
from sipsafe.errors import AnalyticsUnavailable, CollaboratorError

logger = logging.getLogger(__name__)

RANGES = ("1d", "1w", "1m", "1y", "all")
DEFAULT_RANGE = "1w"
DAYS_BY_RANGE = {"1w": 7, "1m": 30}
TRAILING_MONTHS = 12
FALLBACK_LOG_LIMIT = 500
TOP_DRINKS = 5

WEEKDAY_ABBR = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


@dataclass(frozen=True)
class DrinkLogRecord:
    """One durable drink log as the log source returns it."""

    created_at: datetime
    volume_ml: Optional[float] = None
    abv_percent: Optional[float] = None
    pure_alcohol_ml: Optional[float] = None
    drink_name: str = ""
    estimated_bac_contribution: float = 0.0

    @property
    def alcohol_ml(self) -> float:
        if self.pure_alcohol_ml is not None:
            return self.pure_alcohol_ml
        if self.volume_ml is not None and self.abv_percent is not None:
            return drinks.pure_alcohol_ml(self.volume_ml, self.abv_percent)
        return 0.0

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> DrinkLogRecord:
        """Accepts snake_case or camelCase keys; timestamps as datetime or ISO text."""
        created = _first(raw, "created_at", "createdAt", "timestamp")
        if created is None:
            raise ValueError("drink log record has no created_at")
        return cls(
            created_at=parse_instant(created),
            volume_ml=_float_or_none(_first(raw, "volume_ml", "volumeMl")),
            abv_percent=_float_or_none(_first(raw, "abv_percent", "abvPercent", "abv")),
            pure_alcohol_ml=_float_or_none(_first(raw, "pure_alcohol_ml", "pureAlcoholMl")),
            drink_name=str(_first(raw, "drink_name", "drinkName") or ""),
            estimated_bac_contribution=_float_or_none(
                _first(raw, "estimated_bac_contribution", "estimatedBacContribution")
            ) or 0.0,
        )

    @classmethod
    def from_event(cls, event: drinks.DrinkEvent) -> DrinkLogRecord:
        return cls(
            created_at=event.timestamp,
            volume_ml=event.volume_ml,
            abv_percent=event.abv_percent,
            pure_alcohol_ml=event.ethanol_grams / drinks.ETHANOL_DENSITY,
            drink_name=event.label,
        )


@dataclass
class AnalyticsBucket:
    label: str
    date_key: str
    count: int = 0
    pure_alcohol_ml: float = 0.0

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "date_key": self.date_key,
            "count": self.count,
            "pure_alcohol_ml": round(self.pure_alcohol_ml, 2),
        }


@dataclass(frozen=True)
class AnalyticsResult:
    range: str
    buckets: List[AnalyticsBucket]
    total_drinks: int
    total_pure_alcohol_ml: float
    direction: str
    current_period_drinks: int
    previous_period_drinks: int
    avg_hours_between_drinks: float
    longest_gap_hours: float
    source: str = "local"

    def to_dict(self) -> dict:
        return {
            "range": self.range,
            "source": self.source,
            "buckets": [b.to_dict() for b in self.buckets],
            "totals": {
                "total_drinks": self.total_drinks,
                "total_pure_alcohol_ml": round(self.total_pure_alcohol_ml, 2),
            },
            "trends": {
                "direction": self.direction,
                "current_period_drinks": self.current_period_drinks,
                "previous_period_drinks": self.previous_period_drinks,
                "avg_hours_between_drinks": self.avg_hours_between_drinks,
                "longest_gap_hours": self.longest_gap_hours,
            },
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], range_key: str = DEFAULT_RANGE) -> AnalyticsResult:
        """Inverse of to_dict; raises KeyError/TypeError/ValueError on a malformed payload."""
        totals = raw["totals"]
        trends = raw["trends"]
        return cls(
            range=str(raw.get("range", range_key)),
            buckets=[
                AnalyticsBucket(
                    label=str(b["label"]),
                    date_key=str(b["date_key"]),
                    count=int(b["count"]),
                    pure_alcohol_ml=float(b["pure_alcohol_ml"]),
                )
                for b in raw["buckets"]
            ],
            total_drinks=int(totals["total_drinks"]),
            total_pure_alcohol_ml=float(totals["total_pure_alcohol_ml"]),
            direction=str(trends["direction"]),
            current_period_drinks=int(trends["current_period_drinks"]),
            previous_period_drinks=int(trends["previous_period_drinks"]),
            avg_hours_between_drinks=float(trends["avg_hours_between_drinks"]),
            longest_gap_hours=float(trends["longest_gap_hours"]),
            source=str(raw.get("source", "remote")),
        )


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime  # exclusive
    unit: str  # "hour", "day" or "month"
    bucket_keys: List[str] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)


def normalize_range(raw: Optional[str]) -> str:
    key = (raw or DEFAULT_RANGE).strip().lower()
    if key not in RANGES:
        raise ValueError(f"range must be one of {', '.join(RANGES)}")
    return key


def window_for(range_key: str, now: datetime) -> Window:
    """Window bounds and the full, ordered bucket key list for a range.

    "all" deliberately spans the same trailing twelve months as "1y".
    """
    range_key = normalize_range(range_key)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if range_key == "1d":
        hour_start = now.replace(minute=0, second=0, microsecond=0)
        return Window(
            start=now - timedelta(hours=24),
            end=hour_start + timedelta(hours=1),
            unit="hour",
            bucket_keys=[str(h) for h in range(24)],
            labels=[f"{h}:00" for h in range(24)],
        )

    if range_key in DAYS_BY_RANGE:
        days = DAYS_BY_RANGE[range_key]
        start = midnight - timedelta(days=days - 1)
        day_list = [(start + timedelta(days=i)).date() for i in range(days)]
        return Window(
            start=start,
            end=midnight + timedelta(days=1),
            unit="day",
            bucket_keys=[d.isoformat() for d in day_list],
            labels=[WEEKDAY_ABBR[d.weekday()] for d in day_list],
        )

    first_of_month = midnight.replace(day=1)
    months = [_add_months(first_of_month, -i) for i in range(TRAILING_MONTHS - 1, -1, -1)]
    return Window(
        start=months[0],
        end=_add_months(first_of_month, 1),
        unit="month",
        bucket_keys=[_month_key(m) for m in months],
        labels=[f"{MONTH_ABBR[m.month - 1]} {m.year % 100:02d}" for m in months],
    )


def get_analytics(range_key: str, historical: Iterable[Any], now: datetime) -> AnalyticsResult:
    """Bucketed series, totals and trends for ``range_key`` ending at ``now``."""
    range_key = normalize_range(range_key)
    window = window_for(range_key, now)
    records = [_coerce(r) for r in historical]
    times = [(align_instant(r.created_at, now), r) for r in records]

    buckets = {
        key: AnalyticsBucket(label=label, date_key=key)
        for key, label in zip(window.bucket_keys, window.labels)
    }
    in_window = [(t, r) for t, r in times if window.start <= t < window.end]
    for t, record in in_window:
        bucket = buckets[_bucket_key(t, window.unit)]
        bucket.count += 1
        bucket.pure_alcohol_ml += record.alcohol_ml

    ordered = sorted(buckets.values(), key=lambda b: _sort_key(b.date_key, window.unit))

    period = now - window.start
    previous_start = window.start - period
    previous = sum(1 for t, _ in times if previous_start <= t < window.start)

    total = len(in_window)
    if total > previous:
        direction = "up"
    elif total < previous:
        direction = "down"
    else:
        direction = "same"

    stamps = sorted(t for t, _ in in_window)
    gaps = [(b - a).total_seconds() / 3600.0 for a, b in zip(stamps, stamps[1:])]
    avg_gap = sum(gaps) / len(gaps) if gaps else 0.0
    longest_gap = max(gaps) if gaps else 0.0

    return AnalyticsResult(
        range=range_key,
        buckets=ordered,
        total_drinks=total,
        total_pure_alcohol_ml=sum(r.alcohol_ml for _, r in in_window),
        direction=direction,
        current_period_drinks=total,
        previous_period_drinks=previous,
        avg_hours_between_drinks=_round1(avg_gap),
        longest_gap_hours=_round1(longest_gap),
    )


def summary_stats(historical: Iterable[Any], now: datetime) -> dict:
    """Dashboard totals: today since midnight, the trailing week, and the most logged drinks."""
    records = [_coerce(r) for r in historical]
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = midnight - timedelta(days=7)

    today = [r for r in records if align_instant(r.created_at, now) >= midnight]
    week = [r for r in records if align_instant(r.created_at, now) >= week_start]
    names = Counter(r.drink_name for r in records if r.drink_name)

    return {
        "today": {
            "total_drinks": len(today),
            "total_pure_alcohol_ml": round(sum(r.alcohol_ml for r in today), 2),
            "total_bac": round(sum(r.estimated_bac_contribution for r in today), 4),
        },
        "week": {
            "total_drinks": len(week),
            "total_pure_alcohol_ml": round(sum(r.alcohol_ml for r in week), 2),
        },
        "favorite_drinks": [{"name": n, "count": c} for n, c in names.most_common(TOP_DRINKS)],
    }


class AnalyticsService:
    """Remote aggregation when it answers, local bucketing over raw logs otherwise."""

    def __init__(
        self,
        list_logs: Callable[[int, Optional[datetime]], Iterable[Any]],
        remote: Optional[Callable[[str], AnalyticsResult]] = None,
        fallback_limit: int = FALLBACK_LOG_LIMIT,
    ) -> None:
        self.list_logs = list_logs
        self.remote = remote
        self.fallback_limit = fallback_limit

    def get(self, range_key: str, now: datetime) -> AnalyticsResult:
        range_key = normalize_range(range_key)
        if self.remote is not None:
            try:
                return replace(self.remote(range_key), source="remote")
            except CollaboratorError as exc:
                logger.warning("Remote analytics unavailable (%s); computing locally", exc.reason)

        window = window_for(range_key, now)
        since = window.start - (now - window.start)
        try:
            records = list(self.list_logs(self.fallback_limit, since))
        except CollaboratorError as exc:
            logger.warning("Drink log listing failed: %s", exc.reason)
            raise AnalyticsUnavailable(exc.reason) from exc
        return get_analytics(range_key, records, now)


# ── Time helpers ────────────────────────────────────────────────────────────


def parse_instant(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def align_instant(ts: datetime, now: datetime) -> datetime:
    """Express ``ts`` in the same clock as ``now`` (aware or naive local)."""
    if now.tzinfo is None:
        if ts.tzinfo is None:
            return ts
        return ts.astimezone().replace(tzinfo=None)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=now.tzinfo)
    return ts.astimezone(now.tzinfo)


def _add_months(d: datetime, months: int) -> datetime:
    index = d.year * 12 + (d.month - 1) + months
    return d.replace(year=index // 12, month=index % 12 + 1)


def _month_key(d: datetime) -> str:
    return f"{d.year}-{d.month:02d}"


def _bucket_key(ts: datetime, unit: str) -> str:
    if unit == "hour":
        return str(ts.hour)
    if unit == "day":
        return ts.date().isoformat()
    return _month_key(ts)


def _sort_key(key: str, unit: str):
    # hour keys are bare numbers and would sort "10" before "2" as text
    return (int(key), "") if unit == "hour" else (0, key)


def _round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def _coerce(record: Any) -> DrinkLogRecord:
    if isinstance(record, DrinkLogRecord):
        return record
    if isinstance(record, drinks.DrinkEvent):
        return DrinkLogRecord.from_event(record)
    return DrinkLogRecord.from_dict(record)


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _float_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
