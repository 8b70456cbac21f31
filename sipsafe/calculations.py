"""BAC estimation using the Widmark peak and linear elimination.

Model:
- Peak: BAC = [grams / (weight_kg * 1000 * r)] * 100
- r = 0.73 (male), 0.66 (female)
- Elimination: 0.015 BAC percentage points per hour, per drink, never
  removing more than that drink contributed
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Tuple

from sipsafe.drinks import DrinkEvent

# Distribution ratio (Widmark r)
R_MALE = 0.73
R_FEMALE = 0.66

# Elimination rate (% BAC per hour)
ELIMINATION_PER_HOUR = 0.015

LB_TO_KG = 0.453592


@dataclass(frozen=True)
class PhysiologicalProfile:
    weight_lbs: float
    sex: str  # "male" or "female"

    @property
    def weight_kg(self) -> float:
        return self.weight_lbs * LB_TO_KG

    @property
    def r(self) -> float:
        return R_MALE if self.sex == "male" else R_FEMALE

    def to_dict(self) -> dict:
        return {"weight_lbs": self.weight_lbs, "sex": self.sex}


DEFAULT_PROFILE = PhysiologicalProfile(weight_lbs=130.0, sex="female")


def resolve_profile(raw: Any) -> PhysiologicalProfile:
    """Best-effort profile from whatever the profile source returned.

    Accepts a PhysiologicalProfile, a dict with ``weight_lbs``/``weightLbs`` and
    ``sex``/``gender``, or None. Missing or unusable weight falls back to the
    default weight; anything other than "male" is treated as female.
    """
    if isinstance(raw, PhysiologicalProfile):
        weight, sex = raw.weight_lbs, raw.sex
    elif isinstance(raw, dict):
        weight = raw.get("weight_lbs", raw.get("weightLbs"))
        sex = raw.get("sex", raw.get("gender"))
    else:
        return DEFAULT_PROFILE

    try:
        weight = float(weight)
    except (TypeError, ValueError):
        weight = DEFAULT_PROFILE.weight_lbs
    if not (math.isfinite(weight) and weight > 0):
        weight = DEFAULT_PROFILE.weight_lbs
    sex = "male" if str(sex or "").strip().lower() == "male" else "female"
    return PhysiologicalProfile(weight_lbs=weight, sex=sex)


def peak_bac(ethanol_grams: float, profile: PhysiologicalProfile) -> float:
    """Immediate BAC rise (%) from a single dose of alcohol."""
    return (ethanol_grams / (profile.weight_kg * 1000.0 * profile.r)) * 100.0


def remaining_contribution(event: DrinkEvent, profile: PhysiologicalProfile, now: datetime) -> float:
    """What one drink still adds to BAC at ``now``.

    A drink stamped after ``now`` counts as just logged. A drink with no usable
    amount (negative or non-finite) contributes nothing.
    """
    peak = peak_bac(event.ethanol_grams, profile)
    if not (math.isfinite(peak) and peak > 0):
        return 0.0
    hours = max(0.0, (now - event.timestamp).total_seconds() / 3600.0)
    return peak - min(peak, hours * ELIMINATION_PER_HOUR)


def estimate_bac(events: Iterable[DrinkEvent], profile: Any, now: datetime) -> float:
    """Current BAC (%) from an unordered collection of drink events."""
    resolved = resolve_profile(profile)
    total = sum(remaining_contribution(e, resolved, now) for e in events)
    return max(0.0, total)


def hours_to_sober(bac: float) -> float:
    if bac <= 0:
        return 0.0
    return bac / ELIMINATION_PER_HOUR


def format_duration(hours: float) -> str:
    """'1H 20M', '2H' or '45M'."""
    hh = int(hours)
    mm = round((hours - hh) * 60)
    if mm == 60:
        hh, mm = hh + 1, 0
    if hh == 0:
        return f"{mm}M"
    if mm == 0:
        return f"{hh}H"
    return f"{hh}H {mm}M"


def format_time_to_sober(bac: float) -> str:
    hours = hours_to_sober(bac)
    if hours <= 0:
        return "NOW"
    return format_duration(hours)


def bac_curve(
    events: List[DrinkEvent],
    profile: Any,
    start: datetime,
    step_minutes: float = 15.0,
    max_points: Optional[int] = 96,
) -> List[Tuple[datetime, float]]:
    """(instant, bac_percent) pairs from ``start`` until BAC reaches zero."""
    if step_minutes <= 0:
        raise ValueError("step_minutes must be > 0")
    points: List[Tuple[datetime, float]] = []
    t = start
    step = timedelta(minutes=step_minutes)
    while max_points is None or len(points) < max_points:
        bac = estimate_bac(events, profile, t)
        points.append((t, round(bac, 4)))
        if bac <= 0:
            break
        t += step
    return points
