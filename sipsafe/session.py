"""
Drinking session: the live drink list, its BAC, and the side effects fired
when the safety zone changes.

One SessionTracker per active session. Every mutation recomputes BAC against
an injected ``now``; a hydration nudge fires on every third logged drink and
the emergency alert fires at most once per session, on entering DANGER.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sipsafe import calculations
from sipsafe.drinks import STANDARD_DRINK_GRAMS, DrinkEvent
from sipsafe.errors import CollaboratorError, CollaboratorResult
from sipsafe.zones import Zone, classify, zone_payload

logger = logging.getLogger(__name__)

HYDRATION_EVERY_N_DRINKS = 3


@dataclass
class SessionState:
    started_at: datetime
    events: List[DrinkEvent] = field(default_factory=list)  # newest first
    current_bac: float = 0.0
    last_zone: Zone = Zone.SOBER
    water_nudge_counter: int = 0
    hydration_nudge_pending: bool = False
    auto_alert_sent: bool = False
    active: bool = True


@dataclass(frozen=True)
class Reading:
    bac: float
    zone: Zone
    previous_zone: Zone
    emergency_alert: bool = False

    @property
    def zone_changed(self) -> bool:
        return self.zone != self.previous_zone


@dataclass(frozen=True)
class DrinkOutcome:
    logged: bool
    reading: Reading
    event: Optional[DrinkEvent] = None
    hydration_nudge: bool = False
    verification: Any = None
    persisted: Optional[CollaboratorResult] = None
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "logged": self.logged,
            "reason": self.reason or None,
            "bac": round(self.reading.bac, 4),
            **zone_payload(self.reading.bac),
            "zone_changed": self.reading.zone_changed,
            "hydration_nudge": self.hydration_nudge,
            "emergency_alert": self.reading.emergency_alert,
            "event": self.event.to_dict() if self.event else None,
            "verification": self.verification.to_dict() if self.verification is not None else None,
            "persisted": self.persisted.to_dict() if self.persisted is not None else None,
        }


class SessionTracker:
    """Owns one SessionState; safe to drive from a timer thread and request handlers at once."""

    def __init__(
        self,
        profile: Any = None,
        now: Optional[datetime] = None,
        recorder: Optional[Callable[[DrinkEvent], Any]] = None,
        verifier: Any = None,
        on_hydration_nudge: Optional[Callable[[int], None]] = None,
        on_emergency_alert: Optional[Callable[[float], None]] = None,
        on_zone_change: Optional[Callable[[Zone, Zone], None]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._lock = threading.RLock()
        self.clock = clock
        self.profile = calculations.resolve_profile(profile)
        self.recorder = recorder
        self.verifier = verifier
        self.on_hydration_nudge = on_hydration_nudge
        self.on_emergency_alert = on_emergency_alert
        self.on_zone_change = on_zone_change
        self.state = SessionState(started_at=now or clock())

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def start_session(self, now: Optional[datetime] = None, profile: Any = None) -> None:
        """Clear drinks and guards; a fresh profile is picked up here."""
        with self._lock:
            if profile is not None:
                self.profile = calculations.resolve_profile(profile)
            self.state = SessionState(started_at=now or self.clock())
        logger.info("Session started at %s", self.state.started_at.isoformat())

    def end_session(self, now: Optional[datetime] = None) -> None:
        self.start_session(now)

    # ── Mutations ───────────────────────────────────────────────────────────

    def log_drink(self, event: DrinkEvent, now: Optional[datetime] = None) -> DrinkOutcome:
        now = now or self.clock()
        with self._lock:
            bac_at_log = calculations.estimate_bac([event, *self.state.events], self.profile, now)
            event = replace(event, bac_at_log=bac_at_log)
            self.state.events.insert(0, event)
            self.state.water_nudge_counter += 1
            reading = self._recompute(now)
            nudge = (
                self.state.water_nudge_counter % HYDRATION_EVERY_N_DRINKS == 0
                and reading.zone != Zone.DANGER
            )
            if nudge:
                self.state.hydration_nudge_pending = True
            counter = self.state.water_nudge_counter

        self._emit(reading)
        if nudge:
            logger.info("Hydration nudge after %d drinks", counter)
            self._notify(self.on_hydration_nudge, counter)
        return DrinkOutcome(
            logged=True,
            reading=reading,
            event=event,
            hydration_nudge=nudge,
            persisted=self._persist(event),
        )

    def log_verified_drink(
        self,
        event: DrinkEvent,
        photo: str,
        now: Optional[datetime] = None,
        cancel: Optional[threading.Event] = None,
        mime_type: str = "image/jpeg",
    ) -> DrinkOutcome:
        """Log ``event`` only if the photo verifier allows it.

        The lock is not held while the verifier runs, so ticks and other
        mutations proceed. Rejection, verifier failure, or a set ``cancel``
        leave the session untouched.
        """
        if self.verifier is None:
            return DrinkOutcome(logged=False, reading=self.tick(now), reason="verification unavailable")
        try:
            result = self.verifier.verify(photo, event.label, mime_type=mime_type)
        except CollaboratorError as exc:
            logger.warning("Drink verification failed: %s", exc.reason)
            return DrinkOutcome(logged=False, reading=self.tick(now), reason=exc.reason)

        if cancel is not None and cancel.is_set():
            return DrinkOutcome(logged=False, reading=self.tick(now), verification=result, reason="cancelled")
        if not result.allowed:
            logger.info("Drink %r rejected by verification: %s", event.label, result.summary)
            return DrinkOutcome(logged=False, reading=self.tick(now), verification=result, reason="rejected")

        now = now or self.clock()
        outcome = self.log_drink(replace(event, timestamp=now), now)
        return replace(outcome, verification=result)

    def remove_drink(self, event_id: str, now: Optional[datetime] = None) -> Optional[Reading]:
        """Drop a drink by id. Guards and the nudge counter are left as they are."""
        now = now or self.clock()
        with self._lock:
            remaining = [e for e in self.state.events if e.id != event_id]
            if len(remaining) == len(self.state.events):
                return None
            self.state.events = remaining
            reading = self._recompute(now)
        self._emit(reading)
        return reading

    def tick(self, now: Optional[datetime] = None) -> Reading:
        now = now or self.clock()
        with self._lock:
            reading = self._recompute(now)
        self._emit(reading)
        return reading

    def dismiss_hydration_nudge(self) -> None:
        with self._lock:
            self.state.hydration_nudge_pending = False
            self.state.water_nudge_counter = 0

    # ── Views ───────────────────────────────────────────────────────────────

    @property
    def events(self) -> List[DrinkEvent]:
        with self._lock:
            return list(self.state.events)

    def snapshot(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or self.clock()
        reading = self.tick(now)
        with self._lock:
            events = list(self.state.events)
            state = self.state
            elapsed_h = max(0.0, (now - state.started_at).total_seconds() / 3600.0)
            return {
                "started_at": state.started_at.isoformat(),
                "session_elapsed": calculations.format_duration(elapsed_h),
                "bac": round(reading.bac, 4),
                **zone_payload(reading.bac),
                "hours_to_sober": round(calculations.hours_to_sober(reading.bac), 2),
                "time_to_sober": calculations.format_time_to_sober(reading.bac),
                "drink_count": len(events),
                "total_standard_drinks": round(sum(e.ethanol_grams for e in events) / STANDARD_DRINK_GRAMS, 2),
                "events": [e.to_dict() for e in events],
                "hydration_nudge": state.hydration_nudge_pending,
                "auto_alert_sent": state.auto_alert_sent,
                "profile": self.profile.to_dict(),
            }

    # ── Internals ───────────────────────────────────────────────────────────

    def _recompute(self, now: datetime) -> Reading:
        state = self.state
        bac = calculations.estimate_bac(state.events, self.profile, now)
        zone = classify(bac)
        previous = state.last_zone
        state.current_bac = bac
        state.last_zone = zone
        alert = zone == Zone.DANGER and not state.auto_alert_sent and bool(state.events)
        if alert:
            state.auto_alert_sent = True
        return Reading(bac=bac, zone=zone, previous_zone=previous, emergency_alert=alert)

    def _emit(self, reading: Reading) -> None:
        if reading.zone_changed:
            logger.info("BAC zone %s -> %s (%.3f)", reading.previous_zone.value, reading.zone.value, reading.bac)
            self._notify(self.on_zone_change, reading.previous_zone, reading.zone)
        if reading.emergency_alert:
            logger.warning("Entered DANGER zone at BAC %.3f; raising emergency alert", reading.bac)
            self._notify(self.on_emergency_alert, reading.bac)

    def _persist(self, event: DrinkEvent) -> Optional[CollaboratorResult]:
        if self.recorder is None:
            return None
        try:
            return CollaboratorResult.success(self.recorder(event))
        except CollaboratorError as exc:
            logger.warning("Could not persist drink %s: %s", event.id, exc.reason)
            return CollaboratorResult.failure(exc.reason)
        except Exception as exc:
            # the drink is already in the session; storage trouble must not undo it
            logger.exception("Recorder failed for drink %s", event.id)
            return CollaboratorResult.failure(f"{type(exc).__name__}: {exc}")

    @staticmethod
    def _notify(listener: Optional[Callable[..., Any]], *args: Any) -> None:
        if listener is None:
            return
        try:
            listener(*args)
        except Exception:
            logger.exception("Session listener %r failed", listener)


class SessionRegistry:
    """Trackers keyed by client id, shared by whatever serves those clients."""

    def __init__(self, factory: Callable[[str], SessionTracker]) -> None:
        self._factory = factory
        self._trackers: Dict[str, SessionTracker] = {}
        self._lock = threading.Lock()

    def get(self, client_id: str) -> SessionTracker:
        with self._lock:
            tracker = self._trackers.get(client_id)
            if tracker is None:
                tracker = self._factory(client_id)
                self._trackers[client_id] = tracker
            return tracker

    def drop(self, client_id: str) -> None:
        with self._lock:
            self._trackers.pop(client_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._trackers)
