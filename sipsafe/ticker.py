"""
Live recomputation timer.

Re-evaluates a session's BAC against the wall clock on a fixed interval so the
displayed value decays even when nothing is logged. Whoever shows the session
owns the ticker and stops it when the view goes away.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from sipsafe.session import Reading, SessionTracker

logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS = 60.0


class SessionTicker:
    def __init__(
        self,
        tracker: SessionTracker,
        interval_seconds: float = DEFAULT_TICK_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
        on_reading: Optional[Callable[[Reading], None]] = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.tracker = tracker
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.on_reading = on_reading
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._stopped = True

    @property
    def running(self) -> bool:
        return not self._stopped

    def start(self) -> None:
        with self._lock:
            if not self._stopped:
                return
            self._stopped = False
            self._schedule()
        logger.info("Session ticker started: every %.0f s", self.interval_seconds)

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def run_once(self) -> Reading:
        reading = self.tracker.tick(self.clock())
        if self.on_reading is not None:
            self.on_reading(reading)
        return reading

    def _schedule(self) -> None:
        self._timer = threading.Timer(self.interval_seconds, self._fire)
        self._timer.daemon = True
        self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            if self._stopped:
                return
        try:
            self.run_once()
        finally:
            with self._lock:
                if not self._stopped:
                    self._schedule()
