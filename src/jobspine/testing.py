"""Test helpers for code that uses jobspine.

``ManualClock`` replaces the system clock so a scheduler can be driven
through arbitrary instants without sleeping::

    clock = ManualClock(datetime(2025, 1, 6, 12, 0, tzinfo=UTC))
    scheduler = Scheduler(registry, locks, outcomes, clock=clock)
    scheduler.run_tick().wait()
    clock.advance(minutes=5)
    scheduler.run_tick().wait()
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta

from jobspine.core.timestamps import ensure_utc, utc_now


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._now = ensure_utc(start) if start is not None else utc_now()
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, instant: datetime) -> datetime:
        with self._lock:
            self._now = ensure_utc(instant)
            return self._now

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move forward by ``delta`` or by ``timedelta(**kwargs)``."""
        step = delta if delta is not None else timedelta(**kwargs)
        with self._lock:
            self._now = self._now + step
            return self._now


__all__ = ["ManualClock"]
