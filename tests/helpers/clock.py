"""Controllable clock for time-dependent queue behaviour."""

import threading
from datetime import datetime, timedelta, timezone


class FakeClock:
    """Callable returning a fixed UTC time that tests move forward explicitly."""

    def __init__(self, start: datetime = datetime(2025, 3, 9, 10, 0, 0, tzinfo=timezone.utc)):
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds, **kwargs)
            return self._now
