"""Injectable time source."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from ..db.schemas import ensure_utc


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock that only moves when told to. Used for testing."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = ensure_utc(start or datetime(2025, 1, 1, tzinfo=timezone.utc))
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float = 1.0) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds)
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = ensure_utc(value)
