"""
Clock -- injectable time source.

Audit timestamps, draft save times and migration records are all stamped
from a Clock passed in at construction.  Nothing in the kernel reads the
wall clock directly.
"""

import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

DEFAULT_TEST_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        """UTC calendar date of ``now()``."""
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock frozen at a chosen instant; moves only when told to.

    Safe to share between worker threads in tests.
    """

    def __init__(self, start: datetime = DEFAULT_TEST_START):
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._current = start.astimezone(timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds``; returns the new time."""
        with self._lock:
            self._current += timedelta(seconds=seconds)
            return self._current
