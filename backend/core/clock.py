"""
Injectable clock.

Services that compare against "now" (the mutation window, created_at and
updated_at stamps) take a Clock in their constructor instead of calling
datetime.utcnow() themselves, so tests can move time deterministically.

Times are naive UTC, matching what Motor returns for stored datetimes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as naive UTC."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock(Clock):
    """
    Test clock with controlled time.

    now() returns the same value until advance() is called.
    """

    def __init__(self, fixed_time: datetime = None):
        self._time = fixed_time or datetime(2025, 1, 1, 12, 0, 0)

    def now(self) -> datetime:
        return self._time

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self._time = self._time + timedelta(seconds=seconds, minutes=minutes)
        return self._time
