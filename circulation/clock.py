"""
Injectable clock.

All date math in the engine goes through a Clock so loan periods and fines
can be tested against fixed instants. Instants are timezone-aware UTC.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Clock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return utc_now()


class FixedClock(Clock):
    """
    A clock that only moves when told to.

    Usage:
        clock = FixedClock(datetime(2024, 1, 1))
        clock.advance(days=17)
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = ensure_utc(start) if start else utc_now()

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = ensure_utc(value)

    def advance(self, **delta: float) -> datetime:
        """Move forward by timedelta keyword arguments (days=, hours=, ...)."""
        self._now = self._now + timedelta(**delta)
        return self._now
