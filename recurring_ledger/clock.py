"""
Clock - injectable source of "now".

DESIGN DECISION: Nothing in the scheduler calls ``datetime.now()`` directly.
The driver receives a Clock, so cutover gating and date arithmetic can be
tested against any instant (before 4 AM IST, after it, on a leap day...).
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """
        Get the current instant.

        Implementations must return a timezone-aware datetime.
        """
        pass


class SystemClock(Clock):
    """Production clock backed by the system time (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Test clock that returns a controlled instant.

    Naive datetimes are treated as UTC.
    """

    def __init__(self, fixed_time: Optional[datetime] = None):
        self._fixed_time = _as_aware(
            fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        )

    def now(self) -> datetime:
        return self._fixed_time

    def set_time(self, time: datetime) -> None:
        """Move the clock to a specific instant."""
        self._fixed_time = _as_aware(time)

    def advance(self, delta: timedelta) -> datetime:
        """Move the clock forward and return the new instant."""
        self._fixed_time = self._fixed_time + delta
        return self._fixed_time


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
