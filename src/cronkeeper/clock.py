"""Time sources for the reconciler.

The reconciler never reads the wall clock directly; it asks the clock it
was constructed with. Tests use FakeClock to replay schedules
deterministically.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Something that knows the current time."""

    def now(self) -> datetime:
        ...


class RealClock:
    """Clock backed by the system time (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FakeClock:
    """Clock that only moves when told to.

    Example:
        clock = FakeClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(timedelta(minutes=5))
    """

    def __init__(self, now: datetime) -> None:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        """Jump to an absolute time."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        self._now = now

    def advance(self, delta: timedelta) -> datetime:
        """Move the clock forward and return the new time."""
        self._now = self._now + delta
        return self._now
