"""
Clock abstraction.

The engine never reads wall-clock time directly so that delays can be
exercised with simulated time.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Clock:
    """Wall clock."""

    def now(self) -> datetime:
        return utcnow()


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        """Move time forward and return the new instant."""
        self._now = self._now + timedelta(seconds=seconds)
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = instant
