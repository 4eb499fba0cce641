"""Clock abstraction.

Every time-dependent component takes a Clock so tests can control time.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime


class Clock(ABC):
    """Source of the current UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        pass

    def timestamp(self) -> float:
        """Return the current time as POSIX seconds."""
        return self.now().timestamp()


class SystemClock(Clock):
    """Wall-clock time from the operating system."""

    def now(self) -> datetime:
        return datetime.now(UTC)
