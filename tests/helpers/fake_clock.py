"""FakeClock - controllable clock for deterministic tests.

    clock = FakeClock(datetime(2026, 1, 15, 10, 0, tzinfo=UTC))
    limiter = RateLimiter(store, clock=clock)
    clock.advance(seconds=3600)
"""

from datetime import UTC, datetime, timedelta

from kudos.clock import Clock

DEFAULT_START = datetime(2026, 1, 15, 10, 0, 0, tzinfo=UTC)


class FakeClock(Clock):
    """Clock whose time only moves when a test moves it."""

    def __init__(self, frozen_at: datetime | None = None) -> None:
        self._current_time = frozen_at or DEFAULT_START

    def now(self) -> datetime:
        return self._current_time

    def advance(self, delta: timedelta | None = None, *, seconds: float = 0) -> None:
        """Move time forward by a timedelta and/or a number of seconds."""
        if delta is not None:
            self._current_time += delta
        self._current_time += timedelta(seconds=seconds)

    def set_time(self, new_time: datetime) -> None:
        if new_time.tzinfo is None:
            raise ValueError("FakeClock requires timezone-aware datetimes")
        self._current_time = new_time
