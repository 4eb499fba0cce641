"""Tests for the fixed-window rate limiter."""

import asyncio
from datetime import UTC, datetime

import pytest

from kudos.audit.models import AuditEventCode
from kudos.audit.sink import AuditSink
from kudos.config.models.admission import RateLimitConfig, RateLimitRule
from kudos.errors import RateLimitExceededError, StoreUnavailableError, ValidationError
from kudos.ratelimit.limiter import (
    BREACH_COLLECTION,
    COUNTER_COLLECTION,
    RateLimiter,
    window_bounds,
)
from kudos.storage.stores.inmemory import InMemoryDocumentStore
from tests.helpers.fake_clock import FakeClock
from tests.helpers.stores import UnavailableStore, YieldingStore


@pytest.fixture
def limiter(store: InMemoryDocumentStore, clock: FakeClock, audit: AuditSink) -> RateLimiter:
    config = RateLimitConfig(
        limits={
            "recognition_daily": RateLimitRule(max_attempts=3, window_seconds=86400),
            "burst": RateLimitRule(max_attempts=1, window_seconds=60),
        }
    )
    return RateLimiter(store, config, clock, audit)


class TestWindowBounds:
    """Tests for window alignment."""

    def test_aligned_to_window_multiples(self) -> None:
        now = datetime(2026, 1, 15, 10, 30, 15, tzinfo=UTC)

        start, reset_at = window_bounds(now, 3600)

        assert start == datetime(2026, 1, 15, 10, 0, tzinfo=UTC)
        assert reset_at == datetime(2026, 1, 15, 11, 0, tzinfo=UTC)


class TestIsLimited:
    """Admission, rejection, and reset of a single window."""

    @pytest.mark.asyncio
    async def test_admits_up_to_limit_then_rejects(self, limiter: RateLimiter) -> None:
        results = [await limiter.is_limited("user-1", 3, 3600) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[-1].count == 3
        assert results[-1].retry_after == 3600

    @pytest.mark.asyncio
    async def test_rejected_calls_do_not_increment(
        self, limiter: RateLimiter, store: InMemoryDocumentStore
    ) -> None:
        for _ in range(6):
            await limiter.is_limited("user-1", 2, 3600)

        counters = await store.find(COUNTER_COLLECTION)
        assert len(counters) == 1
        assert counters[0].data["count"] == 2

    @pytest.mark.asyncio
    async def test_new_window_starts_fresh(self, limiter: RateLimiter, clock: FakeClock) -> None:
        await limiter.is_limited("user-1", 1, 3600)
        assert (await limiter.is_limited("user-1", 1, 3600)).allowed is False

        clock.advance(seconds=3600)

        result = await limiter.is_limited("user-1", 1, 3600)
        assert result.allowed is True
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_subjects_are_independent(self, limiter: RateLimiter) -> None:
        await limiter.is_limited("user-1", 1, 3600)
        assert (await limiter.is_limited("user-2", 1, 3600)).allowed is True

    @pytest.mark.asyncio
    async def test_rejects_non_positive_limits(self, limiter: RateLimiter) -> None:
        with pytest.raises(ValidationError):
            await limiter.is_limited("user-1", 0, 3600)

    @pytest.mark.asyncio
    async def test_breach_is_recorded_and_audited(
        self, limiter: RateLimiter, store: InMemoryDocumentStore, audit: AuditSink
    ) -> None:
        await limiter.is_limited("user-1", 1, 3600, limit_type="burst")
        await limiter.is_limited("user-1", 1, 3600, limit_type="burst")

        breaches = await store.find(BREACH_COLLECTION)
        events = await audit.list_events(AuditEventCode.RATE_LIMIT_BREACH)
        assert len(breaches) == 1
        assert breaches[0].data["limit_type"] == "burst"
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_concurrent_calls_never_exceed_limit(
        self, racing_store: YieldingStore, clock: FakeClock
    ) -> None:
        limiter = RateLimiter(racing_store, RateLimitConfig(), clock, cas_max_attempts=50)

        results = await asyncio.gather(
            *(limiter.is_limited("user-1", 5, 3600) for _ in range(12))
        )

        assert sum(r.allowed for r in results) == 5

    @pytest.mark.asyncio
    async def test_store_outage_fails_closed(self, clock: FakeClock) -> None:
        limiter = RateLimiter(UnavailableStore(), RateLimitConfig(), clock)
        with pytest.raises(StoreUnavailableError):
            await limiter.is_limited("user-1", 5, 3600)


class TestNamedLimits:
    """check() and enforce() over configured limit types."""

    @pytest.mark.asyncio
    async def test_check_uses_configured_rule(self, limiter: RateLimiter) -> None:
        result = await limiter.check("user-1", "recognition_daily")

        assert result.limit == 3
        assert result.limit_type == "recognition_daily"
        assert result.reset_at == datetime(2026, 1, 16, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_unknown_limit_type(self, limiter: RateLimiter) -> None:
        with pytest.raises(ValidationError):
            await limiter.check("user-1", "nope")

    @pytest.mark.asyncio
    async def test_enforce_raises_with_retry_metadata(self, limiter: RateLimiter) -> None:
        for _ in range(3):
            await limiter.enforce("user-1", ["recognition_daily"])

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.enforce("user-1", ["recognition_daily"])

        error = exc_info.value
        assert error.status_code == 429
        assert error.remaining == 0
        assert error.limit_type == "recognition_daily"
        assert error.reset_at == datetime(2026, 1, 16, tzinfo=UTC)
        assert error.retry_after == 14 * 3600

    @pytest.mark.asyncio
    async def test_enforce_rejection_spends_no_other_slot(
        self, limiter: RateLimiter, audit: AuditSink
    ) -> None:
        await limiter.enforce("user-1", ["recognition_daily", "burst"])

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.enforce("user-1", ["recognition_daily", "burst"])

        assert exc_info.value.limit_type == "burst"
        assert exc_info.value.retry_after == 60
        daily = await limiter.status("recognition_daily:user-1", 3, 86400)
        assert daily.count == 1
        breaches = await audit.list_events(AuditEventCode.RATE_LIMIT_BREACH)
        assert len(breaches) == 1

    @pytest.mark.asyncio
    async def test_disabled_limiter_admits_everything(
        self, store: InMemoryDocumentStore, clock: FakeClock
    ) -> None:
        limiter = RateLimiter(store, RateLimitConfig(enabled=False), clock)
        assert await limiter.enforce("user-1", ["recognition_daily"]) == []
        assert await store.find(COUNTER_COLLECTION) == []


class TestMaintenance:
    """status(), reset(), and sweep_expired()."""

    @pytest.mark.asyncio
    async def test_status_does_not_count(self, limiter: RateLimiter) -> None:
        await limiter.is_limited("user-1", 3, 3600)

        first = await limiter.status("user-1", 3, 3600)
        second = await limiter.status("user-1", 3, 3600)

        assert first.count == second.count == 1
        assert first.remaining == 2

    @pytest.mark.asyncio
    async def test_reset_clears_current_window(self, limiter: RateLimiter) -> None:
        await limiter.is_limited("user-1", 1, 3600)

        assert await limiter.reset("user-1", 3600) is True
        assert (await limiter.is_limited("user-1", 1, 3600)).allowed is True

    @pytest.mark.asyncio
    async def test_sweep_deletes_ended_windows(
        self, limiter: RateLimiter, store: InMemoryDocumentStore, clock: FakeClock
    ) -> None:
        await limiter.is_limited("user-1", 3, 60)
        clock.advance(seconds=60)
        await limiter.is_limited("user-2", 3, 60)

        assert await limiter.sweep_expired() == 1
        remaining = await store.find(COUNTER_COLLECTION)
        assert [doc.data["subject_key"] for doc in remaining] == ["user-2"]
