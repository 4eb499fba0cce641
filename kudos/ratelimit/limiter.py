"""Fixed-window rate limiter backed by the document store.

Each (subject, window) pair has one counter document incremented with a
compare-and-set loop. A call that would push the count past the limit is
rejected without incrementing, so the stored count never exceeds the
limit. Windows are aligned to multiples of the window length, which
allows a burst of up to twice the limit across a boundary.
"""

import math
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from kudos.audit.models import AuditEventCode
from kudos.audit.sink import AuditSink
from kudos.clock import Clock, SystemClock
from kudos.config.models.admission import RateLimitConfig
from kudos.errors import (
    ConcurrencyConflictError,
    RateLimitExceededError,
    StoreUnavailableError,
    ValidationError,
)
from kudos.observability.logging import get_logger
from kudos.observability.metrics import ADMISSION_DECISIONS, RATE_LIMIT_BREACHES
from kudos.ratelimit.models import RateLimitBreach, RateLimitCounter, RateLimitResult
from kudos.storage.atomic import compare_and_set
from kudos.storage.store import DocumentStore

logger = get_logger(__name__)

COUNTER_COLLECTION = "rate_limit_counters"
BREACH_COLLECTION = "rate_limit_breaches"


def window_bounds(now: datetime, window_seconds: int) -> tuple[datetime, datetime]:
    """Return (window_start, reset_at) for the fixed window containing now."""
    start_ts = math.floor(now.timestamp() / window_seconds) * window_seconds
    window_start = datetime.fromtimestamp(start_ts, UTC)
    return window_start, window_start + timedelta(seconds=window_seconds)


class RateLimiter:
    """Per-subject fixed-window rate limiter.

    Store failures propagate as StoreUnavailableError: an unreachable
    counter never admits a call.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: RateLimitConfig | None = None,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        cas_max_attempts: int = 8,
    ) -> None:
        self._store = store
        self._config = config or RateLimitConfig()
        self._clock = clock or SystemClock()
        self._audit = audit
        self._cas_max_attempts = cas_max_attempts

    @staticmethod
    def _counter_id(subject_key: str, window_start: datetime) -> str:
        return f"{subject_key}:{int(window_start.timestamp())}"

    async def is_limited(
        self,
        subject_key: str,
        limit: int,
        window_seconds: int,
        limit_type: str = "custom",
    ) -> RateLimitResult:
        """Count one call against a subject's current window.

        Args:
            subject_key: Who is being limited (e.g. "recognition_daily:user-1")
            limit: Maximum admitted calls per window
            window_seconds: Window length
            limit_type: Label recorded on counters and breaches

        Returns:
            RateLimitResult; allowed is False when the call was rejected

        Raises:
            StoreUnavailableError: If the counter cannot be read or written
            ConcurrencyConflictError: If the increment kept losing races
        """
        if limit <= 0 or window_seconds <= 0:
            raise ValidationError("limit and window_seconds must be positive")

        now = self._clock.now()
        window_start, reset_at = window_bounds(now, window_seconds)
        counter_id = self._counter_id(subject_key, window_start)
        decision: dict[str, Any] = {}

        def mutate(current: dict[str, Any] | None) -> dict[str, Any] | None:
            if current is None:
                counter = RateLimitCounter(
                    subject_key=subject_key,
                    limit_type=limit_type,
                    window_start=window_start,
                    limit=limit,
                    reset_at=reset_at,
                )
            else:
                counter = RateLimitCounter.model_validate(current)

            if counter.count + 1 > limit:
                decision["allowed"] = False
                decision["count"] = counter.count
                return None

            counter.count += 1
            counter.limit = limit
            decision["allowed"] = True
            decision["count"] = counter.count
            return counter.model_dump(mode="json")

        await compare_and_set(
            self._store,
            COUNTER_COLLECTION,
            counter_id,
            mutate,
            max_attempts=self._cas_max_attempts,
        )

        allowed = decision["allowed"]
        count = decision["count"]
        result = RateLimitResult(
            allowed=allowed,
            limit=limit,
            count=count,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            retry_after=None if allowed else max(1, math.ceil((reset_at - now).total_seconds())),
            limit_type=limit_type,
        )

        ADMISSION_DECISIONS.labels(
            check="rate_limit", outcome="allowed" if allowed else "rejected"
        ).inc()
        if not allowed:
            await self._record_breach(subject_key, result, now)
        return result

    async def _record_breach(
        self, subject_key: str, result: RateLimitResult, now: datetime
    ) -> None:
        RATE_LIMIT_BREACHES.labels(limit_type=result.limit_type).inc()
        logger.warning(
            "rate_limit_exceeded",
            limit_type=result.limit_type,
            limit=result.limit,
            reset_at=result.reset_at.isoformat(),
        )
        breach = RateLimitBreach(
            limit_key=subject_key,
            limit_type=result.limit_type,
            breached_at=now,
            reset_at=result.reset_at,
            count=result.count,
            limit=result.limit,
        )
        try:
            await self._store.create(
                BREACH_COLLECTION, str(uuid4()), breach.model_dump(mode="json")
            )
        except StoreUnavailableError as e:
            logger.warning("rate_limit_breach_record_failed", error=str(e))

        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.RATE_LIMIT_BREACH,
                actor_id=subject_key,
                metadata={
                    "limit_type": result.limit_type,
                    "limit": result.limit,
                    "count": result.count,
                    "reset_at": result.reset_at.isoformat(),
                },
            )

    def _rule(self, limit_type: str) -> tuple[int, int]:
        rule = self._config.limits.get(limit_type)
        if rule is None:
            raise ValidationError(f"Unknown rate limit type: {limit_type}", field="limit_type")
        return rule.max_attempts, rule.window_seconds

    async def check(self, actor_id: str, limit_type: str) -> RateLimitResult:
        """Count one call against a named limit from configuration.

        Raises:
            ValidationError: If limit_type is not configured
        """
        limit, window_seconds = self._rule(limit_type)
        return await self.is_limited(
            f"{limit_type}:{actor_id}", limit, window_seconds, limit_type=limit_type
        )

    async def enforce(self, actor_id: str, limit_types: list[str]) -> list[RateLimitResult]:
        """Check every named limit and raise on the first breach.

        All windows are read before any is incremented, so a call refused by
        one limit does not spend a slot on the others. A concurrent call can
        still exhaust a later limit between the read and the increment.

        Raises:
            RateLimitExceededError: With remaining, reset_at and retry_after
        """
        if not self._config.enabled:
            return []

        for limit_type in limit_types:
            limit, window_seconds = self._rule(limit_type)
            subject_key = f"{limit_type}:{actor_id}"
            current = await self.status(subject_key, limit, window_seconds)
            if not current.allowed:
                current = current.model_copy(update={"limit_type": limit_type})
                ADMISSION_DECISIONS.labels(check="rate_limit", outcome="rejected").inc()
                await self._record_breach(subject_key, current, self._clock.now())
                raise self._exceeded(current)

        results = []
        for limit_type in limit_types:
            result = await self.check(actor_id, limit_type)
            if not result.allowed:
                raise self._exceeded(result)
            results.append(result)
        return results

    @staticmethod
    def _exceeded(result: RateLimitResult) -> RateLimitExceededError:
        return RateLimitExceededError(
            f"Rate limit exceeded for {result.limit_type}. "
            f"Try again after {result.reset_at.isoformat()}",
            remaining=result.remaining,
            reset_at=result.reset_at,
            retry_after=result.retry_after,
            limit_type=result.limit_type,
        )

    async def status(
        self, subject_key: str, limit: int, window_seconds: int
    ) -> RateLimitResult:
        """Report the current window without counting a call."""
        now = self._clock.now()
        window_start, reset_at = window_bounds(now, window_seconds)
        document = await self._store.get(
            COUNTER_COLLECTION, self._counter_id(subject_key, window_start)
        )
        count = document.data["count"] if document else 0
        allowed = count < limit
        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            count=count,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            retry_after=None if allowed else max(1, math.ceil((reset_at - now).total_seconds())),
            limit_type=document.data["limit_type"] if document else "custom",
        )

    async def reset(self, subject_key: str, window_seconds: int) -> bool:
        """Clear the current window's counter for a subject.

        Returns:
            True if a counter was deleted
        """
        window_start, _ = window_bounds(self._clock.now(), window_seconds)
        deleted = await self._store.delete(
            COUNTER_COLLECTION, self._counter_id(subject_key, window_start)
        )
        logger.info("rate_limit_reset", subject_key=subject_key, deleted=deleted)
        return deleted

    async def sweep_expired(self) -> int:
        """Delete counters whose window has ended.

        Returns:
            Number of counters deleted
        """
        now = self._clock.now()
        deleted = 0
        for document in await self._store.find(COUNTER_COLLECTION):
            counter = RateLimitCounter.model_validate(document.data)
            if counter.reset_at > now:
                continue
            try:
                if await self._store.delete(
                    COUNTER_COLLECTION, document.id, expected_version=document.version
                ):
                    deleted += 1
            except ConcurrencyConflictError:
                continue

        logger.info("rate_limit_sweep_completed", deleted=deleted)
        return deleted
