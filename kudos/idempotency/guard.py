"""Idempotency guard for mutating operations.

A client token scoped to the actor is reserved with a conditional create
before the mutation runs and replaced with the response snapshot once it
succeeds. Replays return the stored snapshot unchanged; a token whose
first request is still running is rejected with RequestInProgressError.
"""

import asyncio
import hashlib
import math
from datetime import timedelta
from typing import Any

from kudos.clock import Clock, SystemClock
from kudos.config.models.admission import IdempotencyConfig
from kudos.errors import ConcurrencyConflictError, RequestInProgressError, StoreUnavailableError
from kudos.idempotency.models import (
    IdempotencyCheckResult,
    IdempotencyRecord,
    IdempotencyStatus,
)
from kudos.observability.logging import get_logger
from kudos.observability.metrics import ADMISSION_DECISIONS, DEGRADATIONS
from kudos.storage.atomic import compare_and_set
from kudos.storage.store import DocumentExistsError, DocumentStore

logger = get_logger(__name__)

IDEMPOTENCY_COLLECTION = "idempotency_records"

# Attempts to take over a reservation that expired under us
_RESERVE_ATTEMPTS = 3


def make_composite_key(client_token: str, actor_id: str) -> str:
    """Scope a client token to an actor.

    Returns:
        sha256 hex digest of "actor_id:client_token"
    """
    return hashlib.sha256(f"{actor_id}:{client_token}".encode()).hexdigest()


class IdempotencyGuard:
    """Deduplicates retried mutations by client token.

    Expiry is enforced from the record's own expires_at: an expired record
    is treated as absent and replaced, and sweep_expired() removes them
    physically.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: IdempotencyConfig | None = None,
        clock: Clock | None = None,
        cas_max_attempts: int = 8,
    ) -> None:
        self._store = store
        self._config = config or IdempotencyConfig()
        self._clock = clock or SystemClock()
        self._cas_max_attempts = cas_max_attempts

    async def check_and_reserve(
        self,
        client_token: str | None,
        actor_id: str,
        operation: str = "create_recognition",
        fail_open: bool | None = None,
    ) -> IdempotencyCheckResult:
        """Reserve a client token or replay its committed response.

        Args:
            client_token: Caller-supplied idempotency key (None skips the check)
            actor_id: Authenticated actor the token is scoped to
            operation: Name of the guarded operation
            fail_open: Override idempotency.fail_open for this call

        Returns:
            NEW when the token was reserved, DUPLICATE with the cached
            response, SKIPPED when no token was given, DEGRADED when the
            store is down and the call fails open

        Raises:
            RequestInProgressError: If the first request is still running
            StoreUnavailableError: If the store is down and the call fails closed
        """
        if not self._config.enabled or not client_token:
            ADMISSION_DECISIONS.labels(check="idempotency", outcome="skipped").inc()
            return IdempotencyCheckResult(status=IdempotencyStatus.SKIPPED)

        key = make_composite_key(client_token, actor_id)
        try:
            result = await self._reserve(key, client_token, actor_id, operation)
        except StoreUnavailableError as e:
            should_fail_open = self._config.fail_open if fail_open is None else fail_open
            if not should_fail_open:
                ADMISSION_DECISIONS.labels(check="idempotency", outcome="error").inc()
                raise
            DEGRADATIONS.labels(component="idempotency").inc()
            logger.warning(
                "idempotency_degraded",
                actor_id=actor_id,
                operation=operation,
                error=str(e),
            )
            return IdempotencyCheckResult(status=IdempotencyStatus.DEGRADED, composite_key=key)

        ADMISSION_DECISIONS.labels(check="idempotency", outcome=result.status.value).inc()
        return result

    async def _reserve(
        self,
        key: str,
        client_token: str,
        actor_id: str,
        operation: str,
    ) -> IdempotencyCheckResult:
        for _ in range(_RESERVE_ATTEMPTS):
            now = self._clock.now()
            placeholder = IdempotencyRecord(
                composite_key=key,
                client_token=client_token,
                actor_id=actor_id,
                operation=operation,
                created_at=now,
                expires_at=now + timedelta(seconds=self._config.placeholder_ttl_seconds),
            )
            try:
                await self._store.create(
                    IDEMPOTENCY_COLLECTION, key, placeholder.model_dump(mode="json")
                )
            except DocumentExistsError:
                pass
            else:
                logger.debug("idempotency_reserved", actor_id=actor_id, operation=operation)
                return IdempotencyCheckResult(status=IdempotencyStatus.NEW, composite_key=key)

            existing = await self._load_live(key)
            if existing is None:
                continue
            if existing.is_committed:
                logger.info("idempotency_replay", actor_id=actor_id, operation=operation)
                return IdempotencyCheckResult(
                    status=IdempotencyStatus.DUPLICATE,
                    is_duplicate=True,
                    cached_response=existing.response_snapshot,
                    composite_key=key,
                )
            if not self._config.wait_for_inflight:
                ADMISSION_DECISIONS.labels(check="idempotency", outcome="in_flight").inc()
                logger.info("idempotency_in_flight", actor_id=actor_id, operation=operation)
                raise RequestInProgressError(
                    "A request with this idempotency key is still being processed"
                )
            committed = await self._wait_for_commit(key)
            if committed is not None:
                return IdempotencyCheckResult(
                    status=IdempotencyStatus.DUPLICATE,
                    is_duplicate=True,
                    cached_response=committed.response_snapshot,
                    composite_key=key,
                )

        raise ConcurrencyConflictError("Could not reserve idempotency key")

    async def _load_live(self, key: str) -> IdempotencyRecord | None:
        document = await self._store.get(IDEMPOTENCY_COLLECTION, key)
        if document is None:
            return None
        record = IdempotencyRecord.model_validate(document.data)
        if record.expires_at <= self._clock.now():
            try:
                await self._store.delete(
                    IDEMPOTENCY_COLLECTION, key, expected_version=document.version
                )
            except ConcurrencyConflictError:
                logger.debug("idempotency_expired_record_changed", composite_key=key)
            return None
        return record

    async def _wait_for_commit(self, key: str) -> IdempotencyRecord | None:
        """Poll an in-flight reservation until it commits or the wait runs out.

        Returns:
            The committed record, or None if the reservation vanished

        Raises:
            RequestInProgressError: If it is still uncommitted after the wait
        """
        polls = max(
            1,
            math.ceil(
                self._config.inflight_wait_seconds / self._config.inflight_poll_interval_seconds
            ),
        )
        for _ in range(polls):
            await asyncio.sleep(self._config.inflight_poll_interval_seconds)
            record = await self._load_live(key)
            if record is None:
                return None
            if record.is_committed:
                return record

        raise RequestInProgressError(
            "A request with this idempotency key is still being processed"
        )

    async def commit(
        self,
        client_token: str | None,
        actor_id: str,
        response: dict[str, Any],
    ) -> bool:
        """Store the response snapshot for a reserved token.

        A committed record is immutable; committing again is a no-op.
        Failures are logged rather than raised since the mutation itself
        already succeeded.

        Returns:
            True if the snapshot is stored
        """
        if not self._config.enabled or not client_token:
            return False

        key = make_composite_key(client_token, actor_id)
        now = self._clock.now()
        expires_at = now + timedelta(seconds=self._config.ttl_seconds)

        def mutate(current: dict[str, Any] | None) -> dict[str, Any] | None:
            if current is not None and current.get("response_snapshot") is not None:
                return None
            record = IdempotencyRecord(
                composite_key=key,
                client_token=client_token,
                actor_id=actor_id,
                operation=(current or {}).get("operation", "create_recognition"),
                response_snapshot=response,
                created_at=(current or {}).get("created_at", now),
                expires_at=expires_at,
            )
            return record.model_dump(mode="json")

        try:
            await compare_and_set(
                self._store,
                IDEMPOTENCY_COLLECTION,
                key,
                mutate,
                max_attempts=self._cas_max_attempts,
            )
        except (StoreUnavailableError, ConcurrencyConflictError) as e:
            logger.error(
                "idempotency_commit_failed",
                actor_id=actor_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.debug("idempotency_committed", actor_id=actor_id, ttl=self._config.ttl_seconds)
        return True

    async def release(self, client_token: str | None, actor_id: str) -> bool:
        """Drop an uncommitted reservation so the caller can retry.

        Returns:
            True if a placeholder was removed
        """
        if not self._config.enabled or not client_token:
            return False

        key = make_composite_key(client_token, actor_id)
        try:
            document = await self._store.get(IDEMPOTENCY_COLLECTION, key)
            if document is None or document.data.get("response_snapshot") is not None:
                return False
            return await self._store.delete(
                IDEMPOTENCY_COLLECTION, key, expected_version=document.version
            )
        except (StoreUnavailableError, ConcurrencyConflictError) as e:
            logger.warning("idempotency_release_failed", actor_id=actor_id, error=str(e))
            return False

    async def sweep_expired(self) -> int:
        """Delete records whose expires_at has passed.

        Returns:
            Number of records deleted
        """
        now = self._clock.now()
        deleted = 0
        for document in await self._store.find(IDEMPOTENCY_COLLECTION):
            record = IdempotencyRecord.model_validate(document.data)
            if record.expires_at > now:
                continue
            try:
                if await self._store.delete(
                    IDEMPOTENCY_COLLECTION, document.id, expected_version=document.version
                ):
                    deleted += 1
            except ConcurrencyConflictError:
                continue

        logger.info("idempotency_sweep_completed", deleted=deleted)
        return deleted
