"""Organization quota manager.

Quotas are per-organization ceilings on countable actions that reset on
hourly, daily or monthly boundaries (or never). Resets happen lazily on
the next write after reset_at, inside the same conditional write that
records usage, and in bulk from the periodic reset job.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from kudos.audit.models import AuditEventCode
from kudos.audit.sink import AuditSink
from kudos.clock import Clock, SystemClock
from kudos.config.models.admission import QuotaConfig, QuotaPeriod, QuotaRule
from kudos.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    QuotaExceededError,
    StoreUnavailableError,
    ValidationError,
)
from kudos.observability.logging import get_logger
from kudos.observability.metrics import ADMISSION_DECISIONS, DEGRADATIONS, QUOTA_CONSUMED
from kudos.quota.models import (
    IncreaseStatus,
    QuotaAlert,
    QuotaCheckResult,
    QuotaIncreaseRequest,
    QuotaRecord,
    QuotaResetSummary,
    QuotaState,
    QuotaStatusReport,
    QuotaUsage,
)
from kudos.storage.atomic import compare_and_set
from kudos.storage.store import DocumentStore

logger = get_logger(__name__)

QUOTA_COLLECTION = "quota_records"
INCREASE_COLLECTION = "quota_increase_requests"


def next_reset(now: datetime, period: QuotaPeriod) -> datetime | None:
    """Return the next period boundary after now (UTC), or None if the quota never resets."""
    now = now.astimezone(UTC)
    if period == "hourly":
        return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    if period == "daily":
        return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    if period == "monthly":
        if now.month == 12:
            return datetime(now.year + 1, 1, 1, tzinfo=UTC)
        return datetime(now.year, now.month + 1, 1, tzinfo=UTC)
    return None


class QuotaManager:
    """Admission control against organization quotas.

    Quota checks are a governance signal rather than a safety control:
    when the store is unreachable, check_quota and consume fail open and
    return a result with degraded=True.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: QuotaConfig | None = None,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        cas_max_attempts: int = 8,
    ) -> None:
        self._store = store
        self._config = config or QuotaConfig()
        self._clock = clock or SystemClock()
        self._audit = audit
        self._cas_max_attempts = cas_max_attempts

    @staticmethod
    def _record_id(organization_id: str, action_type: str) -> str:
        return f"{organization_id}:{action_type}"

    def _rule(self, action_type: str) -> QuotaRule:
        rule = self._config.defaults.get(action_type)
        if rule is None:
            raise ValidationError(f"Unknown quota type: {action_type}", field="action_type")
        return rule

    def _fresh_record(self, organization_id: str, action_type: str, now: datetime) -> QuotaRecord:
        rule = self._rule(action_type)
        return QuotaRecord(
            organization_id=organization_id,
            action_type=action_type,
            ceiling=rule.ceiling,
            used=0,
            period=rule.period,
            reset_at=next_reset(now, rule.period),
            last_updated=now,
        )

    def _current(
        self,
        data: dict[str, Any] | None,
        organization_id: str,
        action_type: str,
        now: datetime,
    ) -> QuotaRecord:
        """Materialize a record, applying any reset that is due."""
        if data is None:
            return self._fresh_record(organization_id, action_type, now)
        record = QuotaRecord.model_validate(data)
        if record.reset_at is not None and now >= record.reset_at:
            record.used = 0
            record.reset_at = next_reset(now, record.period)
            record.last_updated = now
        return record

    def _degraded_result(self, action_type: str) -> QuotaCheckResult:
        rule = self._rule(action_type)
        return QuotaCheckResult(
            allowed=True,
            action_type=action_type,
            ceiling=rule.ceiling,
            used=0,
            remaining=rule.ceiling,
            degraded=True,
        )

    async def check_quota(
        self, organization_id: str, action_type: str, amount: int = 1
    ) -> QuotaCheckResult:
        """Check whether an organization may perform `amount` more actions.

        Does not record usage.

        Raises:
            ValidationError: If action_type is unknown or amount is not positive
        """
        if amount <= 0:
            raise ValidationError("amount must be positive", field="amount")
        self._rule(action_type)
        if not self._config.enabled:
            return self._degraded_result(action_type).model_copy(update={"degraded": False})

        now = self._clock.now()
        try:
            document = await self._store.get(
                QUOTA_COLLECTION, self._record_id(organization_id, action_type)
            )
        except StoreUnavailableError as e:
            DEGRADATIONS.labels(component="quota").inc()
            logger.warning(
                "quota_check_degraded",
                organization_id=organization_id,
                action_type=action_type,
                error=str(e),
            )
            return self._degraded_result(action_type)

        record = self._current(document.data if document else None, organization_id, action_type, now)
        allowed = record.used + amount <= record.ceiling
        ADMISSION_DECISIONS.labels(
            check="quota", outcome="allowed" if allowed else "rejected"
        ).inc()
        return QuotaCheckResult(
            allowed=allowed,
            action_type=action_type,
            ceiling=record.ceiling,
            used=record.used,
            remaining=record.remaining,
            reset_at=record.reset_at,
        )

    async def enforce(self, organization_id: str, action_types: list[str]) -> list[QuotaCheckResult]:
        """Check several quotas and raise on the first that is exhausted.

        Raises:
            QuotaExceededError: With remaining and reset_at
        """
        results = []
        for action_type in action_types:
            result = await self.check_quota(organization_id, action_type)
            if not result.allowed:
                await self._emit_exceeded(
                    organization_id, action_type, used=result.used, ceiling=result.ceiling
                )
                raise QuotaExceededError(
                    f"Organization quota exceeded for {action_type}",
                    remaining=result.remaining,
                    reset_at=result.reset_at,
                    retry_after=self._retry_after(result.reset_at),
                    limit_type=action_type,
                )
            results.append(result)
        return results

    def _retry_after(self, reset_at: datetime | None) -> int | None:
        if reset_at is None:
            return None
        return max(1, int((reset_at - self._clock.now()).total_seconds()))

    async def _emit_exceeded(
        self, organization_id: str, action_type: str, used: int, ceiling: int
    ) -> None:
        logger.warning(
            "quota_exceeded",
            organization_id=organization_id,
            action_type=action_type,
            used=used,
            ceiling=ceiling,
        )
        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.QUOTA_EXCEEDED,
                target_id=organization_id,
                metadata={
                    "action_type": action_type,
                    "used": used,
                    "ceiling": ceiling,
                },
            )

    async def consume(
        self, organization_id: str, action_type: str, amount: int = 1
    ) -> QuotaCheckResult:
        """Atomically record usage if it stays within the ceiling.

        Raises:
            QuotaExceededError: If the usage would exceed the ceiling
            ValidationError: If action_type is unknown or amount is not positive
        """
        if amount <= 0:
            raise ValidationError("amount must be positive", field="amount")
        self._rule(action_type)
        if not self._config.enabled:
            return self._degraded_result(action_type).model_copy(update={"degraded": False})

        now = self._clock.now()
        outcome: dict[str, QuotaRecord] = {}

        def mutate(current: dict[str, Any] | None) -> dict[str, Any]:
            record = self._current(current, organization_id, action_type, now)
            if record.used + amount > record.ceiling:
                outcome["rejected"] = record
                raise QuotaExceededError(
                    f"Organization quota exceeded for {action_type}",
                    remaining=record.remaining,
                    reset_at=record.reset_at,
                    retry_after=self._retry_after(record.reset_at),
                    limit_type=action_type,
                )
            record.used += amount
            record.last_updated = now
            outcome["record"] = record
            return record.model_dump(mode="json")

        try:
            await compare_and_set(
                self._store,
                QUOTA_COLLECTION,
                self._record_id(organization_id, action_type),
                mutate,
                max_attempts=self._cas_max_attempts,
            )
        except QuotaExceededError:
            ADMISSION_DECISIONS.labels(check="quota", outcome="rejected").inc()
            rejected = outcome["rejected"]
            await self._emit_exceeded(
                organization_id, action_type, used=rejected.used, ceiling=rejected.ceiling
            )
            raise
        except StoreUnavailableError as e:
            DEGRADATIONS.labels(component="quota").inc()
            logger.warning(
                "quota_consume_degraded",
                organization_id=organization_id,
                action_type=action_type,
                error=str(e),
            )
            return self._degraded_result(action_type)

        record = outcome["record"]
        QUOTA_CONSUMED.labels(action_type=action_type).inc(amount)
        logger.debug(
            "quota_consumed",
            organization_id=organization_id,
            action_type=action_type,
            used=record.used,
            ceiling=record.ceiling,
        )
        return QuotaCheckResult(
            allowed=True,
            action_type=action_type,
            ceiling=record.ceiling,
            used=record.used,
            remaining=record.remaining,
            reset_at=record.reset_at,
        )

    async def reset_quota(self, organization_id: str, action_type: str) -> QuotaRecord:
        """Zero an organization's usage and start a new period."""
        self._rule(action_type)
        now = self._clock.now()

        def mutate(current: dict[str, Any] | None) -> dict[str, Any]:
            record = self._current(current, organization_id, action_type, now)
            record.used = 0
            record.reset_at = next_reset(now, record.period)
            record.last_updated = now
            return record.model_dump(mode="json")

        document = await compare_and_set(
            self._store,
            QUOTA_COLLECTION,
            self._record_id(organization_id, action_type),
            mutate,
            max_attempts=self._cas_max_attempts,
        )
        logger.info("quota_reset", organization_id=organization_id, action_type=action_type)
        return QuotaRecord.model_validate(document.data)

    async def batch_reset(self, period: QuotaPeriod) -> QuotaResetSummary:
        """Reset every stored quota of the given period whose reset_at has passed.

        Records still inside their current period are skipped, so a run that
        fires early or twice never wipes live usage. Failures on individual
        records are counted and logged; the batch continues.
        """
        now = self._clock.now()
        summary = QuotaResetSummary(period=period, completed_at=now)
        for document in await self._store.find(QUOTA_COLLECTION, {"period": period}):
            record = QuotaRecord.model_validate(document.data)
            if record.reset_at is None or record.reset_at > now:
                summary.skipped_count += 1
                continue
            try:
                await self.reset_quota(record.organization_id, record.action_type)
            except (StoreUnavailableError, ConcurrencyConflictError, ValidationError) as e:
                summary.failed_count += 1
                logger.error(
                    "quota_batch_reset_item_failed",
                    organization_id=record.organization_id,
                    action_type=record.action_type,
                    error=str(e),
                )
                continue
            summary.reset_count += 1

        summary.completed_at = self._clock.now()
        logger.info(
            "quota_batch_reset_completed",
            period=period,
            reset_count=summary.reset_count,
            skipped_count=summary.skipped_count,
            failed_count=summary.failed_count,
        )
        return summary

    async def get_record(self, organization_id: str, action_type: str) -> QuotaRecord:
        """Return the organization's record for an action, with any due reset applied."""
        self._rule(action_type)
        document = await self._store.get(
            QUOTA_COLLECTION, self._record_id(organization_id, action_type)
        )
        return self._current(
            document.data if document else None, organization_id, action_type, self._clock.now()
        )

    async def get_status(self, organization_id: str) -> QuotaStatusReport:
        """Summarize usage for every configured action type."""
        now = self._clock.now()
        report = QuotaStatusReport(organization_id=organization_id, generated_at=now)
        warning_pct = self._config.warning_ratio * 100

        for action_type in self._config.defaults:
            record = await self.get_record(organization_id, action_type)
            percentage = round(record.used / record.ceiling * 100, 2)
            if percentage >= 100:
                state = QuotaState.EXCEEDED
            elif percentage >= warning_pct:
                state = QuotaState.WARNING
            else:
                state = QuotaState.OK

            report.quotas[action_type] = QuotaUsage(
                action_type=action_type,
                used=record.used,
                ceiling=record.ceiling,
                remaining=record.remaining,
                percentage=percentage,
                state=state,
                reset_at=record.reset_at,
            )
            if state == QuotaState.EXCEEDED:
                report.alerts.append(
                    QuotaAlert(
                        type=state,
                        action_type=action_type,
                        percentage=percentage,
                        message=f"Quota exceeded for {action_type}",
                    )
                )
            elif state == QuotaState.WARNING:
                report.alerts.append(
                    QuotaAlert(
                        type=state,
                        action_type=action_type,
                        percentage=percentage,
                        message=f"Approaching quota limit for {action_type} ({percentage}%)",
                    )
                )
        return report

    async def request_increase(
        self,
        organization_id: str,
        action_type: str,
        requested_ceiling: int,
        justification: str,
        requested_by: str,
    ) -> QuotaIncreaseRequest:
        """File a pending request to raise a ceiling.

        Raises:
            ValidationError: If the requested ceiling is not above the current one
        """
        record = await self.get_record(organization_id, action_type)
        if requested_ceiling <= record.ceiling:
            raise ValidationError(
                "Requested ceiling must exceed the current ceiling",
                field="requested_ceiling",
            )
        if not justification or not justification.strip():
            raise ValidationError("Justification is required", field="justification")

        request = QuotaIncreaseRequest(
            organization_id=organization_id,
            action_type=action_type,
            current_ceiling=record.ceiling,
            requested_ceiling=requested_ceiling,
            justification=justification.strip(),
            requested_by=requested_by,
            requested_at=self._clock.now(),
        )
        await self._store.create(INCREASE_COLLECTION, request.id, request.model_dump(mode="json"))

        logger.info(
            "quota_increase_requested",
            organization_id=organization_id,
            action_type=action_type,
            current_ceiling=record.ceiling,
            requested_ceiling=requested_ceiling,
        )
        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.QUOTA_INCREASE_REQUESTED,
                actor_id=requested_by,
                target_id=organization_id,
                metadata={"action_type": action_type, "requested_ceiling": requested_ceiling},
            )
        return request

    async def get_increase_request(self, request_id: str) -> QuotaIncreaseRequest:
        document = await self._store.get(INCREASE_COLLECTION, request_id)
        if document is None:
            raise NotFoundError(f"Quota increase request {request_id} not found")
        return QuotaIncreaseRequest.model_validate(document.data)

    async def list_increase_requests(
        self,
        organization_id: str | None = None,
        status: IncreaseStatus | None = None,
    ) -> list[QuotaIncreaseRequest]:
        filters: dict[str, Any] = {}
        if organization_id is not None:
            filters["organization_id"] = organization_id
        if status is not None:
            filters["status"] = status.value
        documents = await self._store.find(INCREASE_COLLECTION, filters)
        requests = [QuotaIncreaseRequest.model_validate(doc.data) for doc in documents]
        return sorted(requests, key=lambda r: r.requested_at)

    async def review_increase(
        self,
        request_id: str,
        decision: IncreaseStatus | str,
        reviewer: str,
        note: str | None = None,
    ) -> QuotaIncreaseRequest:
        """Approve or reject a pending request.

        Raises:
            NotFoundError: If the request does not exist
            InvalidTransitionError: If the request was already decided
            ValidationError: If decision is not approved or rejected
        """
        try:
            decision = IncreaseStatus(decision)
        except ValueError as e:
            raise ValidationError(f"Unknown decision: {decision}", field="decision") from e
        if decision == IncreaseStatus.PENDING:
            raise ValidationError("Decision must be approved or rejected", field="decision")
        now = self._clock.now()

        def mutate(current: dict[str, Any] | None) -> dict[str, Any]:
            if current is None:
                raise NotFoundError(f"Quota increase request {request_id} not found")
            request = QuotaIncreaseRequest.model_validate(current)
            if request.status != IncreaseStatus.PENDING:
                raise InvalidTransitionError(
                    f"Quota increase request is already {request.status.value}",
                    current=request.status.value,
                )
            request.status = decision
            request.reviewed_by = reviewer
            request.reviewed_at = now
            request.review_note = note
            return request.model_dump(mode="json")

        document = await compare_and_set(
            self._store,
            INCREASE_COLLECTION,
            request_id,
            mutate,
            max_attempts=self._cas_max_attempts,
        )
        request = QuotaIncreaseRequest.model_validate(document.data)

        logger.info(
            "quota_increase_reviewed",
            request_id=request_id,
            decision=decision.value,
        )
        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.QUOTA_INCREASE_REVIEWED,
                actor_id=reviewer,
                target_id=request.organization_id,
                metadata={"request_id": request_id, "decision": decision.value},
            )
        return request

    async def apply_approved_ceiling(self, request_id: str) -> QuotaRecord:
        """Raise the ceiling named by an approved, not yet applied request.

        Raises:
            NotFoundError: If the request does not exist
            InvalidTransitionError: If it is not approved or was already applied
        """
        request = await self.get_increase_request(request_id)
        if request.status != IncreaseStatus.APPROVED:
            raise InvalidTransitionError(
                "Only approved requests can be applied", current=request.status.value
            )
        if request.applied_at is not None:
            raise InvalidTransitionError(
                "Quota increase request was already applied", current="applied"
            )

        now = self._clock.now()

        def raise_ceiling(current: dict[str, Any] | None) -> dict[str, Any]:
            record = self._current(current, request.organization_id, request.action_type, now)
            record.ceiling = request.requested_ceiling
            record.last_updated = now
            return record.model_dump(mode="json")

        def mark_applied(current: dict[str, Any] | None) -> dict[str, Any]:
            if current is None:
                raise NotFoundError(f"Quota increase request {request_id} not found")
            if current.get("applied_at") is not None:
                raise InvalidTransitionError(
                    "Quota increase request was already applied", current="applied"
                )
            current["applied_at"] = now.isoformat()
            return current

        # Claim the request first so a concurrent apply cannot raise the ceiling twice
        await compare_and_set(
            self._store,
            INCREASE_COLLECTION,
            request_id,
            mark_applied,
            max_attempts=self._cas_max_attempts,
        )
        document = await compare_and_set(
            self._store,
            QUOTA_COLLECTION,
            self._record_id(request.organization_id, request.action_type),
            raise_ceiling,
            max_attempts=self._cas_max_attempts,
        )

        logger.info(
            "quota_ceiling_applied",
            request_id=request_id,
            organization_id=request.organization_id,
            action_type=request.action_type,
            ceiling=request.requested_ceiling,
        )
        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.QUOTA_CEILING_APPLIED,
                target_id=request.organization_id,
                metadata={
                    "request_id": request_id,
                    "action_type": request.action_type,
                    "ceiling": request.requested_ceiling,
                },
            )
        return QuotaRecord.model_validate(document.data)
