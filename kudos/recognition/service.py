"""Create-recognition workflow.

Order of checks for one create:

1. Idempotency guard: a replayed client token returns the stored response
2. Input validation
3. Rate limits on the giver
4. Organization quota pre-check
5. Weight scoring and abuse detection (may block)
6. Atomic quota consumption, then the durable write
7. Follow-up jobs: recipient notification and, for heavy recognitions,
   manager verification
8. Idempotency commit of the response

A failure up to and including the write releases the idempotency
reservation so the client can retry with the same token. Once the
recognition is stored the response is always committed, even when a
follow-up step raises.
"""

from typing import Any

from kudos.abuse.detector import AbuseDetector
from kudos.abuse.models import AbuseDetectionResult
from kudos.abuse.weights import compute_weight
from kudos.audit.models import AuditEventCode
from kudos.audit.sink import AuditSink
from kudos.clock import Clock, SystemClock
from kudos.config.models.abuse import RecognitionConfig, ScoringConfig
from kudos.errors import (
    InvalidTransitionError,
    NotFoundError,
    RecognitionBlockedError,
    StoreUnavailableError,
    ValidationError,
)
from kudos.idempotency.guard import IdempotencyGuard
from kudos.jobs.models import JobPriority, JobType
from kudos.jobs.queue import JobQueue
from kudos.observability.logging import get_logger
from kudos.observability.metrics import RECOGNITION_WEIGHT, RECOGNITIONS_CREATED
from kudos.quota.manager import QuotaManager
from kudos.ratelimit.limiter import RateLimiter
from kudos.recognition.models import (
    RECOGNITION_COLLECTION,
    AbuseSummary,
    CreateRecognitionCommand,
    CreateRecognitionResult,
    Recognition,
    RecognitionStatus,
)
from kudos.storage.atomic import compare_and_set
from kudos.storage.store import DocumentStore

logger = get_logger(__name__)


class RecognitionService:
    """Guards and performs the create-recognition mutation."""

    def __init__(
        self,
        store: DocumentStore,
        idempotency: IdempotencyGuard,
        rate_limiter: RateLimiter,
        quotas: QuotaManager,
        abuse: AbuseDetector,
        jobs: JobQueue,
        audit: AuditSink,
        config: RecognitionConfig | None = None,
        scoring: ScoringConfig | None = None,
        rate_limit_types: list[str] | None = None,
        quota_actions: list[str] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._idempotency = idempotency
        self._rate_limiter = rate_limiter
        self._quotas = quotas
        self._abuse = abuse
        self._jobs = jobs
        self._audit = audit
        self._config = config or RecognitionConfig()
        self._scoring = scoring or ScoringConfig()
        self._rate_limit_types = (
            rate_limit_types if rate_limit_types is not None else ["recognition_daily"]
        )
        self._quota_actions = (
            quota_actions
            if quota_actions is not None
            else ["recognitions_per_day", "recognitions_per_month"]
        )
        self._clock = clock or SystemClock()

    async def create_recognition(self, command: CreateRecognitionCommand) -> CreateRecognitionResult:
        """Create a recognition, or replay the response of an earlier identical request.

        Raises:
            ValidationError: On malformed input
            RateLimitExceededError: When the giver exceeded a rate limit
            QuotaExceededError: When the organization exhausted a quota
            RecognitionBlockedError: When abuse detection blocks it
            RequestInProgressError: When the same token is still being processed
            StoreUnavailableError: When a fail-closed check cannot reach the store
        """
        check = await self._idempotency.check_and_reserve(command.client_token, command.giver_id)
        if check.is_duplicate and check.cached_response is not None:
            result = CreateRecognitionResult.model_validate(check.cached_response)
            result.replayed = True
            return result

        try:
            recognition, detection = await self._admit(command)
            await self._store.create(
                RECOGNITION_COLLECTION, recognition.id, recognition.model_dump(mode="json")
            )
        except Exception:
            await self._idempotency.release(command.client_token, command.giver_id)
            raise

        # Past the write the token is never released; a retry replays this result
        job_ids: list[str] = []
        try:
            await self._follow_up(command, recognition, detection, job_ids)
        finally:
            result = CreateRecognitionResult(
                recognition=recognition,
                abuse=AbuseSummary(
                    flagged=detection.is_abusive,
                    severity=detection.severity.value if detection.severity else None,
                    reason_codes=detection.reason_codes,
                    degraded=detection.degraded,
                ),
                jobs=job_ids,
            )
            await self._idempotency.commit(
                command.client_token, command.giver_id, result.model_dump(mode="json")
            )
        return result

    def validate(self, command: CreateRecognitionCommand) -> None:
        """Check input constraints.

        Raises:
            ValidationError: Naming the first offending field
        """
        config = self._config
        for field in ("giver_id", "recipient_id", "organization_id"):
            if not getattr(command, field).strip():
                raise ValidationError(f"{field} is required", field=field)
        if command.giver_id == command.recipient_id:
            raise ValidationError("Cannot recognize yourself", field="recipient_id")

        reason = command.reason.strip()
        if len(reason) < config.min_reason_length:
            raise ValidationError(
                f"Reason must be at least {config.min_reason_length} characters",
                field="reason",
            )
        if len(reason) > config.max_reason_length:
            raise ValidationError(
                f"Reason must be at most {config.max_reason_length} characters",
                field="reason",
            )
        if len(command.tags) < config.min_tags:
            raise ValidationError(f"At least {config.min_tags} tag(s) required", field="tags")
        if len(command.tags) > config.max_tags:
            raise ValidationError(f"At most {config.max_tags} tags allowed", field="tags")
        if any(not tag.strip() for tag in command.tags):
            raise ValidationError("Tags cannot be empty", field="tags")
        if len(command.evidence_ids) > config.max_evidence:
            raise ValidationError(
                f"At most {config.max_evidence} evidence items allowed", field="evidence_ids"
            )

    async def _admit(
        self, command: CreateRecognitionCommand
    ) -> tuple[Recognition, AbuseDetectionResult]:
        """Run every check that can refuse the create and reserve its quota units.

        Nothing is written to the recognition collection here. Quota units are
        consumed atomically as the last step, so concurrent creates cannot
        overshoot a ceiling; units taken before a later refusal are not returned.
        """
        self.validate(command)
        reason = command.reason.strip()
        tags = [tag.strip() for tag in command.tags]

        await self._rate_limiter.enforce(command.giver_id, self._rate_limit_types)
        await self._quotas.enforce(command.organization_id, self._quota_actions)

        now = self._clock.now()
        weight = compute_weight(
            reason, tags, len(command.evidence_ids), command.giver_role, self._scoring
        )
        recognition = Recognition(
            giver_id=command.giver_id,
            organization_id=command.organization_id,
            recipient_id=command.recipient_id,
            reason=reason,
            tags=tags,
            visibility=command.visibility,
            evidence_ids=command.evidence_ids,
            weight=weight,
            original_weight=weight,
            source=command.source,
            created_at=now,
            updated_at=now,
        )

        detection = await self._abuse.detect_abuse(
            recognition.id,
            command.giver_id,
            command.recipient_id,
            reason,
            weight,
            len(command.evidence_ids),
            command.giver_role,
        )
        if detection.is_blocked:
            await self._reject(recognition, detection)

        for action_type in self._quota_actions:
            await self._quotas.consume(command.organization_id, action_type)

        recognition.weight = detection.adjusted_weight
        recognition.abuse_flag_count = len(detection.flags)
        return recognition, detection

    async def _follow_up(
        self,
        command: CreateRecognitionCommand,
        recognition: Recognition,
        detection: AbuseDetectionResult,
        job_ids: list[str],
    ) -> None:
        if detection.flags:
            await self._abuse.persist_flags(detection.flags, giver_id=command.giver_id)
        await self._enqueue_follow_ups(recognition, job_ids)

        RECOGNITIONS_CREATED.labels(
            source=command.source, abuse_detected=str(detection.is_abusive).lower()
        ).inc()
        RECOGNITION_WEIGHT.observe(recognition.weight)
        logger.info(
            "recognition_created",
            recognition_id=recognition.id,
            weight=recognition.weight,
            original_weight=recognition.original_weight,
            abuse_flags=len(detection.flags),
            jobs=len(job_ids),
        )
        await self._audit.emit(
            AuditEventCode.RECOGNITION_CREATED,
            actor_id=command.giver_id,
            target_id=command.recipient_id,
            metadata={
                "recognition_id": recognition.id,
                "weight": recognition.weight,
                "abuse_flags": len(detection.flags),
                "source": command.source,
            },
        )

    async def _reject(self, recognition: Recognition, detection: AbuseDetectionResult) -> None:
        await self._abuse.persist_flags(detection.flags, giver_id=recognition.giver_id)
        severity = detection.severity.value if detection.severity else None
        logger.warning(
            "recognition_blocked",
            recognition_id=recognition.id,
            severity=severity,
            reason_codes=detection.reason_codes,
        )
        await self._audit.emit(
            AuditEventCode.RECOGNITION_BLOCKED,
            actor_id=recognition.giver_id,
            target_id=recognition.recipient_id,
            metadata={"severity": severity, "reason_codes": detection.reason_codes},
        )
        raise RecognitionBlockedError(
            "Recognition blocked by abuse detection",
            flags=[
                {
                    "flag_type": flag.flag_type.value,
                    "severity": flag.severity.value,
                    "description": flag.description,
                }
                for flag in detection.flags
            ],
            severity=severity,
            reason_codes=detection.reason_codes,
        )

    async def _enqueue_follow_ups(self, recognition: Recognition, job_ids: list[str]) -> None:
        payload: dict[str, Any] = {
            "recognition_id": recognition.id,
            "organization_id": recognition.organization_id,
            "giver_id": recognition.giver_id,
            "recipient_id": recognition.recipient_id,
            "weight": recognition.weight,
            "tags": recognition.tags,
            "occurred_at": recognition.created_at.isoformat(),
        }
        follow_ups: list[tuple[JobType, JobPriority]] = []
        if self._config.notify_recipient:
            follow_ups.append((JobType.NOTIFY_RECIPIENT, JobPriority.NORMAL))
        if recognition.weight >= self._config.verification_weight_threshold:
            follow_ups.append((JobType.MANAGER_VERIFICATION, JobPriority.HIGH))

        for job_type, priority in follow_ups:
            try:
                job_ids.append(await self._jobs.enqueue(job_type.value, payload, priority=priority))
            except StoreUnavailableError as e:
                logger.error(
                    "follow_up_enqueue_failed",
                    recognition_id=recognition.id,
                    job_type=job_type.value,
                    error=str(e),
                )

    async def get_recognition(self, recognition_id: str) -> Recognition:
        document = await self._store.get(RECOGNITION_COLLECTION, recognition_id)
        if document is None:
            raise NotFoundError(f"Recognition {recognition_id} not found")
        return Recognition.model_validate(document.data)

    async def verify(self, recognition_id: str, verifier_id: str, approved: bool) -> Recognition:
        """Record the manager's verification decision.

        Raises:
            NotFoundError: If the recognition does not exist
            InvalidTransitionError: If it was already verified or rejected
            ValidationError: If the verifier is the giver
        """
        now = self._clock.now()

        def mutate(current: dict[str, Any] | None) -> dict[str, Any]:
            if current is None:
                raise NotFoundError(f"Recognition {recognition_id} not found")
            recognition = Recognition.model_validate(current)
            if recognition.giver_id == verifier_id:
                raise ValidationError("Givers cannot verify their own recognition")
            if recognition.status != RecognitionStatus.PENDING:
                raise InvalidTransitionError(
                    f"Recognition is already {recognition.status.value}",
                    current=recognition.status.value,
                )
            recognition.status = (
                RecognitionStatus.VERIFIED if approved else RecognitionStatus.REJECTED
            )
            recognition.updated_at = now
            return recognition.model_dump(mode="json")

        document = await compare_and_set(self._store, RECOGNITION_COLLECTION, recognition_id, mutate)
        recognition = Recognition.model_validate(document.data)
        logger.info(
            "recognition_verified",
            recognition_id=recognition_id,
            status=recognition.status.value,
        )
        await self._audit.emit(
            AuditEventCode.RECOGNITION_VERIFIED,
            actor_id=verifier_id,
            target_id=recognition_id,
            metadata={"status": recognition.status.value},
        )
        return recognition
