"""Manual review workflow for abuse flags."""

from datetime import UTC, datetime
from typing import Any

from kudos.abuse.detector import FLAG_COLLECTION
from kudos.abuse.models import (
    AbuseFlag,
    AbuseReviewSummary,
    DetectionMethod,
    FlagSeverity,
    FlagStatus,
    FlagType,
)
from kudos.abuse.weights import round_weight
from kudos.audit.models import AuditEventCode
from kudos.audit.sink import AuditSink
from kudos.clock import Clock, SystemClock
from kudos.errors import InvalidTransitionError, NotFoundError, ValidationError
from kudos.observability.logging import get_logger
from kudos.recognition.models import RECOGNITION_COLLECTION, Recognition
from kudos.storage.atomic import compare_and_set
from kudos.storage.store import DocumentStore

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[FlagStatus, set[FlagStatus]] = {
    FlagStatus.PENDING: {FlagStatus.UNDER_REVIEW},
    FlagStatus.UNDER_REVIEW: {FlagStatus.RESOLVED, FlagStatus.DISMISSED},
    FlagStatus.RESOLVED: set(),
    FlagStatus.DISMISSED: set(),
}


class AbuseReviewService:
    """Moves flags through PENDING -> UNDER_REVIEW -> RESOLVED | DISMISSED.

    Resolving a flag may lower the linked recognition's weight, never
    above the weight it was originally scored with.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        cas_max_attempts: int = 8,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._audit = audit
        self._cas_max_attempts = cas_max_attempts

    async def get_flag(self, flag_id: str) -> AbuseFlag:
        document = await self._store.get(FLAG_COLLECTION, flag_id)
        if document is None:
            raise NotFoundError(f"Abuse flag {flag_id} not found")
        return AbuseFlag.model_validate(document.data)

    async def _get_recognition(self, recognition_id: str) -> Recognition:
        document = await self._store.get(RECOGNITION_COLLECTION, recognition_id)
        if document is None:
            raise NotFoundError(f"Recognition {recognition_id} not found")
        return Recognition.model_validate(document.data)

    async def _transition(
        self,
        flag_id: str,
        to_status: FlagStatus,
        reviewer: str,
        note: str | None = None,
        adjusted_weight: float | None = None,
    ) -> AbuseFlag:
        now = self._clock.now()

        def mutate(current: dict[str, Any] | None) -> dict[str, Any]:
            if current is None:
                raise NotFoundError(f"Abuse flag {flag_id} not found")
            flag = AbuseFlag.model_validate(current)
            if to_status not in ALLOWED_TRANSITIONS[flag.status]:
                raise InvalidTransitionError(
                    f"Cannot move abuse flag from {flag.status.value} to {to_status.value}",
                    current=flag.status.value,
                )
            flag.status = to_status
            flag.reviewed_by = reviewer
            flag.reviewed_at = now
            if note is not None:
                flag.resolution_note = note
            if adjusted_weight is not None:
                flag.adjusted_weight = adjusted_weight
            return flag.model_dump(mode="json")

        document = await compare_and_set(
            self._store,
            FLAG_COLLECTION,
            flag_id,
            mutate,
            max_attempts=self._cas_max_attempts,
        )
        logger.info("abuse_flag_transitioned", flag_id=flag_id, status=to_status.value)
        return AbuseFlag.model_validate(document.data)

    async def flag_manually(
        self,
        recognition_id: str,
        reviewer: str,
        description: str,
        severity: FlagSeverity = FlagSeverity.MEDIUM,
    ) -> AbuseFlag:
        """Raise a flag on an existing recognition from a human report."""
        recognition = await self._get_recognition(recognition_id)
        flag = AbuseFlag(
            recognition_id=recognition_id,
            flag_type=FlagType.MANUAL,
            severity=FlagSeverity(severity),
            detection_method=DetectionMethod.MANUAL_REVIEW,
            description=description,
            original_weight=recognition.weight,
            adjusted_weight=recognition.weight,
            flagged_by=reviewer,
            flagged_at=self._clock.now(),
        )
        await self._store.create(FLAG_COLLECTION, flag.id, flag.model_dump(mode="json"))

        def bump(current: dict[str, Any] | None) -> dict[str, Any]:
            if current is None:
                raise NotFoundError(f"Recognition {recognition_id} not found")
            current["abuse_flag_count"] = current.get("abuse_flag_count", 0) + 1
            return current

        await compare_and_set(
            self._store,
            RECOGNITION_COLLECTION,
            recognition_id,
            bump,
            max_attempts=self._cas_max_attempts,
        )
        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.ABUSE_FLAGGED,
                actor_id=reviewer,
                target_id=recognition_id,
                metadata={"flag_id": flag.id, "severity": flag.severity.value, "manual": True},
            )
        return flag

    async def start_review(self, flag_id: str, reviewer: str) -> AbuseFlag:
        return await self._transition(flag_id, FlagStatus.UNDER_REVIEW, reviewer)

    async def resolve(
        self,
        flag_id: str,
        reviewer: str,
        adjusted_weight: float | None = None,
        note: str | None = None,
    ) -> AbuseFlag:
        """Confirm a flag, optionally lowering the recognition's weight.

        Raises:
            ValidationError: If adjusted_weight is negative or above the
                recognition's original weight
            InvalidTransitionError: If the flag is not under review
        """
        flag = await self.get_flag(flag_id)
        if adjusted_weight is not None:
            recognition = await self._get_recognition(flag.recognition_id)
            adjusted_weight = round_weight(adjusted_weight)
            if adjusted_weight < 0 or adjusted_weight > recognition.original_weight:
                raise ValidationError(
                    f"Adjusted weight must be between 0 and {recognition.original_weight}",
                    field="adjusted_weight",
                )

        resolved = await self._transition(
            flag_id, FlagStatus.RESOLVED, reviewer, note=note, adjusted_weight=adjusted_weight
        )
        if adjusted_weight is not None:
            await self._apply_weight(resolved.recognition_id, adjusted_weight, reviewer)

        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.ABUSE_REVIEWED,
                actor_id=reviewer,
                target_id=resolved.recognition_id,
                metadata={"flag_id": flag_id, "adjusted_weight": adjusted_weight},
            )
        return resolved

    async def _apply_weight(self, recognition_id: str, weight: float, reviewer: str) -> None:
        now = self._clock.now()

        def mutate(current: dict[str, Any] | None) -> dict[str, Any]:
            if current is None:
                raise NotFoundError(f"Recognition {recognition_id} not found")
            recognition = Recognition.model_validate(current)
            recognition.weight = min(weight, recognition.original_weight)
            recognition.updated_at = now
            return recognition.model_dump(mode="json")

        await compare_and_set(
            self._store,
            RECOGNITION_COLLECTION,
            recognition_id,
            mutate,
            max_attempts=self._cas_max_attempts,
        )
        logger.info("recognition_weight_adjusted", recognition_id=recognition_id, weight=weight)
        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.RECOGNITION_WEIGHT_ADJUSTED,
                actor_id=reviewer,
                target_id=recognition_id,
                metadata={"weight": weight},
            )

    async def dismiss(self, flag_id: str, reviewer: str, note: str | None = None) -> AbuseFlag:
        dismissed = await self._transition(flag_id, FlagStatus.DISMISSED, reviewer, note=note)
        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.ABUSE_DISMISSED,
                actor_id=reviewer,
                target_id=dismissed.recognition_id,
                metadata={"flag_id": flag_id},
            )
        return dismissed

    async def list_flags(self, recognition_id: str | None = None) -> list[AbuseFlag]:
        filters = {"recognition_id": recognition_id} if recognition_id else None
        documents = await self._store.find(FLAG_COLLECTION, filters)
        flags = [AbuseFlag.model_validate(doc.data) for doc in documents]
        return sorted(flags, key=lambda f: f.flagged_at or datetime.min.replace(tzinfo=UTC))

    async def list_pending(self) -> list[AbuseFlag]:
        """Flags still awaiting a decision (PENDING or UNDER_REVIEW)."""
        return [
            flag
            for flag in await self.list_flags()
            if flag.status in (FlagStatus.PENDING, FlagStatus.UNDER_REVIEW)
        ]

    async def summary(self) -> AbuseReviewSummary:
        summary = AbuseReviewSummary()
        for flag in await self.list_flags():
            summary.total += 1
            summary.by_status[flag.status.value] = summary.by_status.get(flag.status.value, 0) + 1
            summary.by_type[flag.flag_type.value] = summary.by_type.get(flag.flag_type.value, 0) + 1
            summary.by_severity[flag.severity.value] = (
                summary.by_severity.get(flag.severity.value, 0) + 1
            )
            if flag.original_weight is not None and flag.adjusted_weight is not None:
                summary.total_weight_reduced += max(0.0, flag.original_weight - flag.adjusted_weight)
        summary.total_weight_reduced = round_weight(summary.total_weight_reduced)
        return summary
