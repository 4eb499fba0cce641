"""Abuse heuristics for new recognitions.

Four independent heuristics run over the giver's recent history and their
flags are unioned. Reciprocity and frequency flags block the recognition;
content and evidence/weight flags only reduce its weight. Detection is a
quality signal: if history cannot be read, the recognition proceeds with
its scored weight and the result is marked degraded.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from kudos.abuse.models import (
    BLOCKING_FLAG_TYPES,
    SEVERITY_ORDER,
    AbuseDetectionResult,
    AbuseFlag,
    FlagSeverity,
    FlagType,
)
from kudos.abuse.weights import (
    matched_keywords,
    max_weight_for_role,
    round_weight,
    string_similarity,
)
from kudos.audit.models import AuditEventCode
from kudos.audit.sink import AuditSink, hash_identifier
from kudos.clock import Clock, SystemClock
from kudos.config.models.abuse import AbuseConfig, ScoringConfig
from kudos.errors import StoreUnavailableError
from kudos.observability.logging import get_logger
from kudos.observability.metrics import ABUSE_FLAGS, DEGRADATIONS
from kudos.recognition.models import RECOGNITION_COLLECTION
from kudos.storage.store import DocumentStore

logger = get_logger(__name__)

FLAG_COLLECTION = "abuse_flags"


def _created_at(data: dict[str, Any]) -> datetime:
    value = data["created_at"]
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class AbuseDetector:
    """Runs the abuse heuristics and persists the resulting flags."""

    def __init__(
        self,
        store: DocumentStore,
        config: AbuseConfig | None = None,
        scoring: ScoringConfig | None = None,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self._store = store
        self._config = config or AbuseConfig()
        self._scoring = scoring or ScoringConfig()
        self._clock = clock or SystemClock()
        self._audit = audit

    async def _recent(self, filters: dict[str, Any], since: datetime) -> list[dict[str, Any]]:
        """Recognitions matching filters created at or after since, newest first."""
        documents = await self._store.find(RECOGNITION_COLLECTION, filters)
        recent = [doc.data for doc in documents if _created_at(doc.data) >= since]
        recent.sort(key=_created_at, reverse=True)
        return recent[: self._config.history_limit]

    async def detect_abuse(
        self,
        recognition_id: str,
        giver_id: str,
        recipient_id: str,
        reason: str,
        base_weight: float,
        evidence_count: int,
        giver_role: str | None,
    ) -> AbuseDetectionResult:
        """Evaluate a candidate recognition that has not been persisted yet.

        Returns:
            AbuseDetectionResult; is_blocked means the recognition must be
            rejected, otherwise adjusted_weight is the weight to store
        """
        if not self._config.enabled:
            return AbuseDetectionResult(adjusted_weight=base_weight)

        now = self._clock.now()
        config = self._config
        longest_window = max(
            config.reciprocity_window_days, config.duplicate_window_days, 7
        )
        try:
            giver_history = await self._recent(
                {"giver_id": giver_id}, now - timedelta(days=longest_window)
            )
            reverse_history = await self._recent(
                {"giver_id": recipient_id, "recipient_id": giver_id},
                now - timedelta(days=config.reciprocity_window_days),
            )
        except StoreUnavailableError as e:
            return await self._degraded(recognition_id, giver_id, base_weight, e)

        flags: list[AbuseFlag] = []
        flags.extend(self._check_reciprocity(giver_history, reverse_history, recipient_id, now))
        flags.extend(self._check_frequency(giver_history, now))
        flags.extend(self._check_content(giver_history, reason, now))
        flags.extend(self._check_weight(base_weight, evidence_count, giver_role))

        for flag in flags:
            flag.recognition_id = recognition_id
            flag.flagged_at = now
        result = self._score(base_weight, flags)

        if flags:
            logger.warning(
                "abuse_detected",
                recognition_id=recognition_id,
                giver_hash=hash_identifier(giver_id),
                severity=result.severity.value if result.severity else None,
                severity_score=result.severity_score,
                is_blocked=result.is_blocked,
                reason_codes=result.reason_codes,
            )
        return result

    async def _degraded(
        self,
        recognition_id: str,
        giver_id: str,
        base_weight: float,
        error: Exception,
    ) -> AbuseDetectionResult:
        DEGRADATIONS.labels(component="abuse").inc()
        logger.warning(
            "abuse_detection_degraded",
            recognition_id=recognition_id,
            error=str(error),
        )
        if self._audit is not None:
            await self._audit.emit(
                AuditEventCode.ABUSE_DETECTION_ERROR,
                actor_id=giver_id,
                target_id=recognition_id,
                metadata={"error": str(error)},
            )
        return AbuseDetectionResult(adjusted_weight=base_weight, degraded=True)

    def _check_reciprocity(
        self,
        giver_history: list[dict[str, Any]],
        reverse_history: list[dict[str, Any]],
        recipient_id: str,
        now: datetime,
    ) -> list[AbuseFlag]:
        config = self._config
        since = now - timedelta(days=config.reciprocity_window_days)
        prior = sum(
            1
            for data in giver_history
            if data.get("recipient_id") == recipient_id and _created_at(data) >= since
        )
        reverse = len(reverse_history)
        flags = []

        if prior >= config.reciprocity_threshold:
            severity = (
                FlagSeverity.HIGH
                if prior >= 2 * config.reciprocity_threshold
                else FlagSeverity.MEDIUM
            )
            flags.append(
                AbuseFlag(
                    recognition_id="",
                    flag_type=FlagType.RECIPROCITY,
                    severity=severity,
                    description=(
                        f"{prior} prior recognitions to the same recipient in "
                        f"{config.reciprocity_window_days} days "
                        f"(threshold: {config.reciprocity_threshold})"
                    ),
                    metadata={
                        "prior_count": prior,
                        "window_days": config.reciprocity_window_days,
                        "threshold": config.reciprocity_threshold,
                    },
                )
            )

        if prior >= config.mutual_exchange_threshold and reverse >= config.mutual_exchange_threshold:
            flags.append(
                AbuseFlag(
                    recognition_id="",
                    flag_type=FlagType.RECIPROCITY,
                    severity=FlagSeverity.HIGH,
                    description=(
                        f"Mutual recognition exchange detected: {prior} direct, {reverse} reverse"
                    ),
                    metadata={"direct_count": prior, "reverse_count": reverse},
                )
            )
        return flags

    def _check_frequency(
        self, giver_history: list[dict[str, Any]], now: datetime
    ) -> list[AbuseFlag]:
        config = self._config
        day_start = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = now - timedelta(days=7)
        today = sum(1 for data in giver_history if _created_at(data) >= day_start)
        week = sum(1 for data in giver_history if _created_at(data) >= week_start)
        flags = []

        if today >= config.daily_limit:
            flags.append(
                AbuseFlag(
                    recognition_id="",
                    flag_type=FlagType.FREQUENCY,
                    severity=(
                        FlagSeverity.HIGH
                        if today >= config.daily_limit * 1.5
                        else FlagSeverity.MEDIUM
                    ),
                    description=f"Daily recognition limit exceeded: {today}/{config.daily_limit}",
                    metadata={"count": today, "limit": config.daily_limit, "period": "daily"},
                )
            )
        if week >= config.weekly_limit:
            flags.append(
                AbuseFlag(
                    recognition_id="",
                    flag_type=FlagType.FREQUENCY,
                    severity=FlagSeverity.CRITICAL,
                    description=f"Weekly recognition limit exceeded: {week}/{config.weekly_limit}",
                    metadata={"count": week, "limit": config.weekly_limit, "period": "weekly"},
                )
            )
        return flags

    def _check_content(
        self, giver_history: list[dict[str, Any]], reason: str, now: datetime
    ) -> list[AbuseFlag]:
        config = self._config
        text = reason.strip()
        flags = []

        if len(text) < config.min_reason_length:
            flags.append(
                AbuseFlag(
                    recognition_id="",
                    flag_type=FlagType.CONTENT,
                    severity=FlagSeverity.LOW,
                    description=(
                        f"Recognition reason too short: {len(text)} characters "
                        f"(minimum: {config.min_reason_length})"
                    ),
                    metadata={"length": len(text), "minimum": config.min_reason_length},
                )
            )
        elif len(text) < config.low_quality_reason_length and not matched_keywords(
            text, self._scoring
        ):
            flags.append(
                AbuseFlag(
                    recognition_id="",
                    flag_type=FlagType.CONTENT,
                    severity=FlagSeverity.LOW,
                    description="Short reason without any specific contribution",
                    metadata={"length": len(text)},
                )
            )

        since = now - timedelta(days=config.duplicate_window_days)
        lowered = text.lower()
        similar = sum(
            1
            for data in giver_history
            if _created_at(data) >= since
            and string_similarity(lowered, str(data.get("reason", "")).strip().lower())
            > config.duplicate_similarity
        )
        if similar >= config.max_duplicate_reasons:
            flags.append(
                AbuseFlag(
                    recognition_id="",
                    flag_type=FlagType.CONTENT,
                    severity=FlagSeverity.MEDIUM,
                    description=(
                        f"Duplicate/similar content detected: {similar} similar reasons "
                        f"in last {config.duplicate_window_days} days"
                    ),
                    metadata={"similar_count": similar},
                )
            )
        return flags

    def _check_weight(
        self, weight: float, evidence_count: int, giver_role: str | None
    ) -> list[AbuseFlag]:
        config = self._config
        flags = []

        if weight > config.evidenceless_weight_threshold and evidence_count == 0:
            flags.append(
                AbuseFlag(
                    recognition_id="",
                    flag_type=FlagType.EVIDENCE,
                    severity=(
                        FlagSeverity.HIGH
                        if weight > config.evidenceless_high_weight
                        else FlagSeverity.MEDIUM
                    ),
                    description=f"High weight ({weight}) without evidence (role: {giver_role})",
                    metadata={
                        "weight": weight,
                        "evidence_count": evidence_count,
                        "threshold": config.evidenceless_weight_threshold,
                    },
                )
            )

        expected = max_weight_for_role(giver_role, self._scoring)
        if weight - expected > config.weight_variance_threshold:
            flags.append(
                AbuseFlag(
                    recognition_id="",
                    flag_type=FlagType.WEIGHT_MANIPULATION,
                    severity=FlagSeverity.MEDIUM,
                    description=(
                        f"Unusual weight pattern: {weight} vs expected at most "
                        f"{expected} for {giver_role}"
                    ),
                    metadata={
                        "actual_weight": weight,
                        "expected_weight": expected,
                        "variance": round_weight(weight - expected),
                    },
                )
            )
        return flags

    def _score(self, base_weight: float, flags: list[AbuseFlag]) -> AbuseDetectionResult:
        """Aggregate severity and compute the adjusted weight."""
        if not flags:
            return AbuseDetectionResult(adjusted_weight=base_weight)

        config = self._config
        score = sum(config.severity_scores[flag.severity.value] for flag in flags)
        if score >= 20:
            severity = FlagSeverity.CRITICAL
        elif score >= 10:
            severity = FlagSeverity.HIGH
        elif score >= 5:
            severity = FlagSeverity.MEDIUM
        else:
            severity = FlagSeverity.LOW

        highest = max(flags, key=lambda flag: SEVERITY_ORDER[flag.severity]).severity
        penalty = config.severity_penalties[highest.value]
        adjusted = max(config.min_adjusted_weight, round_weight(base_weight * penalty))
        adjusted = min(adjusted, base_weight)

        for flag in flags:
            flag.original_weight = base_weight
            flag.adjusted_weight = adjusted
            ABUSE_FLAGS.labels(flag_type=flag.flag_type.value, severity=flag.severity.value).inc()

        reason_codes = list(dict.fromkeys(flag.reason_code for flag in flags))
        return AbuseDetectionResult(
            is_abusive=True,
            is_blocked=any(flag.flag_type in BLOCKING_FLAG_TYPES for flag in flags),
            adjusted_weight=adjusted,
            flags=flags,
            severity=severity,
            severity_score=score,
            reason_codes=reason_codes,
        )

    async def persist_flags(self, flags: list[AbuseFlag], giver_id: str | None = None) -> int:
        """Store flags for later review.

        Returns:
            Number of flags stored; failures are logged and skipped
        """
        stored = 0
        for flag in flags:
            try:
                await self._store.create(FLAG_COLLECTION, flag.id, flag.model_dump(mode="json"))
            except StoreUnavailableError as e:
                logger.error(
                    "abuse_flag_persist_failed",
                    recognition_id=flag.recognition_id,
                    flag_type=flag.flag_type.value,
                    error=str(e),
                )
                continue
            stored += 1

        if stored and self._audit is not None:
            await self._audit.emit(
                AuditEventCode.ABUSE_FLAGGED,
                actor_id=giver_id,
                target_id=flags[0].recognition_id,
                metadata={
                    "flag_count": stored,
                    "reason_codes": [flag.reason_code for flag in flags],
                },
            )
        return stored
