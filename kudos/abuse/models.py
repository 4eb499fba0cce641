"""Abuse flag models and enums."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class FlagType(str, Enum):
    RECIPROCITY = "RECIPROCITY"
    FREQUENCY = "FREQUENCY"
    CONTENT = "CONTENT"
    EVIDENCE = "EVIDENCE"
    WEIGHT_MANIPULATION = "WEIGHT_MANIPULATION"
    MANUAL = "MANUAL"


# Flag types that reject the recognition instead of down-weighting it
BLOCKING_FLAG_TYPES = frozenset({FlagType.RECIPROCITY, FlagType.FREQUENCY})


class FlagSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


SEVERITY_ORDER = {
    FlagSeverity.LOW: 0,
    FlagSeverity.MEDIUM: 1,
    FlagSeverity.HIGH: 2,
    FlagSeverity.CRITICAL: 3,
}


class DetectionMethod(str, Enum):
    AUTOMATIC = "AUTOMATIC"
    REPORTED = "REPORTED"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class FlagStatus(str, Enum):
    """Review lifecycle: PENDING -> UNDER_REVIEW -> RESOLVED | DISMISSED."""

    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


class AbuseFlag(BaseModel):
    """A suspicion raised against one recognition."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    recognition_id: str
    flag_type: FlagType
    severity: FlagSeverity
    detection_method: DetectionMethod = DetectionMethod.AUTOMATIC
    status: FlagStatus = FlagStatus.PENDING
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    original_weight: float | None = None
    adjusted_weight: float | None = None
    flagged_by: str = "system"
    flagged_at: datetime | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    resolution_note: str | None = None

    @property
    def reason_code(self) -> str:
        return f"{self.flag_type.value}_{self.severity.value}"


class AbuseDetectionResult(BaseModel):
    """Outcome of running the heuristics on a candidate recognition."""

    is_abusive: bool = False
    is_blocked: bool = False
    adjusted_weight: float
    flags: list[AbuseFlag] = Field(default_factory=list)
    severity: FlagSeverity | None = None
    severity_score: int = 0
    reason_codes: list[str] = Field(default_factory=list)
    degraded: bool = Field(
        default=False,
        description="True when history could not be read and no heuristics ran",
    )


class AbuseReviewSummary(BaseModel):
    """Counts for the abuse review report."""

    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
    by_severity: dict[str, int] = Field(default_factory=dict)
    total_weight_reduced: float = 0.0
