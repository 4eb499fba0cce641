"""Weight scoring, abuse detection, and recognition input configuration."""

from typing import Literal

from pydantic import BaseModel, Field

Severity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]

DEFAULT_ROLE_WEIGHTS: dict[str, float] = {
    "ADMIN": 2.0,
    "MANAGER": 1.5,
    "USER": 1.0,
    "BASIC": 1.0,
}

DEFAULT_QUALITY_KEYWORDS: tuple[str, ...] = (
    "impact",
    "helped",
    "improved",
    "collaborated",
    "delivered",
    "solved",
)


class ScoringConfig(BaseModel):
    """Inputs to the deterministic weight formula."""

    role_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_ROLE_WEIGHTS),
        description="Base multiplier per giver role (upper-case keys)",
    )
    default_role_weight: float = Field(default=1.0, gt=0)
    long_reason_length: int = Field(default=100, gt=0)
    long_reason_bonus: float = Field(default=0.2, ge=0)
    min_tags_for_bonus: int = Field(default=2, ge=1)
    tag_bonus: float = Field(default=0.1, ge=0)
    evidence_bonus: float = Field(default=0.5, ge=0)
    keyword_bonus: float = Field(default=0.1, ge=0)
    quality_keywords: tuple[str, ...] = Field(default=DEFAULT_QUALITY_KEYWORDS)


class AbuseConfig(BaseModel):
    """Thresholds for the abuse heuristics."""

    enabled: bool = Field(default=True, description="Run abuse detection")
    reciprocity_window_days: int = Field(default=7, gt=0)
    reciprocity_threshold: int = Field(
        default=3,
        ge=1,
        description="Prior recognitions to the same recipient that block the next one",
    )
    mutual_exchange_threshold: int = Field(default=3, ge=1)
    daily_limit: int = Field(default=10, ge=1)
    weekly_limit: int = Field(default=50, ge=1)
    min_reason_length: int = Field(default=20, ge=0)
    low_quality_reason_length: int = Field(
        default=40,
        ge=0,
        description="Reasons shorter than this without a quality keyword are flagged",
    )
    duplicate_window_days: int = Field(default=30, gt=0)
    duplicate_similarity: float = Field(default=0.8, gt=0, le=1)
    max_duplicate_reasons: int = Field(default=3, ge=1)
    evidenceless_weight_threshold: float = Field(default=2.5, gt=0)
    evidenceless_high_weight: float = Field(default=4.0, gt=0)
    weight_variance_threshold: float = Field(default=0.5, ge=0)
    severity_scores: dict[Severity, int] = Field(
        default_factory=lambda: {"LOW": 1, "MEDIUM": 5, "HIGH": 10, "CRITICAL": 20}
    )
    severity_penalties: dict[Severity, float] = Field(
        default_factory=lambda: {"LOW": 0.9, "MEDIUM": 0.7, "HIGH": 0.5, "CRITICAL": 0.25}
    )
    min_adjusted_weight: float = Field(default=0.1, ge=0)
    history_limit: int = Field(
        default=500,
        gt=0,
        description="Maximum prior recognitions read per heuristic",
    )


class RecognitionConfig(BaseModel):
    """Input constraints on recognition creation."""

    min_reason_length: int = Field(default=20, ge=1)
    max_reason_length: int = Field(default=2000, gt=0)
    min_tags: int = Field(default=1, ge=0)
    max_tags: int = Field(default=3, ge=1)
    max_evidence: int = Field(default=10, ge=0)
    notify_recipient: bool = Field(default=True)
    verification_weight_threshold: float = Field(
        default=2.0,
        gt=0,
        description="Recognitions at or above this weight request manager verification",
    )
