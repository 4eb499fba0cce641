"""Recognition weight scoring and abuse detection."""

from kudos.abuse.detector import FLAG_COLLECTION, AbuseDetector
from kudos.abuse.models import (
    AbuseDetectionResult,
    AbuseFlag,
    AbuseReviewSummary,
    DetectionMethod,
    FlagSeverity,
    FlagStatus,
    FlagType,
)
from kudos.abuse.review import AbuseReviewService
from kudos.abuse.weights import compute_weight, round_weight, string_similarity

__all__ = [
    "FLAG_COLLECTION",
    "AbuseDetectionResult",
    "AbuseDetector",
    "AbuseFlag",
    "AbuseReviewService",
    "AbuseReviewSummary",
    "DetectionMethod",
    "FlagSeverity",
    "FlagStatus",
    "FlagType",
    "compute_weight",
    "round_weight",
    "string_similarity",
]
