"""Organization quotas and increase requests."""

from kudos.quota.manager import (
    INCREASE_COLLECTION,
    QUOTA_COLLECTION,
    QuotaManager,
    next_reset,
)
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

__all__ = [
    "INCREASE_COLLECTION",
    "QUOTA_COLLECTION",
    "IncreaseStatus",
    "QuotaAlert",
    "QuotaCheckResult",
    "QuotaIncreaseRequest",
    "QuotaManager",
    "QuotaRecord",
    "QuotaResetSummary",
    "QuotaState",
    "QuotaStatusReport",
    "QuotaUsage",
    "next_reset",
]
