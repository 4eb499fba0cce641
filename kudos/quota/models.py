"""Quota models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from kudos.config.models.admission import QuotaPeriod


class QuotaRecord(BaseModel):
    """Usage of one action type by one organization.

    Stored under the id "{organization_id}:{action_type}".
    """

    organization_id: str
    action_type: str
    ceiling: int
    used: int = 0
    period: QuotaPeriod = "daily"
    reset_at: datetime | None = None
    last_updated: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.ceiling - self.used)


class QuotaCheckResult(BaseModel):
    """Result of a quota check or consume."""

    allowed: bool
    action_type: str
    ceiling: int
    used: int
    remaining: int
    reset_at: datetime | None = None
    degraded: bool = Field(
        default=False,
        description="True when the store was unreachable and the check failed open",
    )


class IncreaseStatus(str, Enum):
    """Lifecycle of a quota increase request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class QuotaIncreaseRequest(BaseModel):
    """A request to raise an organization's ceiling for one action."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    organization_id: str
    action_type: str
    current_ceiling: int
    requested_ceiling: int
    justification: str
    status: IncreaseStatus = IncreaseStatus.PENDING
    requested_by: str
    requested_at: datetime
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_note: str | None = None
    applied_at: datetime | None = None


class QuotaState(str, Enum):
    """Usage band reported by get_status."""

    OK = "OK"
    WARNING = "WARNING"
    EXCEEDED = "EXCEEDED"


class QuotaUsage(BaseModel):
    """Per-action usage line of a status report."""

    action_type: str
    used: int
    ceiling: int
    remaining: int
    percentage: float
    state: QuotaState
    reset_at: datetime | None = None


class QuotaAlert(BaseModel):
    """An action at or near its ceiling."""

    type: QuotaState
    action_type: str
    percentage: float
    message: str


class QuotaStatusReport(BaseModel):
    """Usage summary for one organization."""

    organization_id: str
    generated_at: datetime
    quotas: dict[str, QuotaUsage] = Field(default_factory=dict)
    alerts: list[QuotaAlert] = Field(default_factory=list)

    @property
    def exceeded_count(self) -> int:
        return sum(1 for alert in self.alerts if alert.type == QuotaState.EXCEEDED)

    @property
    def warning_count(self) -> int:
        return sum(1 for alert in self.alerts if alert.type == QuotaState.WARNING)

    @property
    def all_clear(self) -> bool:
        return not self.alerts


class QuotaResetSummary(BaseModel):
    """Outcome of a periodic batch reset."""

    period: QuotaPeriod
    reset_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    completed_at: datetime
