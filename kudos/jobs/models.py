"""Job queue models and enums."""

from datetime import datetime
from enum import Enum, IntEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Job lifecycle.

    pending -> processing -> completed
                          -> retrying -> processing ...
                          -> dead_letter
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    DEAD_LETTER = "dead_letter"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.DEAD_LETTER})


class JobPriority(IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3


class JobType(str, Enum):
    """Job types with built-in handlers."""

    NOTIFY_RECIPIENT = "notify_recipient"
    MANAGER_VERIFICATION = "manager_verification"
    IDEMPOTENCY_SWEEP = "idempotency_sweep"
    RATE_LIMIT_SWEEP = "rate_limit_sweep"
    QUOTA_RESET = "quota_reset"
    JOB_CLEANUP = "job_cleanup"


class Job(BaseModel):
    """A durable unit of deferred work.

    A processing job has exactly one lease_owner until lease_expires_at;
    retries never exceeds max_retries.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    job_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    priority: JobPriority = JobPriority.NORMAL
    retries: int = 0
    max_retries: int = 3
    enqueued_at: datetime
    available_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_error: str | None = None
    result: dict[str, Any] | None = None
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class QueueStats(BaseModel):
    """Job counts by status and by type."""

    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
