"""Audit event models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class AuditEventCode(str, Enum):
    """Event codes written to the audit trail."""

    RECOGNITION_CREATED = "RECOGNITION_CREATED"
    RECOGNITION_BLOCKED = "RECOGNITION_BLOCKED"
    RECOGNITION_VERIFIED = "RECOGNITION_VERIFIED"
    RECOGNITION_ERROR = "RECOGNITION_ERROR"
    RECOGNITION_WEIGHT_ADJUSTED = "RECOGNITION_WEIGHT_ADJUSTED"
    RATE_LIMIT_BREACH = "RATE_LIMIT_BREACH"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    QUOTA_INCREASE_REQUESTED = "QUOTA_INCREASE_REQUESTED"
    QUOTA_INCREASE_REVIEWED = "QUOTA_INCREASE_REVIEWED"
    QUOTA_CEILING_APPLIED = "QUOTA_CEILING_APPLIED"
    ABUSE_FLAGGED = "ABUSE_FLAGGED"
    ABUSE_REVIEWED = "ABUSE_REVIEWED"
    ABUSE_DISMISSED = "ABUSE_DISMISSED"
    ABUSE_DETECTION_ERROR = "ABUSE_DETECTION_ERROR"
    JOB_DEAD_LETTERED = "JOB_DEAD_LETTERED"


class AuditEvent(BaseModel):
    """A single audit trail entry.

    Identifiers are stored only as truncated hashes.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    event_code: str
    actor_id_hash: str | None = None
    target_id_hash: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
