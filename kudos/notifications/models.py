"""Notification models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class NotificationKind(str, Enum):
    RECOGNITION_RECEIVED = "recognition_received"
    VERIFICATION_REQUESTED = "verification_requested"


class NotificationEvent(BaseModel):
    """What happened, without any contact details.

    Channels resolve recipients on their side from the ids.
    """

    kind: NotificationKind
    recognition_id: str
    organization_id: str
    giver_id: str
    recipient_id: str
    weight: float
    tags: list[str] = Field(default_factory=list)
    occurred_at: datetime


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"
    CIRCUIT_OPEN = "circuit_open"


class DeliveryResult(BaseModel):
    """Outcome of posting an event to one channel."""

    channel: str
    status: DeliveryStatus
    status_code: int | None = None
    response_time_ms: int | None = None
    error: str | None = None
    retry: bool = False
