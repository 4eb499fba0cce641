"""Recognition models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

RECOGNITION_COLLECTION = "recognitions"


class Visibility(str, Enum):
    PRIVATE = "PRIVATE"
    TEAM = "TEAM"
    PUBLIC = "PUBLIC"


class RecognitionStatus(str, Enum):
    """Manager verification state."""

    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class Recognition(BaseModel):
    """A weighted endorsement from one coworker to another.

    original_weight is the scored weight before any abuse adjustment;
    weight is never raised above it.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    giver_id: str
    organization_id: str
    recipient_id: str
    reason: str
    tags: list[str] = Field(default_factory=list)
    visibility: Visibility = Visibility.PUBLIC
    evidence_ids: list[str] = Field(default_factory=list)
    weight: float
    original_weight: float
    abuse_flag_count: int = 0
    status: RecognitionStatus = RecognitionStatus.PENDING
    source: str = "api"
    created_at: datetime
    updated_at: datetime


class CreateRecognitionCommand(BaseModel):
    """Input to RecognitionService.create_recognition."""

    giver_id: str
    giver_role: str = "USER"
    organization_id: str
    recipient_id: str
    reason: str
    tags: list[str] = Field(default_factory=list)
    visibility: Visibility = Visibility.PUBLIC
    evidence_ids: list[str] = Field(default_factory=list)
    source: str = "api"
    client_token: str | None = Field(
        default=None, description="Idempotency key supplied by the client"
    )


class AbuseSummary(BaseModel):
    """Abuse outcome attached to a created recognition."""

    flagged: bool = False
    severity: str | None = None
    reason_codes: list[str] = Field(default_factory=list)
    degraded: bool = False


class CreateRecognitionResult(BaseModel):
    """Response of a create; this is what the idempotency guard replays."""

    recognition: Recognition
    abuse: AbuseSummary = Field(default_factory=AbuseSummary)
    jobs: list[str] = Field(default_factory=list, description="Follow-up job ids")
    replayed: bool = Field(
        default=False,
        exclude=True,
        description="Set when served from the idempotency snapshot; never stored",
    )
