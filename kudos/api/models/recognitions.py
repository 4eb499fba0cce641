"""Recognition request models."""

from pydantic import BaseModel, Field

from kudos.recognition.models import Visibility


class RecognitionCreate(BaseModel):
    """Request body for creating a recognition.

    The giver, organization, and role come from gateway headers.
    """

    recipient_id: str = Field(..., min_length=1)
    reason: str
    tags: list[str] = Field(default_factory=list)
    visibility: Visibility = Visibility.PUBLIC
    evidence_ids: list[str] = Field(default_factory=list)


class RecognitionVerify(BaseModel):
    """Manager verification decision."""

    approved: bool
