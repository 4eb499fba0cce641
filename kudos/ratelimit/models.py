"""Rate limiting models."""

from datetime import datetime

from pydantic import BaseModel, Field


class RateLimitResult(BaseModel):
    """Result of a rate limit check."""

    allowed: bool = Field(description="Whether the call was admitted")
    limit: int = Field(description="Maximum calls in the window")
    count: int = Field(description="Admitted calls in the current window")
    remaining: int = Field(description="Calls left in the current window")
    reset_at: datetime = Field(description="When the current window ends")
    retry_after: int | None = Field(
        default=None, description="Seconds to wait before retrying when rejected"
    )
    limit_type: str = "custom"


class RateLimitCounter(BaseModel):
    """Admitted calls for one subject in one fixed window.

    The document id is "{subject_key}:{window_start}", so every window
    gets a fresh counter and an old window can never be reset twice.
    """

    subject_key: str
    limit_type: str
    window_start: datetime
    count: int = 0
    limit: int
    reset_at: datetime


class RateLimitBreach(BaseModel):
    """Audit record written when a call is rejected."""

    limit_key: str
    limit_type: str
    breached_at: datetime
    reset_at: datetime
    count: int
    limit: int
