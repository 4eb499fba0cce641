"""Quota request models."""

from pydantic import BaseModel, Field


class QuotaIncreaseCreate(BaseModel):
    """Request body for asking a higher ceiling."""

    action_type: str = Field(..., min_length=1)
    requested_ceiling: int = Field(..., gt=0)
    justification: str = Field(..., min_length=1, max_length=2000)


class QuotaIncreaseReview(BaseModel):
    """Approve or reject a pending increase request."""

    decision: str = Field(..., description="approved or rejected")
    note: str | None = Field(default=None, max_length=2000)
