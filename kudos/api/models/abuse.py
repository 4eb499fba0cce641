"""Abuse review request models."""

from pydantic import BaseModel, Field


class FlagResolve(BaseModel):
    """Confirm a flag, optionally lowering the recognition's weight."""

    adjusted_weight: float | None = Field(default=None, ge=0)
    note: str | None = None


class FlagDismiss(BaseModel):
    """Dismiss a flag as a false positive."""

    note: str | None = None
