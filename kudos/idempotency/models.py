"""Idempotency models and enums."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class IdempotencyStatus(str, Enum):
    """Outcome of an idempotency check."""

    NEW = "new"
    DUPLICATE = "duplicate"
    IN_FLIGHT = "in_flight"
    SKIPPED = "skipped"
    DEGRADED = "degraded"


class IdempotencyRecord(BaseModel):
    """Stored reservation or committed response for one client token.

    A record without a response snapshot is a placeholder for a request
    that is still being processed.
    """

    composite_key: str
    client_token: str
    actor_id: str
    operation: str
    response_snapshot: dict[str, Any] | None = None
    created_at: datetime
    expires_at: datetime

    @property
    def is_committed(self) -> bool:
        return self.response_snapshot is not None


class IdempotencyCheckResult(BaseModel):
    """Result of check_and_reserve.

    is_duplicate is True only when a committed snapshot is being
    replayed; cached_response is that snapshot, unchanged.
    """

    status: IdempotencyStatus = Field(description="Outcome of the check")
    is_duplicate: bool = Field(default=False)
    cached_response: dict[str, Any] | None = Field(
        default=None, description="Committed response if status is DUPLICATE"
    )
    composite_key: str | None = None
