"""Error response models for consistent API error handling."""

from typing import Any

from pydantic import BaseModel

from kudos.errors import ErrorCode


class ErrorDetail(BaseModel):
    """Detail about a specific validation error."""

    field: str | None = None
    message: str


class ErrorBody(BaseModel):
    """Error body carried by every non-2xx response."""

    code: ErrorCode
    message: str
    details: list[ErrorDetail] | None = None
    metadata: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Top-level error response wrapper.

    Example:
        {
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": "Rate limit exceeded for recognition_daily",
                "metadata": {"remaining": 0, "retry_after": 3600}
            }
        }
    """

    error: ErrorBody
