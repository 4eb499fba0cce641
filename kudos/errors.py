"""Error taxonomy for the recognition control plane.

All errors inherit from KudosError, which carries the HTTP status code,
a machine-readable error code, and whether a retry may succeed. The API
exception handler turns these into ErrorResponse bodies.
"""

from datetime import datetime
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes shared by the service and the API."""

    INVALID_REQUEST = "INVALID_REQUEST"
    """Caller input is malformed; nothing was written."""

    NOT_FOUND = "NOT_FOUND"
    """The referenced record does not exist."""

    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    """The actor exceeded a rate limit window."""

    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    """The organization exhausted a quota ceiling."""

    RECOGNITION_BLOCKED = "RECOGNITION_BLOCKED"
    """Abuse heuristics blocked the recognition."""

    REQUEST_IN_PROGRESS = "REQUEST_IN_PROGRESS"
    """A request with the same idempotency key is still being processed."""

    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    """A conditional write lost too many races."""

    INVALID_TRANSITION = "INVALID_TRANSITION"
    """A workflow record is not in a state that allows the operation."""

    LEASE_LOST = "LEASE_LOST"
    """The worker no longer owns the job it tried to update."""

    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    """A downstream dependency is failing fast behind an open breaker."""

    DEPENDENCY_TIMEOUT = "DEPENDENCY_TIMEOUT"
    """A downstream dependency did not answer in time."""

    DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"
    """A downstream dependency (including the store) is unavailable."""

    PERMANENT_FAILURE = "PERMANENT_FAILURE"
    """A job exhausted its retries and was dead-lettered."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    """An unexpected internal error occurred."""


class KudosError(Exception):
    """Base exception for all control-plane errors."""

    status_code: int = 500
    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_metadata(self) -> dict[str, Any]:
        """Structured details a caller can show to the end user."""
        return {}


class ValidationError(KudosError):
    """Raised when caller input is malformed."""

    status_code = 400
    error_code = ErrorCode.INVALID_REQUEST

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_metadata(self) -> dict[str, Any]:
        return {"field": self.field} if self.field else {}


class NotFoundError(KudosError):
    """Raised when a referenced record does not exist."""

    status_code = 404
    error_code = ErrorCode.NOT_FOUND


class AdmissionDeniedError(KudosError):
    """Raised when an admission check rejects the request."""

    status_code = 429
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        remaining: int = 0,
        reset_at: datetime | None = None,
        retry_after: int | None = None,
        limit_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.remaining = remaining
        self.reset_at = reset_at
        self.retry_after = retry_after
        self.limit_type = limit_type

    def to_metadata(self) -> dict[str, Any]:
        return {
            "limit_type": self.limit_type,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
            "retry_after": self.retry_after,
        }


class RateLimitExceededError(AdmissionDeniedError):
    """Raised when an actor exceeds a rate limit window."""

    error_code = ErrorCode.RATE_LIMIT_EXCEEDED


class QuotaExceededError(AdmissionDeniedError):
    """Raised when an organization quota would be exceeded."""

    error_code = ErrorCode.QUOTA_EXCEEDED


class RecognitionBlockedError(AdmissionDeniedError):
    """Raised when abuse detection hard-blocks a recognition."""

    error_code = ErrorCode.RECOGNITION_BLOCKED
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        flags: list[dict[str, Any]] | None = None,
        severity: str | None = None,
        reason_codes: list[str] | None = None,
    ) -> None:
        super().__init__(message, limit_type="abuse")
        self.flags = flags or []
        self.severity = severity
        self.reason_codes = reason_codes or []

    def to_metadata(self) -> dict[str, Any]:
        return {
            "flags": self.flags,
            "severity": self.severity,
            "reason_codes": self.reason_codes,
        }


class RequestInProgressError(KudosError):
    """Raised when the same idempotency key is still being processed."""

    status_code = 409
    error_code = ErrorCode.REQUEST_IN_PROGRESS
    retryable = True


class ConcurrencyConflictError(KudosError):
    """Raised when a conditional write keeps losing to concurrent writers."""

    status_code = 409
    error_code = ErrorCode.CONCURRENCY_CONFLICT
    retryable = True


class InvalidTransitionError(KudosError):
    """Raised when a workflow record cannot move to the requested state."""

    status_code = 409
    error_code = ErrorCode.INVALID_TRANSITION

    def __init__(self, message: str, current: str | None = None) -> None:
        super().__init__(message)
        self.current = current

    def to_metadata(self) -> dict[str, Any]:
        return {"current_status": self.current}


class LeaseLostError(KudosError):
    """Raised when a worker updates a job it no longer owns."""

    status_code = 409
    error_code = ErrorCode.LEASE_LOST


class DependencyUnavailableError(KudosError):
    """Raised when a downstream dependency cannot be used."""

    status_code = 503
    error_code = ErrorCode.DEPENDENCY_UNAVAILABLE
    retryable = True

    def __init__(self, message: str, dependency: str | None = None) -> None:
        super().__init__(message)
        self.dependency = dependency

    def to_metadata(self) -> dict[str, Any]:
        return {"dependency": self.dependency}


class CircuitOpenError(DependencyUnavailableError):
    """Raised when a call is rejected by an open circuit breaker."""

    error_code = ErrorCode.CIRCUIT_OPEN

    def __init__(self, dependency: str, retry_at: datetime | None = None) -> None:
        super().__init__(
            f"Circuit breaker for {dependency} is open, service unavailable",
            dependency=dependency,
        )
        self.retry_at = retry_at

    def to_metadata(self) -> dict[str, Any]:
        return {
            "dependency": self.dependency,
            "retry_at": self.retry_at.isoformat() if self.retry_at else None,
        }


class DependencyTimeoutError(DependencyUnavailableError):
    """Raised when a downstream call exceeds its timeout."""

    error_code = ErrorCode.DEPENDENCY_TIMEOUT


class StoreUnavailableError(DependencyUnavailableError):
    """Raised when the document store cannot be reached."""

    def __init__(self, message: str) -> None:
        super().__init__(message, dependency="store")


class PermanentFailureError(KudosError):
    """Raised when a job has exhausted its retry budget."""

    status_code = 500
    error_code = ErrorCode.PERMANENT_FAILURE

    def __init__(self, message: str, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id

    def to_metadata(self) -> dict[str, Any]:
        return {"job_id": self.job_id}
