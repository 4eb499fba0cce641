"""Request deduplication by client token."""

from kudos.idempotency.guard import IDEMPOTENCY_COLLECTION, IdempotencyGuard, make_composite_key
from kudos.idempotency.models import (
    IdempotencyCheckResult,
    IdempotencyRecord,
    IdempotencyStatus,
)

__all__ = [
    "IDEMPOTENCY_COLLECTION",
    "IdempotencyCheckResult",
    "IdempotencyGuard",
    "IdempotencyRecord",
    "IdempotencyStatus",
    "make_composite_key",
]
