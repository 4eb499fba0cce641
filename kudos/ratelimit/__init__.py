"""Fixed-window rate limiting."""

from kudos.ratelimit.limiter import (
    BREACH_COLLECTION,
    COUNTER_COLLECTION,
    RateLimiter,
    window_bounds,
)
from kudos.ratelimit.models import RateLimitBreach, RateLimitCounter, RateLimitResult

__all__ = [
    "BREACH_COLLECTION",
    "COUNTER_COLLECTION",
    "RateLimitBreach",
    "RateLimitCounter",
    "RateLimitResult",
    "RateLimiter",
    "window_bounds",
]
