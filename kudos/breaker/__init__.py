"""Circuit breakers for external dependencies."""

from kudos.breaker.breaker import CircuitBreaker
from kudos.breaker.models import (
    CircuitBreakerState,
    CircuitBreakerStatus,
    CircuitState,
    HealthStatus,
    RegistryHealth,
    StateChange,
)
from kudos.breaker.registry import CircuitBreakerRegistry

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitBreakerStatus",
    "CircuitState",
    "HealthStatus",
    "RegistryHealth",
    "StateChange",
]
