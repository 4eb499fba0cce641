"""Circuit breaker models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from kudos.config.models.resilience import BreakerConfig


class CircuitState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "CLOSED"
    """Calls pass through."""

    OPEN = "OPEN"
    """Calls fail fast until the cooldown expires."""

    HALF_OPEN = "HALF_OPEN"
    """One trial call at a time tests whether the dependency recovered."""


STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class StateChange(BaseModel):
    """One recorded transition."""

    from_state: CircuitState
    to_state: CircuitState
    changed_at: datetime


class CircuitBreakerState(BaseModel):
    """Process-local state of one breaker."""

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    successes_in_half_open: int = 0
    last_failure_at: datetime | None = None
    next_retry_at: datetime | None = None
    open_count: int = 0
    current_cooldown_seconds: float
    total_calls: int = 0
    total_failures: int = 0
    total_successes: int = 0
    total_rejections: int = 0


class CircuitBreakerStatus(BaseModel):
    """Snapshot reported by the registry."""

    name: str
    state: CircuitBreakerState
    config: BreakerConfig
    recent_changes: list[StateChange] = Field(default_factory=list)


class HealthStatus(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"


class RegistryHealth(BaseModel):
    """Aggregate breaker health."""

    total: int
    closed: int
    half_open: int
    open: int
    healthy: bool
    status: HealthStatus
