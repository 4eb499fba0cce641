"""Circuit breaker configuration."""

from pydantic import BaseModel, Field


class BreakerConfig(BaseModel):
    """Thresholds for one dependency's circuit breaker."""

    failure_threshold: int = Field(default=5, ge=1)
    success_threshold: int = Field(default=2, ge=1)
    cooldown_seconds: float = Field(default=60.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_cooldown_seconds: float = Field(default=600.0, gt=0)
    call_timeout_seconds: float = Field(default=10.0, gt=0)


DEFAULT_BREAKERS: dict[str, BreakerConfig] = {
    "slack": BreakerConfig(
        failure_threshold=5, success_threshold=3, cooldown_seconds=30, backoff_multiplier=2
    ),
    "teams": BreakerConfig(
        failure_threshold=5, success_threshold=3, cooldown_seconds=30, backoff_multiplier=2
    ),
    "email": BreakerConfig(
        failure_threshold=3, success_threshold=2, cooldown_seconds=60, backoff_multiplier=2
    ),
    "database": BreakerConfig(
        failure_threshold=10, success_threshold=5, cooldown_seconds=20, backoff_multiplier=1.5
    ),
    "storage": BreakerConfig(
        failure_threshold=8, success_threshold=4, cooldown_seconds=30, backoff_multiplier=2
    ),
}


class BreakersConfig(BaseModel):
    """Per-dependency breaker configuration."""

    dependencies: dict[str, BreakerConfig] = Field(
        default_factory=lambda: dict(DEFAULT_BREAKERS),
        description="Breaker settings keyed by dependency name",
    )
    default: BreakerConfig = Field(
        default_factory=BreakerConfig,
        description="Settings for dependencies registered at runtime",
    )
