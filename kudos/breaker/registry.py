"""Registry of circuit breakers keyed by dependency name."""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from kudos.breaker.breaker import CircuitBreaker, Fallback
from kudos.breaker.models import (
    CircuitBreakerStatus,
    CircuitState,
    HealthStatus,
    RegistryHealth,
)
from kudos.clock import Clock, SystemClock
from kudos.config.models.resilience import BreakerConfig, BreakersConfig
from kudos.errors import NotFoundError
from kudos.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitBreakerRegistry:
    """Holds one CircuitBreaker per dependency.

    Built once at startup and passed to every call site that talks to an
    external dependency. Dependencies without configured thresholds get
    BreakersConfig.default.
    """

    def __init__(self, config: BreakersConfig | None = None, clock: Clock | None = None) -> None:
        self._config = config or BreakersConfig()
        self._clock = clock or SystemClock()
        self._breakers: dict[str, CircuitBreaker] = {}
        for name, breaker_config in self._config.dependencies.items():
            self.register(name, breaker_config)

    def register(self, name: str, config: BreakerConfig | None = None) -> CircuitBreaker:
        """Create (or replace) the breaker for a dependency."""
        breaker = CircuitBreaker(name, config or self._config.default, clock=self._clock)
        self._breakers[name] = breaker
        logger.debug("circuit_breaker_registered", dependency=name)
        return breaker

    def get(self, name: str) -> CircuitBreaker:
        """Get the breaker for a dependency, creating it with defaults if needed."""
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = self.register(name)
        return breaker

    def names(self) -> list[str]:
        return sorted(self._breakers)

    async def call_with_circuit_breaker(
        self,
        name: str,
        fn: Callable[[], Awaitable[T]],
        fallback: Fallback | None = None,
    ) -> T | Any:
        """Run fn under the named dependency's breaker."""
        return await self.get(name).call(fn, fallback=fallback)

    def status(self) -> dict[str, CircuitBreakerStatus]:
        return {name: breaker.status() for name, breaker in sorted(self._breakers.items())}

    def health(self) -> RegistryHealth:
        states = [breaker.state for breaker in self._breakers.values()]
        open_count = states.count(CircuitState.OPEN)
        return RegistryHealth(
            total=len(states),
            closed=states.count(CircuitState.CLOSED),
            half_open=states.count(CircuitState.HALF_OPEN),
            open=open_count,
            healthy=open_count == 0,
            status=HealthStatus.DEGRADED if open_count else HealthStatus.HEALTHY,
        )

    async def reset(self, name: str) -> None:
        """Force one breaker closed.

        Raises:
            NotFoundError: If no breaker is registered under name
        """
        breaker = self._breakers.get(name)
        if breaker is None:
            raise NotFoundError(f"No circuit breaker registered for {name}")
        await breaker.reset()

    async def reset_all(self) -> None:
        for breaker in self._breakers.values():
            await breaker.reset()
