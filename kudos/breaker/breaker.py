"""Circuit breaker for calls to an external dependency.

CLOSED passes calls through and counts consecutive failures. Reaching
failure_threshold opens the circuit; OPEN rejects calls with
CircuitOpenError until next_retry_at. The first call after that moves
to HALF_OPEN and becomes the only trial in flight. success_threshold
trial successes close the circuit; a trial failure reopens it with the
cooldown multiplied by backoff_multiplier, up to max_cooldown_seconds.
"""

import asyncio
import inspect
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, TypeVar

from kudos.breaker.models import (
    STATE_GAUGE_VALUES,
    CircuitBreakerState,
    CircuitBreakerStatus,
    CircuitState,
    StateChange,
)
from kudos.clock import Clock, SystemClock
from kudos.config.models.resilience import BreakerConfig
from kudos.errors import CircuitOpenError, DependencyTimeoutError
from kudos.observability.logging import get_logger
from kudos.observability.metrics import (
    BREAKER_REJECTIONS,
    BREAKER_STATE,
    BREAKER_TRANSITIONS,
    DEPENDENCY_CALL_LATENCY,
)

logger = get_logger(__name__)

T = TypeVar("T")

Fallback = Callable[[], Any]

HISTORY_SIZE = 50


async def _run_fallback(fallback: Fallback) -> Any:
    result = fallback()
    if inspect.isawaitable(result):
        return await result
    return result


class CircuitBreaker:
    """Circuit breaker guarding a single dependency.

    State lives in process memory and is guarded by an asyncio.Lock; the
    protected call itself runs outside the lock.
    """

    def __init__(
        self,
        name: str,
        config: BreakerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.name = name
        self.config = config or BreakerConfig()
        self._clock = clock or SystemClock()
        self._lock = asyncio.Lock()
        self._state = CircuitBreakerState(current_cooldown_seconds=self.config.cooldown_seconds)
        self._trial_in_flight = False
        self._history: deque[StateChange] = deque(maxlen=HISTORY_SIZE)
        BREAKER_STATE.labels(dependency=name).set(STATE_GAUGE_VALUES[CircuitState.CLOSED])

    @property
    def state(self) -> CircuitState:
        return self._state.state

    def _transition(self, to_state: CircuitState) -> None:
        from_state = self._state.state
        if from_state == to_state:
            return
        self._state.state = to_state
        self._history.append(
            StateChange(from_state=from_state, to_state=to_state, changed_at=self._clock.now())
        )
        BREAKER_STATE.labels(dependency=self.name).set(STATE_GAUGE_VALUES[to_state])
        BREAKER_TRANSITIONS.labels(
            dependency=self.name,
            from_state=from_state.value,
            to_state=to_state.value,
        ).inc()
        log = logger.warning if to_state == CircuitState.OPEN else logger.info
        log(
            "circuit_breaker_state_changed",
            dependency=self.name,
            from_state=from_state.value,
            to_state=to_state.value,
            next_retry_at=(
                self._state.next_retry_at.isoformat() if self._state.next_retry_at else None
            ),
        )

    def _open(self, cooldown_seconds: float) -> None:
        self._state.current_cooldown_seconds = cooldown_seconds
        self._state.next_retry_at = self._clock.now() + timedelta(seconds=cooldown_seconds)
        self._state.successes_in_half_open = 0
        self._state.open_count += 1
        self._transition(CircuitState.OPEN)

    def _admit(self) -> tuple[bool, bool]:
        """Decide whether a call may run. Caller holds the lock.

        Returns:
            (admitted, is_trial)
        """
        self._state.total_calls += 1
        if self._state.state == CircuitState.OPEN:
            if self._state.next_retry_at is None or self._clock.now() < self._state.next_retry_at:
                return False, False
            self._transition(CircuitState.HALF_OPEN)

        if self._state.state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                return False, False
            self._trial_in_flight = True
            return True, True

        return True, False

    async def _on_success(self, is_trial: bool) -> None:
        async with self._lock:
            self._state.total_successes += 1
            if is_trial:
                self._trial_in_flight = False
                if self._state.state != CircuitState.HALF_OPEN:
                    return
                self._state.successes_in_half_open += 1
                if self._state.successes_in_half_open >= self.config.success_threshold:
                    self._state.consecutive_failures = 0
                    self._state.successes_in_half_open = 0
                    self._state.next_retry_at = None
                    self._state.current_cooldown_seconds = self.config.cooldown_seconds
                    self._transition(CircuitState.CLOSED)
            elif self._state.state == CircuitState.CLOSED:
                self._state.consecutive_failures = 0

    async def _on_failure(self, is_trial: bool, error: BaseException) -> None:
        async with self._lock:
            self._state.total_failures += 1
            self._state.consecutive_failures += 1
            self._state.last_failure_at = self._clock.now()
            logger.warning(
                "circuit_breaker_call_failed",
                dependency=self.name,
                state=self._state.state.value,
                consecutive_failures=self._state.consecutive_failures,
                error=str(error),
                error_type=type(error).__name__,
            )
            if is_trial:
                self._trial_in_flight = False
                if self._state.state == CircuitState.HALF_OPEN:
                    self._open(
                        min(
                            self._state.current_cooldown_seconds * self.config.backoff_multiplier,
                            self.config.max_cooldown_seconds,
                        )
                    )
            elif (
                self._state.state == CircuitState.CLOSED
                and self._state.consecutive_failures >= self.config.failure_threshold
            ):
                self._open(self.config.cooldown_seconds)

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        fallback: Fallback | None = None,
    ) -> T | Any:
        """Run fn under the breaker.

        Args:
            fn: Zero-argument coroutine function performing the call
            fallback: Optional callable used when the call is rejected or fails

        Returns:
            fn's result, or the fallback's result

        Raises:
            CircuitOpenError: If the circuit rejects the call and no fallback is given
            DependencyTimeoutError: If fn exceeds call_timeout_seconds
        """
        async with self._lock:
            admitted, is_trial = self._admit()
            if not admitted:
                self._state.total_rejections += 1
            retry_at = self._state.next_retry_at

        if not admitted:
            BREAKER_REJECTIONS.labels(dependency=self.name).inc()
            logger.debug("circuit_breaker_rejected", dependency=self.name)
            if fallback is not None:
                return await _run_fallback(fallback)
            raise CircuitOpenError(self.name, retry_at=retry_at)

        start = time.perf_counter()
        try:
            async with asyncio.timeout(self.config.call_timeout_seconds):
                result = await fn()
        except asyncio.CancelledError:
            if is_trial:
                async with self._lock:
                    self._trial_in_flight = False
            raise
        except TimeoutError as e:
            DEPENDENCY_CALL_LATENCY.labels(dependency=self.name, outcome="timeout").observe(
                time.perf_counter() - start
            )
            await self._on_failure(is_trial, e)
            if fallback is not None:
                return await _run_fallback(fallback)
            raise DependencyTimeoutError(
                f"Call to {self.name} timed out after {self.config.call_timeout_seconds}s",
                dependency=self.name,
            ) from e
        except Exception as e:
            DEPENDENCY_CALL_LATENCY.labels(dependency=self.name, outcome="failure").observe(
                time.perf_counter() - start
            )
            await self._on_failure(is_trial, e)
            if fallback is not None:
                return await _run_fallback(fallback)
            raise

        DEPENDENCY_CALL_LATENCY.labels(dependency=self.name, outcome="success").observe(
            time.perf_counter() - start
        )
        await self._on_success(is_trial)
        return result

    def status(self) -> CircuitBreakerStatus:
        return CircuitBreakerStatus(
            name=self.name,
            state=self._state.model_copy(),
            config=self.config,
            recent_changes=list(self._history),
        )

    async def reset(self) -> None:
        """Force the breaker closed and clear its counters."""
        async with self._lock:
            self._state.consecutive_failures = 0
            self._state.successes_in_half_open = 0
            self._state.next_retry_at = None
            self._state.current_cooldown_seconds = self.config.cooldown_seconds
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)
        logger.info("circuit_breaker_reset", dependency=self.name)
