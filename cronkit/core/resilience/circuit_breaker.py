"""
Circuit Breaker for unreliable external calls.

MECHANISM OF ACTION:
-------------------
1.  **Per-key state**:
    Each key (usually the name of the downstream service) owns a failure
    counter, the time of its last failure and an ``is_open`` flag. State lives
    in a ``CircuitBreakerRegistry`` owned by the composition root; it is local
    to the process and is lost on restart. Horizontally scaled instances each
    trip their own circuits.

2.  **State Transitions**:
    - **CLOSED**: Calls pass through.
      - On Success: failure counter resets to 0.
      - On Failure: counter increments and the failure time is recorded.
      - Threshold Reached: failures >= threshold -> OPEN.

    - **OPEN**: Calls are rejected with ``CircuitBreakerOpenError`` without
      invoking the operation, until ``reset_time_ms`` has passed since the
      last failure.

    - **HALF-OPEN**: Once the cool-down has passed the circuit resets
      (``is_open=False``, ``failures=0``) and the next call goes through as a
      probe. A success keeps it closed; failures count up from zero again.
"""

import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from cronkit.core.config.constants import CB_FAILURE_THRESHOLD, CB_RESET_TIME_MS, CircuitState, Stage
from cronkit.core.exceptions import CircuitBreakerOpenError
from cronkit.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class CircuitBreakerState:
    failures: int = 0
    last_failure_at: float = 0.0  # epoch milliseconds
    is_open: bool = False


class CircuitBreakerRegistry:
    """
    Process-wide map of circuit states, keyed by service name.

    Usage:
        registry = CircuitBreakerRegistry()
        data = await registry.call("feed-api", lambda: client.fetch(), failure_threshold=3)
    """

    def __init__(
        self,
        failure_threshold: int = CB_FAILURE_THRESHOLD,
        reset_time_ms: int = CB_RESET_TIME_MS,
        clock: Callable[[], float] | None = None,
    ):
        """
        Args:
            failure_threshold: Default failures before opening
            reset_time_ms: Default cool-down before probing
            clock: Returns the current time in milliseconds (injectable for tests)
        """
        self._default_threshold = failure_threshold
        self._default_reset_time_ms = reset_time_ms
        self._clock = clock or (lambda: time.time() * 1000)
        self._states: dict[str, CircuitBreakerState] = {}

    def _get_or_create(self, key: str) -> CircuitBreakerState:
        state = self._states.get(key)
        if state is None:
            state = CircuitBreakerState()
            self._states[key] = state
        return state

    def get_state(self, key: str, reset_time_ms: int | None = None) -> CircuitState:
        """Report the state a call made now would observe."""
        state = self._states.get(key)
        if state is None or not state.is_open:
            return CircuitState.CLOSED

        reset_time_ms = self._default_reset_time_ms if reset_time_ms is None else reset_time_ms
        if self._clock() - state.last_failure_at >= reset_time_ms:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    def get_failures(self, key: str) -> int:
        state = self._states.get(key)
        return state.failures if state else 0

    async def call(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        failure_threshold: int | None = None,
        reset_time_ms: int | None = None,
    ) -> T:
        """
        Invoke ``fn`` through the circuit for ``key``.

        Raises:
            CircuitBreakerOpenError: circuit is open and the cool-down has not elapsed
            Exception: whatever ``fn`` raised (after being counted as a failure)
        """
        threshold = self._default_threshold if failure_threshold is None else failure_threshold
        reset_time_ms = self._default_reset_time_ms if reset_time_ms is None else reset_time_ms
        state = self._get_or_create(key)

        if state.is_open:
            elapsed = self._clock() - state.last_failure_at
            if elapsed < reset_time_ms:
                retry_after = math.ceil((reset_time_ms - elapsed) / 1000)
                raise CircuitBreakerOpenError(
                    f"Circuit breaker open for {key}. Retry after {retry_after}s",
                    key=key,
                    retry_after_seconds=retry_after,
                )

            log_stage(logger, Stage.CIRCUIT_BREAKER, "Circuit probe allowed", key=key)
            state.is_open = False
            state.failures = 0

        try:
            result = await fn()
        except Exception:
            state.failures += 1
            state.last_failure_at = self._clock()

            if state.failures >= threshold and not state.is_open:
                state.is_open = True
                log_stage(
                    logger,
                    Stage.CIRCUIT_BREAKER,
                    "Circuit tripped",
                    level="error",
                    key=key,
                    failures=state.failures,
                )
            raise

        if state.failures:
            log_stage(logger, Stage.CIRCUIT_BREAKER, "Circuit recovered", key=key)
        state.failures = 0
        return result

    def get_all_stats(self) -> dict[str, dict[str, Any]]:
        return {
            key: {
                "state": self.get_state(key).value,
                "failures": state.failures,
                "last_failure_at": state.last_failure_at or None,
            }
            for key, state in self._states.items()
        }

    def reset(self, key: str | None = None) -> None:
        """Forget the state of one circuit, or of all circuits."""
        if key is None:
            self._states.clear()
        else:
            self._states.pop(key, None)

    def shutdown(self) -> None:
        self.reset()


async def with_circuit_breaker(
    key: str,
    fn: Callable[[], Awaitable[T]],
    *,
    registry: CircuitBreakerRegistry,
    failure_threshold: int | None = None,
    reset_time_ms: int | None = None,
) -> T:
    """Functional form of ``CircuitBreakerRegistry.call``."""
    return await registry.call(
        key, fn, failure_threshold=failure_threshold, reset_time_ms=reset_time_ms
    )
