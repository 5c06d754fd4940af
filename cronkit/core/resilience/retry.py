"""
Retry Executor

Runs a fallible operation with exponential backoff and jitter.

MECHANISM OF ACTION:
-------------------
1.  Attempt the operation. On success return immediately.
2.  On failure, if the retry budget is spent, stop and report the last error.
3.  Otherwise wait ``min(base + jitter, max_delay_ms)`` where
    ``base = initial_delay_ms * exponential_base ** attempt`` and the jitter is
    up to 30% of ``base``. The jitter spreads concurrent callers apart so they
    do not retry in lockstep.
4.  Total attempts are ``max_retries + 1``.

``with_retry`` reports the terminal failure as a ``JobResult`` instead of
raising. ``retryable`` collapses that back into return/raise semantics so it
can replace a fallible function in place.

Tenacity drives the attempt loop; the wait strategy and the before-sleep hook
are ours so that delays and the ``on_retry`` callback follow the rules above.
"""

import asyncio
import inspect
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Generic, TypeVar

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from cronkit.core.config.constants import (
    MAX_RETRIES,
    RETRY_EXPONENTIAL_BASE,
    RETRY_INITIAL_DELAY_MS,
    RETRY_JITTER_RATIO,
    RETRY_MAX_DELAY_MS,
    Stage,
)
from cronkit.core.exceptions import RetryExhaustedError
from cronkit.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, BaseException, float], None]


@dataclass(frozen=True)
class RetryOptions:
    """
    Backoff configuration.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        initial_delay_ms: Base delay before the first retry
        max_delay_ms: Upper bound on any single delay
        exponential_base: Growth factor per attempt
        on_retry: Called as ``on_retry(attempt_number, error, delay_ms)`` before each sleep
    """

    max_retries: int = MAX_RETRIES
    initial_delay_ms: float = RETRY_INITIAL_DELAY_MS
    max_delay_ms: float = RETRY_MAX_DELAY_MS
    exponential_base: float = RETRY_EXPONENTIAL_BASE
    on_retry: OnRetry | None = None


@dataclass
class JobResult(Generic[T]):
    """Outcome of ``with_retry``. ``duration`` is in milliseconds."""

    success: bool
    attempts: int
    duration: int
    data: T | None = None
    error: str | None = None
    exception: BaseException | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "attempts": self.attempts,
            "duration": self.duration,
        }
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error
        return result


def compute_delay_ms(attempt: int, options: RetryOptions) -> float:
    """
    Delay before the retry that follows the zero-based ``attempt``.

    Never negative, never above ``options.max_delay_ms``.
    """
    base_delay = options.initial_delay_ms * (options.exponential_base ** attempt)
    jitter = random.uniform(0, RETRY_JITTER_RATIO * base_delay)
    return max(0.0, min(base_delay + jitter, options.max_delay_ms))


async def sleep(ms: float) -> None:
    """Sleep for ``ms`` milliseconds without blocking the event loop."""
    await asyncio.sleep(ms / 1000)


async def _call(operation: Callable[[], Any]) -> Any:
    result = operation()
    if inspect.isawaitable(result):
        result = await result
    return result


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


async def with_retry(
    operation: Callable[[], Awaitable[T] | T],
    options: RetryOptions | None = None,
) -> JobResult[T]:
    """
    Execute ``operation`` with automatic retry on failure.

    Args:
        operation: Zero-argument callable; coroutine functions are awaited
        options: Backoff configuration (defaults from constants)

    Returns:
        JobResult with success flag, data or error, attempts and duration (ms)
    """
    options = options or RetryOptions()
    start_time = time.perf_counter()

    def wait_strategy(retry_state: RetryCallState) -> float:
        # attempt_number is 1-based; the exponent is the zero-based attempt
        return compute_delay_ms(retry_state.attempt_number - 1, options) / 1000

    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        delay_ms = retry_state.next_action.sleep * 1000
        if options.on_retry is not None:
            options.on_retry(retry_state.attempt_number, error, delay_ms)
        else:
            log_stage(
                logger,
                Stage.RETRY,
                "Attempt failed, retrying",
                level="warning",
                attempt=retry_state.attempt_number,
                delay_ms=round(delay_ms),
                error=_error_message(error),
            )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(options.max_retries + 1),
        wait=wait_strategy,
        before_sleep=before_sleep,
        sleep=lambda seconds: sleep(seconds * 1000),
        reraise=True,
    )

    attempts = 0
    try:
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                data = await _call(operation)
    except Exception as exc:
        return JobResult(
            success=False,
            attempts=attempts,
            duration=round((time.perf_counter() - start_time) * 1000),
            error=_error_message(exc),
            exception=exc,
        )

    return JobResult(
        success=True,
        attempts=attempts,
        duration=round((time.perf_counter() - start_time) * 1000),
        data=data,
    )


def retryable(
    fn: Callable[..., Awaitable[T] | T],
    options: RetryOptions | None = None,
) -> Callable[..., Awaitable[T]]:
    """
    Create a retrying version of ``fn``.

    The wrapper returns the data on success and raises ``RetryExhaustedError``
    (chained from the last error) once every attempt has failed.

    Usage:
        fetch_feed = retryable(client.fetch_feed, RetryOptions(max_retries=2))
        feed = await fetch_feed("https://example.com/rss")
    """

    @wraps(fn)
    async def wrapper(*args, **kwargs) -> T:
        result = await with_retry(lambda: fn(*args, **kwargs), options)
        if result.success:
            return result.data

        raise RetryExhaustedError(
            result.error or "Retryable function failed",
            attempts=result.attempts,
            last_error=result.exception,
            details={"function": getattr(fn, "__name__", repr(fn))},
        ) from result.exception

    return wrapper
