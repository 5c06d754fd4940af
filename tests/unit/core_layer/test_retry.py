"""
Unit Tests for the Retry Executor

Tests attempt counting, backoff bounds, the on_retry callback and the raising
``retryable`` wrapper. Sleeps are replaced by a recording mock.
"""

from unittest.mock import MagicMock

import pytest

from cronkit.core.exceptions import RetryExhaustedError
from cronkit.core.resilience.retry import (
    JobResult,
    RetryOptions,
    compute_delay_ms,
    retryable,
    with_retry,
)


class Flaky:
    """Async callable failing ``failures`` times before returning ``value``."""

    def __init__(self, failures: int, value="ok"):
        self.failures = failures
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"boom {self.calls}")
        return self.value


@pytest.mark.unit
class TestComputeDelay:
    def test_delay_within_jitter_band(self):
        options = RetryOptions(initial_delay_ms=100, max_delay_ms=100_000)

        for attempt in range(5):
            base = 100 * 2 ** attempt
            delay = compute_delay_ms(attempt, options)
            assert base <= delay <= base * 1.3

    def test_delay_capped_at_max(self):
        options = RetryOptions(initial_delay_ms=1000, max_delay_ms=1500)

        assert compute_delay_ms(10, options) == 1500

    def test_zero_initial_delay(self):
        assert compute_delay_ms(3, RetryOptions(initial_delay_ms=0)) == 0


@pytest.mark.unit
class TestWithRetry:
    @pytest.mark.asyncio
    async def test_immediate_success(self, no_sleep):
        result = await with_retry(Flaky(0, value={"n": 1}))

        assert result.success is True
        assert result.data == {"n": 1}
        assert result.attempts == 1
        assert result.error is None
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, no_sleep):
        operation = Flaky(2)

        result = await with_retry(operation, RetryOptions(max_retries=3))

        assert result.success is True
        assert result.attempts == 3
        assert operation.calls == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_always_failing_reports_last_error(self, no_sleep):
        options = RetryOptions(max_retries=2, initial_delay_ms=100, max_delay_ms=150)

        result = await with_retry(Flaky(100), options)

        assert result.success is False
        assert result.attempts == 3
        assert result.error == "boom 3"
        assert isinstance(result.exception, ConnectionError)
        assert no_sleep.await_count == 2
        for call in no_sleep.await_args_list:
            delay_ms = call.args[0]
            assert 0 <= delay_ms <= options.max_delay_ms * 1.3

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, no_sleep):
        result = await with_retry(Flaky(1), RetryOptions(max_retries=0))

        assert result.success is False
        assert result.attempts == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_on_retry_receives_attempt_error_and_delay(self, no_sleep):
        on_retry = MagicMock()
        options = RetryOptions(max_retries=2, initial_delay_ms=10, on_retry=on_retry)

        await with_retry(Flaky(2), options)

        assert on_retry.call_count == 2
        first_attempt, first_error, first_delay = on_retry.call_args_list[0].args
        assert first_attempt == 1
        assert str(first_error) == "boom 1"
        assert 10 <= first_delay <= 13
        assert on_retry.call_args_list[1].args[0] == 2

    @pytest.mark.asyncio
    async def test_sync_operation_supported(self, no_sleep):
        result = await with_retry(lambda: 42)

        assert result.success is True
        assert result.data == 42

    @pytest.mark.asyncio
    async def test_error_message_falls_back_to_type_name(self, no_sleep):
        async def fail():
            raise ValueError()

        result = await with_retry(fail, RetryOptions(max_retries=0))

        assert result.error == "ValueError"


@pytest.mark.unit
class TestJobResult:
    def test_success_dict_has_data(self):
        result = JobResult(success=True, attempts=1, duration=5, data=[1])

        assert result.to_dict() == {"success": True, "attempts": 1, "duration": 5, "data": [1]}

    def test_failure_dict_has_error(self):
        result = JobResult(success=False, attempts=3, duration=9, error="boom")

        assert result.to_dict() == {"success": False, "attempts": 3, "duration": 9, "error": "boom"}


@pytest.mark.unit
class TestRetryable:
    @pytest.mark.asyncio
    async def test_returns_data_and_passes_arguments(self, no_sleep):
        async def add(a, b=0):
            return a + b

        wrapped = retryable(add, RetryOptions(max_retries=1))

        assert await wrapped(2, b=3) == 5
        assert wrapped.__name__ == "add"

    @pytest.mark.asyncio
    async def test_raises_exhausted_error_chained(self, no_sleep):
        async def always_fail():
            raise TimeoutError("upstream timeout")

        wrapped = retryable(always_fail, RetryOptions(max_retries=2))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await wrapped()

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, TimeoutError)
        assert exc_info.value.last_error is exc_info.value.__cause__
        assert exc_info.value.details["function"] == "always_fail"
