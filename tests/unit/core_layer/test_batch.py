"""
Unit Tests for the Batch Processor
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from cronkit.core.resilience.batch import BatchOptions, process_batch_with_retry


@pytest.mark.unit
class TestProcessBatchWithRetry:
    @pytest.mark.asyncio
    async def test_failed_item_recorded_others_succeed(self, no_sleep):
        async def double(n):
            if n == 3:
                raise ValueError("three is not allowed")
            return n * 2

        result = await process_batch_with_retry(
            [1, 2, 3, 4, 5], double, BatchOptions(concurrency=2, item_retries=0)
        )

        assert sorted(result.successful) == [2, 4, 8, 10]
        assert len(result.failed) == 1
        assert result.failed[0].item == 3
        assert result.failed[0].error == "three is not allowed"
        assert result.total == 5

    @pytest.mark.asyncio
    async def test_concurrency_bound_respected(self, no_sleep):
        in_flight = 0
        peak = 0

        async def track(n):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return n

        result = await process_batch_with_retry(
            list(range(10)), track, BatchOptions(concurrency=3)
        )

        assert peak <= 3
        assert len(result.successful) == 10

    @pytest.mark.asyncio
    async def test_item_retried_before_success(self, no_sleep):
        calls = {}

        async def flaky(n):
            calls[n] = calls.get(n, 0) + 1
            if n == 1 and calls[n] < 3:
                raise ConnectionError("transient")
            return n

        result = await process_batch_with_retry(
            [1, 2], flaky, BatchOptions(concurrency=2, item_retries=2)
        )

        assert sorted(result.successful) == [1, 2]
        assert result.failed == []
        assert calls[1] == 3

    @pytest.mark.asyncio
    async def test_on_item_error_called_per_failure(self, no_sleep):
        on_item_error = MagicMock()

        async def fail(n):
            raise RuntimeError(f"bad {n}")

        result = await process_batch_with_retry(
            ["a", "b"], fail, BatchOptions(item_retries=0, on_item_error=on_item_error)
        )

        assert len(result.failed) == 2
        assert on_item_error.call_count == 2
        items = {call.args[0] for call in on_item_error.call_args_list}
        assert items == {"a", "b"}
        assert all(isinstance(call.args[1], RuntimeError) for call in on_item_error.call_args_list)

    @pytest.mark.asyncio
    async def test_empty_batch(self, no_sleep):
        result = await process_batch_with_retry([], MagicMock())

        assert result.successful == []
        assert result.failed == []

    @pytest.mark.asyncio
    async def test_invalid_concurrency_rejected(self):
        async def noop(n):
            return n

        with pytest.raises(ValueError):
            await process_batch_with_retry([1], noop, BatchOptions(concurrency=0))
