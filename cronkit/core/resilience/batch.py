"""
Batch Processor

Runs a retryable operation over a collection with bounded concurrency.

Items are split into chunks of ``concurrency``. Every item of a chunk is
started at once and the chunk is awaited as a whole; the next chunk starts only
after the previous one has fully settled, so at most ``concurrency`` items are
in flight. Each item goes through ``with_retry`` on its own. One item running
out of retries never cancels its siblings or later chunks.

``successful`` is filled in completion order, not input order. Callers that
need positional correspondence should carry identity inside the result.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from cronkit.core.config.constants import (
    BATCH_CONCURRENCY,
    BATCH_ITEM_RETRIES,
    RETRY_INITIAL_DELAY_MS,
    RETRY_MAX_DELAY_MS,
    Stage,
)
from cronkit.core.logging.logger import get_logger, log_stage
from cronkit.core.resilience.retry import RetryOptions, with_retry

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class BatchOptions:
    """
    Batch configuration.

    Attributes:
        concurrency: Items in flight per chunk
        item_retries: Retries per item after its first attempt
        on_item_error: Called as ``on_item_error(item, error)`` for each terminal failure
        initial_delay_ms: Backoff base for item retries
        max_delay_ms: Backoff cap for item retries
    """

    concurrency: int = BATCH_CONCURRENCY
    item_retries: int = BATCH_ITEM_RETRIES
    on_item_error: Callable[[Any, BaseException], None] | None = None
    initial_delay_ms: float = RETRY_INITIAL_DELAY_MS
    max_delay_ms: float = RETRY_MAX_DELAY_MS


@dataclass
class FailedItem(Generic[T]):
    item: T
    error: str


@dataclass
class BatchResult(Generic[T, R]):
    successful: list[R] = field(default_factory=list)
    failed: list[FailedItem[T]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)


async def process_batch_with_retry(
    items: Sequence[T],
    processor: Callable[[T], Awaitable[R]],
    options: BatchOptions | None = None,
) -> BatchResult[T, R]:
    """
    Process ``items`` with bounded concurrency and per-item retry.

    Args:
        items: Items to process
        processor: Async callable applied to each item
        options: Batch configuration

    Returns:
        BatchResult with successful results and per-item failures

    Example:
        >>> result = await process_batch_with_retry(
        ...     subscribers, send_digest, BatchOptions(concurrency=10, item_retries=1)
        ... )
        >>> len(result.failed)
        0
    """
    options = options or BatchOptions()
    if options.concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    result: BatchResult[T, R] = BatchResult()
    retry_options = RetryOptions(
        max_retries=options.item_retries,
        initial_delay_ms=options.initial_delay_ms,
        max_delay_ms=options.max_delay_ms,
    )

    async def run_item(item: T) -> None:
        outcome = await with_retry(lambda: processor(item), retry_options)

        if outcome.success:
            result.successful.append(outcome.data)
            return

        error_message = outcome.error or "Unknown error"
        result.failed.append(FailedItem(item=item, error=error_message))
        if options.on_item_error is not None:
            options.on_item_error(item, outcome.exception or RuntimeError(error_message))

    for start in range(0, len(items), options.concurrency):
        chunk = items[start:start + options.concurrency]
        await asyncio.gather(*(run_item(item) for item in chunk))

    log_stage(
        logger,
        Stage.BATCH,
        "Batch processed",
        total=len(items),
        successful=len(result.successful),
        failed=len(result.failed),
    )
    return result
