"""
Resilience Module - Retry, Batch and Circuit Breaker

COMPONENTS:
===========
- with_retry / retryable: exponential backoff with jitter
- process_batch_with_retry: bounded-concurrency batch with per-item retry
- CircuitBreakerRegistry / with_circuit_breaker: per-key fail-fast guard
"""

from .batch import BatchOptions, BatchResult, FailedItem, process_batch_with_retry
from .circuit_breaker import (
    CircuitBreakerRegistry,
    CircuitBreakerState,
    with_circuit_breaker,
)
from .retry import JobResult, RetryOptions, compute_delay_ms, retryable, sleep, with_retry

__all__ = [
    # Retry
    "JobResult",
    "RetryOptions",
    "compute_delay_ms",
    "retryable",
    "sleep",
    "with_retry",
    # Batch
    "BatchOptions",
    "BatchResult",
    "FailedItem",
    "process_batch_with_retry",
    # Circuit Breaker
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "with_circuit_breaker",
]
