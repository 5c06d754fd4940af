"""
cronkit

Caching and idempotent job execution: tiered Redis/memory cache, job locks with
skip windows, retry with backoff, batch processing, circuit breakers and rate
limiting.
"""

from cronkit.container import (
    ResilienceContainer,
    close_container,
    get_container,
    init_container,
)
from cronkit.core.config.constants import CacheNamespace, CacheTTL
from cronkit.core.resilience import (
    BatchOptions,
    CircuitBreakerRegistry,
    RetryOptions,
    process_batch_with_retry,
    retryable,
    with_circuit_breaker,
    with_retry,
)
from cronkit.infrastructure.cache import CacheBackendConfig, TieredCache, build_key
from cronkit.jobs import CronJobOptions, JobLockManager, wrap_cron_handler
from cronkit.rate_limiting import RateLimitConfig, RateLimiter, rate_limited_response

__version__ = "1.0.0"

__all__ = [
    "BatchOptions",
    "CacheBackendConfig",
    "CacheNamespace",
    "CacheTTL",
    "CircuitBreakerRegistry",
    "CronJobOptions",
    "JobLockManager",
    "RateLimitConfig",
    "RateLimiter",
    "ResilienceContainer",
    "RetryOptions",
    "TieredCache",
    "build_key",
    "close_container",
    "get_container",
    "init_container",
    "process_batch_with_retry",
    "rate_limited_response",
    "retryable",
    "with_circuit_breaker",
    "with_retry",
    "wrap_cron_handler",
]
