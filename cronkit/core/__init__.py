"""
Core Module

Foundational components: configuration, logging, exceptions and resilience
primitives.
"""

from .exceptions import (
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CacheSerializationError,
    CircuitBreakerOpenError,
    ConfigurationError,
    CronkitError,
    LockAcquisitionError,
    RateLimitExceededError,
    RetryExhaustedError,
)
from .logging import (
    bind_job_context,
    clear_job_context,
    get_job_name,
    get_logger,
    log_stage,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "log_stage",
    "bind_job_context",
    "clear_job_context",
    "get_job_name",
    "CronkitError",
    "ConfigurationError",
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "CacheSerializationError",
    "LockAcquisitionError",
    "RetryExhaustedError",
    "CircuitBreakerOpenError",
    "RateLimitExceededError",
]
