"""
Exception Module

Structured exception hierarchy for the cache, lock and resilience layers.
Exceptions are organized by theme.

Module Structure:
-----------------
- **base.py**: CronkitError base class + ConfigurationError
- **cache.py**: Cache-related exceptions (Redis, memory cache)
- **lock.py**: Job lock exceptions
- **retry.py**: Retry exhaustion
- **circuit_breaker.py**: Circuit breaker exceptions
- **rate_limit.py**: Rate limiting exceptions

Usage:
------
```python
from cronkit.core.exceptions import CacheConnectionError, CircuitBreakerOpenError
```
"""

from cronkit.core.exceptions.base import ConfigurationError, CronkitError
from cronkit.core.exceptions.cache import (
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CacheSerializationError,
)
from cronkit.core.exceptions.circuit_breaker import (
    CircuitBreakerError,
    CircuitBreakerOpenError,
)
from cronkit.core.exceptions.lock import LockAcquisitionError, LockError
from cronkit.core.exceptions.rate_limit import RateLimitError, RateLimitExceededError
from cronkit.core.exceptions.retry import RetryError, RetryExhaustedError

__all__ = [
    # Base
    "CronkitError",
    "ConfigurationError",
    # Cache
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "CacheSerializationError",
    # Lock
    "LockError",
    "LockAcquisitionError",
    # Retry
    "RetryError",
    "RetryExhaustedError",
    # Circuit Breaker
    "CircuitBreakerError",
    "CircuitBreakerOpenError",
    # Rate Limit
    "RateLimitError",
    "RateLimitExceededError",
]
