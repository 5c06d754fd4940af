"""
Cache-Related Exceptions

All exceptions related to caching operations (Redis, in-memory cache).
"""

from cronkit.core.exceptions.base import CronkitError


class CacheError(CronkitError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when unable to connect to the cache (Redis).

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Incorrect URL
    - Authentication failure
    """
    pass


class CacheKeyError(CacheError):
    """
    Raised when a cache key operation fails.

    Common causes:
    - Wrong value type for the command (e.g. INCR on a JSON string)
    - Operation timeout
    - Memory limit exceeded
    """
    pass


class CacheSerializationError(CacheError):
    """Raised when a value cannot be encoded to, or decoded from, JSON."""
    pass
