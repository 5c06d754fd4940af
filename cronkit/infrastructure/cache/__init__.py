"""
Cache Module

Provides tiered caching (Redis primary + in-memory fallback).
"""

from .cache_manager import CacheBackendConfig, TieredCache, build_key
from .memory_cache import MemoryCache, glob_to_regex
from .redis_client import RedisClient

__all__ = [
    "CacheBackendConfig",
    "MemoryCache",
    "RedisClient",
    "TieredCache",
    "build_key",
    "glob_to_regex",
]
