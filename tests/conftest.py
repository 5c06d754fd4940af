"""
Pytest Configuration and Shared Test Fixtures

This module provides reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

from unittest.mock import AsyncMock

import fakeredis
import pytest
import pytest_asyncio

from cronkit.core.config.constants import CacheBackendKind
from cronkit.core.config.settings import Settings
from cronkit.core.exceptions import CacheConnectionError
from cronkit.core.resilience.circuit_breaker import CircuitBreakerRegistry
from cronkit.infrastructure.cache.cache_manager import CacheBackendConfig, TieredCache
from cronkit.infrastructure.cache.memory_cache import MemoryCache
from cronkit.infrastructure.cache.redis_client import RedisClient
from cronkit.jobs.job_lock import JobLockManager

# ============================================================================
# Time Control
# ============================================================================


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def no_sleep(monkeypatch):
    """
    Replace the retry sleep with a recording AsyncMock.

    ``no_sleep.await_args_list`` holds the requested delays in milliseconds.
    """
    sleep_mock = AsyncMock()
    monkeypatch.setattr("cronkit.core.resilience.retry.sleep", sleep_mock)
    return sleep_mock


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """Settings isolated from the process environment and any .env file."""
    return Settings(
        _env_file=None,
        REDIS_URL=None,
        CRON_SECRET="test-cron-secret",
        CRON_API_KEY="test-api-key",
        CACHE_SWEEP_INTERVAL=0,
        RETRY_MAX_RETRIES=1,
        RETRY_INITIAL_DELAY_MS=1,
        RETRY_MAX_DELAY_MS=5,
        ENVIRONMENT="test",
    )


# ============================================================================
# Cache Fixtures
# ============================================================================


@pytest.fixture
def memory_cache(fake_clock):
    return MemoryCache(max_size=100, clock=fake_clock)


@pytest.fixture
def memory_tiered_cache(memory_cache):
    """Memory-only TieredCache driven by the fake clock, no maintenance task."""
    return TieredCache(memory=memory_cache, sweep_interval=0)


@pytest.fixture
def fake_redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def redis_client(fake_redis):
    return RedisClient(client=fake_redis)


@pytest_asyncio.fixture
async def redis_tiered_cache(redis_client, memory_cache):
    """TieredCache connected to fakeredis."""
    cache = TieredCache(
        CacheBackendConfig(kind=CacheBackendKind.REDIS, url="redis://fake:6379/0"),
        redis_client=redis_client,
        memory=memory_cache,
        sweep_interval=0,
    )
    await cache.initialize()
    yield cache
    await cache.shutdown()


@pytest.fixture
def failing_redis_client():
    """
    RedisClient double that reports itself connected while every command fails.
    """
    client = AsyncMock(spec=RedisClient)
    client.is_connected = True
    error = CacheConnectionError("Redis unavailable")
    for method in (
        "get", "set", "delete", "exists", "expire", "ttl",
        "incr", "incrby", "scan_keys", "flushdb", "dbsize",
    ):
        getattr(client, method).side_effect = error
    client.health_check.return_value = {"status": "unhealthy", "connected": False}
    return client


@pytest_asyncio.fixture
async def degraded_tiered_cache(failing_redis_client, memory_cache):
    cache = TieredCache(
        CacheBackendConfig(kind=CacheBackendKind.REDIS, url="redis://down:6379/0"),
        redis_client=failing_redis_client,
        memory=memory_cache,
        sweep_interval=0,
    )
    await cache.initialize()
    yield cache
    await cache.shutdown()


# ============================================================================
# Job / Resilience Fixtures
# ============================================================================


@pytest.fixture
def lock_manager(memory_tiered_cache):
    return JobLockManager(memory_tiered_cache)


@pytest.fixture
def ms_clock():
    """Millisecond clock for the circuit breaker."""
    return FakeClock(start=1_700_000_000_000.0)


@pytest.fixture
def breaker_registry(ms_clock):
    return CircuitBreakerRegistry(failure_threshold=3, reset_time_ms=1000, clock=ms_clock)
