"""
Unit Tests for RedisClient

Runs against fakeredis; error translation is tested with a mocked driver.
"""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError, ResponseError

from cronkit.core.exceptions import CacheConnectionError, CacheKeyError
from cronkit.infrastructure.cache.redis_client import RedisClient


@pytest.mark.unit
class TestRedisClientOperations:
    @pytest.mark.asyncio
    async def test_connect_marks_connected(self, redis_client):
        assert redis_client.is_connected is False

        await redis_client.connect()

        assert redis_client.is_connected is True
        assert await redis_client.ping() is True

    @pytest.mark.asyncio
    async def test_set_get_with_ttl(self, redis_client):
        await redis_client.connect()

        assert await redis_client.set("k", "v", ttl=30) is True
        assert await redis_client.get("k") == "v"
        assert 0 < await redis_client.ttl("k") <= 30

    @pytest.mark.asyncio
    async def test_set_nx(self, redis_client):
        await redis_client.connect()

        assert await redis_client.set("lock", "a", ttl=30, nx=True) is True
        assert await redis_client.set("lock", "b", ttl=30, nx=True) is False
        assert await redis_client.get("lock") == "a"

    @pytest.mark.asyncio
    async def test_counters(self, redis_client):
        await redis_client.connect()

        assert await redis_client.incr("c") == 1
        assert await redis_client.incrby("c", 5) == 6

    @pytest.mark.asyncio
    async def test_scan_keys_collects_all_pages(self, redis_client):
        await redis_client.connect()
        for i in range(250):
            await redis_client.set(f"user:{i}", "x")
        await redis_client.set("product:1", "x")

        keys = await redis_client.scan_keys("user:*", count=50)

        assert len(keys) == 250
        assert "product:1" not in keys

    @pytest.mark.asyncio
    async def test_delete_exists_flush(self, redis_client):
        await redis_client.connect()
        await redis_client.set("a", "1")
        await redis_client.set("b", "1")

        assert await redis_client.exists("a", "b") == 2
        assert await redis_client.delete("a") == 1
        assert await redis_client.delete() == 0
        assert await redis_client.dbsize() == 1

        await redis_client.flushdb()
        assert await redis_client.dbsize() == 0

    @pytest.mark.asyncio
    async def test_health_check_healthy(self, redis_client):
        await redis_client.connect()

        health = await redis_client.health_check()

        assert health["status"] == "healthy"
        assert health["connected"] is True
        assert health["ping_latency_ms"] is not None


@pytest.mark.unit
class TestRedisClientErrors:
    def test_requires_url_or_client(self):
        with pytest.raises(ValueError):
            RedisClient()

    @pytest.mark.asyncio
    async def test_connect_failure_raises_connection_error(self):
        driver = AsyncMock()
        driver.ping.side_effect = ConnectionError("refused")
        client = RedisClient(client=driver)

        with pytest.raises(CacheConnectionError):
            await client.connect()

        assert client.is_connected is False

    @pytest.mark.asyncio
    async def test_connection_error_during_command_marks_disconnected(self):
        driver = AsyncMock()
        driver.get.side_effect = ConnectionError("reset by peer")
        client = RedisClient(client=driver)
        await client.connect()

        with pytest.raises(CacheConnectionError) as exc_info:
            await client.get("k")

        assert client.is_connected is False
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_command_error_raises_key_error(self, redis_client):
        await redis_client.connect()
        await redis_client.set("text", "not-a-number")

        with pytest.raises(CacheKeyError):
            await redis_client.incr("text")

        assert redis_client.is_connected is True

    @pytest.mark.asyncio
    async def test_response_error_keeps_connection(self):
        driver = AsyncMock()
        driver.expire.side_effect = ResponseError("WRONGTYPE")
        client = RedisClient(client=driver)
        await client.connect()

        with pytest.raises(CacheKeyError):
            await client.expire("k", 10)

        assert client.is_connected is True

    @pytest.mark.asyncio
    async def test_disconnect_leaves_injected_client_open(self, fake_redis):
        client = RedisClient(client=fake_redis)
        await client.connect()

        await client.disconnect()

        assert client.is_connected is False
        assert await fake_redis.ping() is True
