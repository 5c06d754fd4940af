"""
Redis Client

Architecture:
    RedisClient (Public API)
        ├── ConnectionManager (Connection lifecycle)
        ├── OperationExecutor (Command execution with error handling)
        └── HealthMonitor (Health checks)

The client only talks to Redis and translates driver errors into the cache
exception hierarchy:

- ``redis.ConnectionError`` / ``redis.TimeoutError`` -> ``CacheConnectionError``
- any other ``RedisError`` -> ``CacheKeyError``

Deciding what to do about a failure (fall back to memory, fail open) is left
to the callers. Tests inject a ``fakeredis.FakeAsyncRedis`` instance through
the ``client`` argument instead of a URL.
"""

import time
from collections.abc import Awaitable
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from cronkit.core.config.constants import REDIS_CONNECT_TIMEOUT, REDIS_SCAN_COUNT
from cronkit.core.exceptions import CacheConnectionError, CacheKeyError
from cronkit.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _redact_url(url: str | None) -> str | None:
    if not url or "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"


# =============================================================================
# LAYER 1: CONNECTION MANAGEMENT
# =============================================================================


class ConnectionManager:
    """
    Manages the Redis connection lifecycle.

    Connection Configuration:
    - URL based (redis://, rediss://, unix://)
    - Socket timeouts from settings
    - Driver-level retry: 3 attempts with exponential backoff
    - Decode responses: True (returns strings, not bytes)
    """

    def __init__(
        self,
        url: str | None = None,
        client: redis.Redis | None = None,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = REDIS_CONNECT_TIMEOUT,
        max_connections: int = 50,
    ):
        if url is None and client is None:
            raise ValueError("Either url or client is required")

        self._url = url
        self._client = client
        self._owns_client = client is None
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._max_connections = max_connections
        self._is_connected = False

    def _build_client(self) -> redis.Redis:
        return redis.Redis.from_url(
            self._url,
            decode_responses=True,
            socket_timeout=self._socket_timeout,
            socket_connect_timeout=self._socket_connect_timeout,
            max_connections=self._max_connections,
            retry=Retry(ExponentialBackoff(cap=2.0, base=0.1), 3),
            retry_on_timeout=True,
        )

    async def connect(self) -> redis.Redis:
        """
        Create the client (if needed) and verify it with PING.

        Raises:
            CacheConnectionError: If Redis is unreachable
        """
        if self._client is None:
            self._client = self._build_client()

        try:
            await self._client.ping()
        except (ConnectionError, TimeoutError, OSError) as e:
            self._is_connected = False
            logger.error(
                "Failed to connect to Redis",
                stage="REDIS.CONNECT",
                url=_redact_url(self._url),
                error=str(e),
            )
            raise CacheConnectionError(
                message=f"Failed to connect to Redis: {e}",
                details={"url": _redact_url(self._url)},
            ) from e

        self._is_connected = True
        logger.info("Redis connected", stage="REDIS.CONNECT", url=_redact_url(self._url))
        return self._client

    async def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

        self._is_connected = False
        logger.info("Redis disconnected", stage="REDIS.DISCONNECT")

    def mark_disconnected(self) -> None:
        self._is_connected = False

    def get_client(self) -> redis.Redis | None:
        return self._client

    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def url(self) -> str | None:
        return _redact_url(self._url)


# =============================================================================
# LAYER 2: OPERATION EXECUTOR
# =============================================================================


class OperationExecutor:
    """
    Executes Redis commands with consistent error handling.

    Error Handling Strategy:
    - Connection and timeout errors mark the connection as lost and raise
      CacheConnectionError
    - Other RedisError exceptions raise CacheKeyError
    - The original driver exception is chained
    """

    def __init__(self, connection_manager: ConnectionManager):
        self._conn_mgr = connection_manager

    @property
    def _redis(self) -> redis.Redis:
        client = self._conn_mgr.get_client()
        if client is None:
            raise CacheConnectionError("Redis client not initialized")
        return client

    async def _execute(self, command: str, awaitable: Awaitable[T], **context) -> T:
        try:
            return await awaitable
        except (ConnectionError, TimeoutError) as e:
            self._conn_mgr.mark_disconnected()
            logger.error(f"Redis {command} failed", stage=f"REDIS.{command}", error=str(e), **context)
            raise CacheConnectionError(
                message=f"Redis {command} failed: {e}", details=context
            ) from e
        except RedisError as e:
            logger.error(f"Redis {command} failed", stage=f"REDIS.{command}", error=str(e), **context)
            raise CacheKeyError(message=f"Redis {command} failed: {e}", details=context) from e

    async def get(self, key: str) -> str | None:
        return await self._execute("GET", self._redis.get(key), key=key)

    async def set(
        self, key: str, value: str, ttl: int | None = None, nx: bool = False
    ) -> bool:
        """
        SET with optional expiry and NX.

        Returns:
            True if the value was written (always True without ``nx``)
        """
        result = await self._execute(
            "SET", self._redis.set(key, value, ex=ttl, nx=nx), key=key
        )
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._execute("DEL", self._redis.delete(*keys), keys=list(keys))

    async def exists(self, *keys: str) -> int:
        return await self._execute("EXISTS", self._redis.exists(*keys), keys=list(keys))

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._execute("EXPIRE", self._redis.expire(key, ttl), key=key))

    async def ttl(self, key: str) -> int:
        """TTL in seconds, -1 if no TTL, -2 if the key doesn't exist."""
        return await self._execute("TTL", self._redis.ttl(key), key=key)

    async def incr(self, key: str) -> int:
        return await self._execute("INCR", self._redis.incr(key), key=key)

    async def incrby(self, key: str, amount: int) -> int:
        return await self._execute("INCRBY", self._redis.incrby(key, amount), key=key)

    async def scan_keys(self, pattern: str, count: int = REDIS_SCAN_COUNT) -> list[str]:
        """Collect every key matching ``pattern`` with a SCAN cursor loop."""
        keys: list[str] = []
        cursor = 0
        while True:
            cursor, batch = await self._execute(
                "SCAN",
                self._redis.scan(cursor=cursor, match=pattern, count=count),
                pattern=pattern,
            )
            keys.extend(batch)
            if int(cursor) == 0:
                return keys

    async def flushdb(self) -> bool:
        return bool(await self._execute("FLUSHDB", self._redis.flushdb()))

    async def dbsize(self) -> int:
        return await self._execute("DBSIZE", self._redis.dbsize())


# =============================================================================
# LAYER 3: HEALTH MONITORING
# =============================================================================


class HealthMonitor:
    def __init__(self, connection_manager: ConnectionManager):
        self._conn_mgr = connection_manager

    async def health_check(self) -> dict[str, Any]:
        """
        Ping Redis and report latency.

        Returns:
            Dict with status, connected flag and ping latency
        """
        health: dict[str, Any] = {
            "status": "healthy",
            "connected": self._conn_mgr.is_connected(),
            "url": self._conn_mgr.url,
            "ping_latency_ms": None,
        }

        client = self._conn_mgr.get_client()
        if client is None:
            health["status"] = "unhealthy"
            health["error"] = "Client not initialized"
            return health

        try:
            start = time.perf_counter()
            await client.ping()
            health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
        except (RedisError, OSError) as e:
            health["status"] = "unhealthy"
            health["error"] = str(e)

        return health


# =============================================================================
# LAYER 4: PUBLIC API
# =============================================================================


class RedisClient:
    """
    Async Redis client.

    Usage:
        client = RedisClient(url="redis://localhost:6379/0")
        await client.connect()

        await client.set("key", "value", ttl=3600)
        value = await client.get("key")

        await client.disconnect()
    """

    def __init__(
        self,
        url: str | None = None,
        client: redis.Redis | None = None,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = REDIS_CONNECT_TIMEOUT,
        max_connections: int = 50,
    ):
        self._conn_mgr = ConnectionManager(
            url=url,
            client=client,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            max_connections=max_connections,
        )
        self._executor = OperationExecutor(self._conn_mgr)
        self._health_monitor = HealthMonitor(self._conn_mgr)

    @property
    def is_connected(self) -> bool:
        return self._conn_mgr.is_connected()

    async def connect(self) -> None:
        await self._conn_mgr.connect()

    async def disconnect(self) -> None:
        await self._conn_mgr.disconnect()

    async def ping(self) -> bool:
        client = self._conn_mgr.get_client()
        if client is None:
            return False
        try:
            return bool(await client.ping())
        except (RedisError, OSError):
            return False

    async def health_check(self) -> dict[str, Any]:
        return await self._health_monitor.health_check()

    async def get(self, key: str) -> str | None:
        return await self._executor.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None, nx: bool = False) -> bool:
        return await self._executor.set(key, value, ttl=ttl, nx=nx)

    async def delete(self, *keys: str) -> int:
        return await self._executor.delete(*keys)

    async def exists(self, *keys: str) -> int:
        return await self._executor.exists(*keys)

    async def expire(self, key: str, ttl: int) -> bool:
        return await self._executor.expire(key, ttl)

    async def ttl(self, key: str) -> int:
        return await self._executor.ttl(key)

    async def incr(self, key: str) -> int:
        return await self._executor.incr(key)

    async def incrby(self, key: str, amount: int) -> int:
        return await self._executor.incrby(key, amount)

    async def scan_keys(self, pattern: str, count: int = REDIS_SCAN_COUNT) -> list[str]:
        return await self._executor.scan_keys(pattern, count=count)

    async def flushdb(self) -> bool:
        return await self._executor.flushdb()

    async def dbsize(self) -> int:
        return await self._executor.dbsize()
