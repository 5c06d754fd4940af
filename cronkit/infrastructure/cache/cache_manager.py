"""
Tiered Cache Manager

Architecture:
    TieredCache (Public API)
        ├── RedisClient (primary, shared across processes)
        ├── MemoryCache (fallback + write-through mirror)
        └── Maintenance task (expired-entry sweep + bounded reconnect)

MECHANISM OF ACTION:
-------------------
1.  **Reads** go to Redis while it is connected. Any Redis failure is logged
    and the read is answered from memory instead.
2.  **Writes** always land in memory and, when connected, in Redis too. A
    Redis failure never turns a write into a failure.
3.  **Connection** is attempted once in ``initialize()``. If it fails, or a
    later command hits a connection error, the cache runs from memory and the
    maintenance task retries the connection at most
    ``max_reconnect_attempts`` times per outage.

Values are JSON-encoded with orjson. Memory keeps the encoded string, so
callers never get a reference to a cached object.

Architectural Decision: fallback is per-operation
- A flaky Redis degrades individual calls to memory instead of failing them
- The lock and the rate limiter see one interface regardless of backend
- Memory-only mode is a single-process deployment; atomic operations
  (``add``, ``increment``) are then atomic within this process only
"""

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, TypeVar

import orjson

from cronkit.core.config.constants import (
    MEMORY_CACHE_MAX_SIZE,
    MEMORY_CACHE_SWEEP_INTERVAL,
    REDIS_MAX_RECONNECT_ATTEMPTS,
    CacheBackendKind,
    CacheTTL,
    Stage,
)
from cronkit.core.exceptions import CacheConnectionError, CacheError, CacheSerializationError
from cronkit.core.logging.logger import get_logger, log_stage
from cronkit.infrastructure.cache.memory_cache import MemoryCache
from cronkit.infrastructure.cache.redis_client import RedisClient

logger = get_logger(__name__)

T = TypeVar("T")


def build_key(namespace: str | Enum, *parts: Any) -> str:
    """
    Join a namespace and key parts with ``:``.

    Example:
        >>> build_key(CacheNamespace.USER, 42, "profile")
        'user:42:profile'
    """
    prefix = namespace.value if isinstance(namespace, Enum) else str(namespace)
    return ":".join([prefix, *(str(part) for part in parts)])


def _encode(key: str, value: Any) -> str:
    try:
        return orjson.dumps(value).decode()
    except TypeError as e:
        raise CacheSerializationError(
            f"Value for {key} is not JSON-serializable: {e}", details={"key": key}
        ) from e


def _decode(key: str, raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise CacheSerializationError(
            f"Cached value for {key} is not valid JSON: {e}", details={"key": key}
        ) from e


@dataclass(frozen=True)
class CacheBackendConfig:
    """
    Explicit backend selection.

    Built once at the composition root; the cache never inspects the
    environment itself.
    """

    kind: CacheBackendKind = CacheBackendKind.MEMORY
    url: str | None = None

    def __post_init__(self):
        if self.kind == CacheBackendKind.REDIS and not self.url:
            raise ValueError("A Redis backend requires a url")

    @classmethod
    def from_settings(cls, settings) -> "CacheBackendConfig":
        if settings.REDIS_URL:
            return cls(kind=CacheBackendKind.REDIS, url=settings.REDIS_URL)
        return cls(kind=CacheBackendKind.MEMORY)


class TieredCache:
    """
    Redis-first cache with in-memory fallback.

    Usage:
        cache = TieredCache(CacheBackendConfig(CacheBackendKind.REDIS, "redis://localhost:6379/0"))
        await cache.initialize()

        await cache.set("user:42", {"name": "Ada"}, ttl=CacheTTL.LONG)
        user = await cache.get("user:42")

        await cache.shutdown()
    """

    def __init__(
        self,
        backend: CacheBackendConfig | None = None,
        *,
        redis_client: RedisClient | None = None,
        memory: MemoryCache | None = None,
        default_ttl: int = CacheTTL.MEDIUM,
        memory_max_size: int = MEMORY_CACHE_MAX_SIZE,
        sweep_interval: float = MEMORY_CACHE_SWEEP_INTERVAL,
        max_reconnect_attempts: int = REDIS_MAX_RECONNECT_ATTEMPTS,
    ):
        """
        Args:
            backend: Backend selection (memory-only when omitted)
            redis_client: Pre-built Redis client, overrides ``backend.url``
            memory: Pre-built memory cache (e.g. with a fake clock)
            default_ttl: TTL used when ``set`` gets none
            memory_max_size: Capacity of the memory cache when it is built here
            sweep_interval: Seconds between maintenance runs (0 disables the task)
            max_reconnect_attempts: Reconnect budget per outage
        """
        self._backend = backend or CacheBackendConfig()

        if redis_client is None and self._backend.kind == CacheBackendKind.REDIS:
            redis_client = RedisClient(url=self._backend.url)

        self._redis = redis_client
        self._memory = memory or MemoryCache(max_size=memory_max_size)
        self._default_ttl = default_ttl
        self._sweep_interval = sweep_interval
        self._max_reconnect_attempts = max_reconnect_attempts

        self._reconnect_attempts = 0
        self._fallback_lock = asyncio.Lock()
        self._maintenance_task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def backend(self) -> CacheBackendConfig:
        return self._backend

    @property
    def memory(self) -> MemoryCache:
        return self._memory

    @property
    def redis_connected(self) -> bool:
        return self._redis is not None and self._redis.is_connected

    async def initialize(self) -> None:
        """Connect to Redis once and start the maintenance task."""
        if self._redis is not None and not self._redis.is_connected:
            try:
                await self._redis.connect()
            except CacheError as e:
                log_stage(
                    logger,
                    Stage.CACHE_FALLBACK,
                    "Redis unavailable, running on memory cache",
                    level="warning",
                    error=str(e),
                )

        if self._sweep_interval > 0 and self._maintenance_task is None:
            self._maintenance_task = asyncio.create_task(self._maintenance_loop())

        log_stage(
            logger,
            Stage.CACHE_INIT,
            "Cache initialized",
            backend=self._backend.kind.value,
            redis_connected=self.redis_connected,
        )

    async def shutdown(self) -> None:
        """Stop maintenance, let pending background writes settle, disconnect."""
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._maintenance_task
            self._maintenance_task = None

        await self.wait_pending()

        if self._redis is not None:
            await self._redis.disconnect()

        log_stage(logger, Stage.CACHE_INIT, "Cache shut down")

    async def _maintenance_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            await self.sweep()
            await self.try_reconnect()

    async def sweep(self) -> int:
        """Remove expired memory entries."""
        removed = await self._memory.cleanup()
        if removed:
            log_stage(logger, Stage.CACHE_SWEEP, "Expired entries swept", removed=removed)
        return removed

    async def try_reconnect(self) -> bool:
        """
        Try to restore the Redis connection within the reconnect budget.

        Returns:
            True if Redis is connected afterwards
        """
        if self._redis is None:
            return False
        if self._redis.is_connected:
            self._reconnect_attempts = 0
            return True
        if self._reconnect_attempts >= self._max_reconnect_attempts:
            return False

        self._reconnect_attempts += 1
        try:
            await self._redis.connect()
        except CacheError as e:
            level = "error" if self._reconnect_attempts >= self._max_reconnect_attempts else "warning"
            log_stage(
                logger,
                Stage.CACHE_FALLBACK,
                "Redis reconnect failed",
                level=level,
                attempt=self._reconnect_attempts,
                max_attempts=self._max_reconnect_attempts,
                error=str(e),
            )
            return False

        log_stage(logger, Stage.CACHE_FALLBACK, "Redis reconnected", attempt=self._reconnect_attempts)
        self._reconnect_attempts = 0
        return True

    def _remote_failed(self, operation: str, key: str | None, error: CacheError) -> None:
        log_stage(
            logger,
            Stage.CACHE_FALLBACK,
            f"Redis {operation} failed, using memory cache",
            level="warning",
            key=key,
            error=error.message,
        )

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """
        Return the cached value or None on miss or expiry.

        Raises:
            CacheSerializationError: the stored value is not valid JSON
        """
        if self.redis_connected:
            try:
                return _decode(key, await self._redis.get(key))
            except CacheSerializationError:
                raise
            except CacheError as e:
                self._remote_failed("GET", key, e)

        return _decode(key, await self._memory.get(key))

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """
        Store ``value`` for ``ttl`` seconds.

        Raises:
            CacheSerializationError: ``value`` is not JSON-serializable
        """
        ttl = self._default_ttl if ttl is None else ttl
        raw = _encode(key, value)

        await self._memory.set(key, raw, ttl)

        if self.redis_connected:
            try:
                await self._redis.set(key, raw, ttl=ttl)
            except CacheError as e:
                self._remote_failed("SET", key, e)

        log_stage(logger, Stage.CACHE_WRITE, "Cache set", level="debug", key=key, ttl=ttl)
        return True

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """
        Store ``value`` only if ``key`` is absent.

        Redis uses SET NX EX. The memory path is a lock-guarded
        check-then-set, exclusive only within this process.

        Returns:
            True if this call stored the value
        """
        ttl = self._default_ttl if ttl is None else ttl
        raw = _encode(key, value)

        if self.redis_connected:
            try:
                stored = await self._redis.set(key, raw, ttl=ttl, nx=True)
            except CacheError as e:
                self._remote_failed("SET NX", key, e)
            else:
                if stored:
                    await self._memory.set(key, raw, ttl)
                return stored

        return await self._memory.add(key, raw, ttl)

    async def delete(self, key: str) -> bool:
        await self._memory.delete(key)

        if self.redis_connected:
            try:
                await self._redis.delete(key)
            except CacheError as e:
                self._remote_failed("DEL", key, e)

        return True

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Delete every key matching the glob ``pattern`` (``*`` and ``?``).

        Returns:
            Keys deleted from Redis when Redis deleted any, else keys deleted
            from memory
        """
        count = await self._memory.delete_matching(pattern)

        if self.redis_connected:
            try:
                keys = await self._redis.scan_keys(pattern)
                if keys:
                    deleted = await self._redis.delete(*keys)
                    if deleted > 0:
                        count = deleted
            except CacheError as e:
                self._remote_failed("SCAN", pattern, e)

        log_stage(logger, Stage.CACHE_INVALIDATE, "Pattern invalidated", pattern=pattern, count=count)
        return count

    async def get_or_compute(
        self,
        key: str,
        loader: Callable[[], Awaitable[T] | T],
        ttl: int | None = None,
    ) -> T:
        """
        Cache-aside read.

        On a miss ``loader`` runs and its result is returned at once; the
        cache is populated by a background task whose failure is only logged.
        """
        cached = await self.get(key)
        if cached is not None:
            log_stage(logger, Stage.CACHE_LOOKUP, "Cache hit", level="debug", key=key)
            return cached

        log_stage(logger, Stage.CACHE_LOOKUP, "Cache miss", level="debug", key=key)
        value = loader()
        if inspect.isawaitable(value):
            value = await value

        if value is not None:
            task = asyncio.create_task(self._populate(key, value, ttl))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return value

    async def _populate(self, key: str, value: Any, ttl: int | None) -> None:
        try:
            await self.set(key, value, ttl)
        except CacheError as e:
            log_stage(
                logger,
                Stage.CACHE_WRITE,
                "Background cache population failed",
                level="error",
                key=key,
                error=e.message,
            )

    async def wait_pending(self) -> None:
        """Wait for background population tasks started by ``get_or_compute``."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def has(self, key: str) -> bool:
        if self.redis_connected:
            try:
                return await self._redis.exists(key) > 0
            except CacheError as e:
                self._remote_failed("EXISTS", key, e)

        return await self._memory.has(key)

    async def ttl_remaining(self, key: str) -> int:
        """
        Remaining TTL in seconds.

        From Redis: its TTL reply (-1 no expiry, -2 missing). In fallback mode
        only presence is known: -1 when present, -2 when absent.
        """
        if self.redis_connected:
            try:
                return await self._redis.ttl(key)
            except CacheError as e:
                self._remote_failed("TTL", key, e)

        return -1 if await self._memory.has(key) else -2

    async def increment(self, key: str, amount: int = 1, *, fallback: bool = True) -> int:
        """
        Increment a counter.

        Redis INCR/INCRBY is atomic. The memory path stores the new value with
        a one-day TTL and is atomic within this process only.

        Args:
            fallback: When False and a Redis backend is configured, a Redis
                failure (or a lost connection) is raised instead of counting
                in memory. Memory-only caches always count in memory.

        Raises:
            CacheError: Redis failed and ``fallback`` is False
        """
        if self.redis_connected:
            try:
                if amount == 1:
                    return await self._redis.incr(key)
                return await self._redis.incrby(key, amount)
            except CacheError as e:
                if not fallback:
                    raise
                self._remote_failed("INCR", key, e)
        elif not fallback:
            self._require_remote(key)

        async with self._fallback_lock:
            current = _decode(key, await self._memory.get(key))
            value = int(current or 0) + amount
            await self._memory.set(key, str(value), CacheTTL.DAY)
            return value

    async def expire(self, key: str, ttl: int, *, fallback: bool = True) -> bool:
        """
        Reset the TTL of an existing key. Returns False if the key is absent.

        ``fallback`` behaves as in ``increment``.
        """
        if not fallback and not self.redis_connected:
            self._require_remote(key)

        memory_result = await self._memory.expire(key, ttl)

        if self.redis_connected:
            try:
                return await self._redis.expire(key, ttl)
            except CacheError as e:
                if not fallback:
                    raise
                self._remote_failed("EXPIRE", key, e)

        return memory_result

    def _require_remote(self, key: str) -> None:
        # Memory-only caches have no remote tier to require
        if self._redis is not None:
            raise CacheConnectionError(
                "Redis is not connected", details={"key": key, "backend": self._backend.kind.value}
            )

    # -------------------------------------------------------------------------
    # Management
    # -------------------------------------------------------------------------

    async def stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "backend": self._backend.kind.value,
            "redis_connected": self.redis_connected,
            "redis_keys": None,
            "reconnect_attempts": self._reconnect_attempts,
            "memory_size": self._memory.get_size(),
            "memory_max_size": self._memory.get_max_size(),
            "memory_keys": self._memory.get_keys(),
        }

        if self.redis_connected:
            try:
                stats["redis_keys"] = await self._redis.dbsize()
            except CacheError as e:
                self._remote_failed("DBSIZE", None, e)

        return stats

    async def clear(self) -> None:
        """Empty memory and FLUSHDB the Redis database."""
        await self._memory.clear()

        if self.redis_connected:
            try:
                await self._redis.flushdb()
            except CacheError as e:
                self._remote_failed("FLUSHDB", None, e)

        log_stage(logger, Stage.CACHE_INVALIDATE, "Cache cleared", level="warning")

    async def health_check(self) -> dict[str, Any]:
        health: dict[str, Any] = {
            "status": "healthy",
            "backend": self._backend.kind.value,
            "memory_size": self._memory.get_size(),
            "redis": None,
        }

        if self._redis is not None:
            health["redis"] = await self._redis.health_check()
            if health["redis"]["status"] != "healthy" or not self.redis_connected:
                health["status"] = "degraded"

        return health

    def cached(
        self,
        key: str | Callable[..., str],
        ttl: int | None = None,
    ) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
        """
        Decorator for async functions, backed by ``get_or_compute``.

        ``key`` is either a fixed key or a callable receiving the decorated
        function's arguments.

        Usage:
            @cache.cached(lambda user_id: build_key(CacheNamespace.USER, user_id), ttl=CacheTTL.LONG)
            async def load_user(user_id): ...
        """

        def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
            @wraps(fn)
            async def wrapper(*args, **kwargs) -> T:
                cache_key = key(*args, **kwargs) if callable(key) else key
                return await self.get_or_compute(cache_key, lambda: fn(*args, **kwargs), ttl)

            return wrapper

        return decorator
