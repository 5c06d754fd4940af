"""
Resilience Container

Composition root: builds and owns the cache, the job lock manager, the circuit
breaker registry and the rate limiter from one ``Settings`` object.

Startup order:  cache (connect + maintenance task)
Shutdown order: circuit breakers -> cache (pending writes, maintenance, Redis)

Usage with FastAPI:
    container = ResilienceContainer.from_settings(get_settings())
    app = FastAPI(lifespan=container.lifespan)
    app.add_api_route("/api/cron/digest", container.cron_route("digest", send_digest))
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from cronkit.core.config.settings import Settings, get_settings
from cronkit.core.logging.logger import get_logger, setup_logging
from cronkit.core.resilience.circuit_breaker import CircuitBreakerRegistry
from cronkit.core.resilience.retry import RetryOptions
from cronkit.infrastructure.cache.cache_manager import CacheBackendConfig, TieredCache
from cronkit.infrastructure.cache.redis_client import RedisClient
from cronkit.jobs.cron_handler import CronHandler, CronJobOptions, wrap_cron_handler
from cronkit.jobs.job_lock import JobLockManager
from cronkit.rate_limiting.rate_limiter import RateLimiter

logger = get_logger(__name__)


class ResilienceContainer:
    def __init__(
        self,
        cache: TieredCache,
        settings: Settings | None = None,
        circuit_breakers: CircuitBreakerRegistry | None = None,
    ):
        self.settings = settings or get_settings()
        self.cache = cache
        self.job_locks = JobLockManager(
            cache,
            default_lock_ttl=self.settings.CRON_LOCK_TTL,
            default_last_run_ttl=self.settings.CRON_LAST_RUN_TTL,
        )
        self.circuit_breakers = circuit_breakers or CircuitBreakerRegistry(
            failure_threshold=self.settings.CB_FAILURE_THRESHOLD,
            reset_time_ms=self.settings.CB_RESET_TIME_MS,
        )
        self.rate_limiter = RateLimiter(cache)
        self._initialized = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ResilienceContainer":
        settings = settings or get_settings()
        backend = CacheBackendConfig.from_settings(settings)

        redis_client = None
        if backend.url:
            redis_client = RedisClient(
                url=backend.url,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
            )

        cache = TieredCache(
            backend,
            redis_client=redis_client,
            default_ttl=settings.CACHE_DEFAULT_TTL,
            memory_max_size=settings.CACHE_MEMORY_MAX_SIZE,
            sweep_interval=settings.CACHE_SWEEP_INTERVAL,
            max_reconnect_attempts=settings.CACHE_MAX_RECONNECT_ATTEMPTS,
        )
        return cls(cache, settings=settings)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def default_retry_options(self) -> RetryOptions:
        return RetryOptions(
            max_retries=self.settings.RETRY_MAX_RETRIES,
            initial_delay_ms=self.settings.RETRY_INITIAL_DELAY_MS,
            max_delay_ms=self.settings.RETRY_MAX_DELAY_MS,
            exponential_base=self.settings.RETRY_EXPONENTIAL_BASE,
        )

    async def initialize(self) -> None:
        if self._initialized:
            return

        await self.cache.initialize()
        self._initialized = True
        logger.info(
            "Resilience container ready",
            backend=self.cache.backend.kind.value,
            redis_connected=self.cache.redis_connected,
        )

    async def shutdown(self) -> None:
        if not self._initialized:
            return

        self.circuit_breakers.shutdown()
        await self.cache.shutdown()
        self._initialized = False
        logger.info("Resilience container shut down")

    async def health_check(self) -> dict[str, Any]:
        return {
            "cache": await self.cache.health_check(),
            "circuit_breakers": self.circuit_breakers.get_all_stats(),
        }

    def cron_route(
        self,
        job_name: str,
        handler: CronHandler,
        options: CronJobOptions | None = None,
    ):
        """``wrap_cron_handler`` bound to this container's locks and secrets."""
        options = options or CronJobOptions(
            lock_ttl=self.settings.CRON_LOCK_TTL,
            retry=self.default_retry_options(),
        )
        return wrap_cron_handler(
            job_name,
            handler,
            lock_manager=self.job_locks,
            options=options,
            cron_secret=self.settings.CRON_SECRET,
            api_key=self.settings.CRON_API_KEY,
        )

    @asynccontextmanager
    async def lifespan(self, app: Any = None) -> AsyncIterator["ResilienceContainer"]:
        """FastAPI lifespan: set up logging, initialize, and always shut down."""
        setup_logging(
            log_level=self.settings.logging.LOG_LEVEL,
            log_format=self.settings.logging.LOG_FORMAT,
        )
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()


# Global container instance (singleton pattern)
_container: ResilienceContainer | None = None


def get_container() -> ResilienceContainer:
    """
    Get the global container (built from settings on first use).

    Returns:
        ResilienceContainer: Global container instance
    """
    global _container

    if _container is None:
        _container = ResilienceContainer.from_settings()

    return _container


async def init_container(settings: Settings | None = None) -> ResilienceContainer:
    """Build (if needed) and initialize the global container."""
    global _container

    if _container is None:
        _container = ResilienceContainer.from_settings(settings)

    await _container.initialize()
    return _container


async def close_container() -> None:
    """Shut down and forget the global container."""
    global _container

    if _container is not None:
        await _container.shutdown()
        _container = None
