#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the cache,
job-lock and resilience layers. All configuration is centralized here to ensure
consistency across modules.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Nested section objects (settings.cache, settings.cron, ...)
- Easy testing with reload_settings()
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cronkit.core.config import constants


class CacheSettings(BaseSettings):
    """
    Cache and Redis configuration.

    The presence of REDIS_URL selects Redis-backed mode; without it the cache
    runs in memory-only mode.
    """

    REDIS_URL: str | None = Field(default=None, description="Redis connection URL")
    REDIS_SOCKET_TIMEOUT: float = Field(default=5.0, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(
        default=constants.REDIS_CONNECT_TIMEOUT, description="Connection timeout in seconds"
    )
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum pooled connections")
    CACHE_DEFAULT_TTL: int = Field(default=constants.CacheTTL.MEDIUM, description="Default TTL")
    CACHE_MEMORY_MAX_SIZE: int = Field(
        default=constants.MEMORY_CACHE_MAX_SIZE, description="In-memory cache max entries"
    )
    CACHE_SWEEP_INTERVAL: int = Field(
        default=constants.MEMORY_CACHE_SWEEP_INTERVAL, description="Expired entry sweep interval"
    )
    CACHE_MAX_RECONNECT_ATTEMPTS: int = Field(
        default=constants.REDIS_MAX_RECONNECT_ATTEMPTS,
        description="Reconnection attempts before staying in fallback mode",
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CronSettings(BaseSettings):
    """Cron access gate and lock defaults."""

    CRON_SECRET: str | None = Field(default=None, description="Bearer secret for cron callers")
    CRON_API_KEY: str | None = Field(default=None, description="x-api-key secret for cron callers")
    CRON_LOCK_TTL: int = Field(default=constants.DEFAULT_LOCK_TTL, description="Lock TTL")
    CRON_LAST_RUN_TTL: int = Field(
        default=constants.DEFAULT_LAST_RUN_TTL, description="Last-run TTL without skip window"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RetrySettings(BaseSettings):
    """Exponential backoff defaults."""

    RETRY_MAX_RETRIES: int = Field(default=constants.MAX_RETRIES, ge=0)
    RETRY_INITIAL_DELAY_MS: int = Field(default=constants.RETRY_INITIAL_DELAY_MS, ge=0)
    RETRY_MAX_DELAY_MS: int = Field(default=constants.RETRY_MAX_DELAY_MS, ge=0)
    RETRY_EXPONENTIAL_BASE: float = Field(default=constants.RETRY_EXPONENTIAL_BASE, gt=0)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CircuitBreakerSettings(BaseSettings):
    """Circuit breaker thresholds."""

    CB_FAILURE_THRESHOLD: int = Field(default=constants.CB_FAILURE_THRESHOLD, ge=1)
    CB_RESET_TIME_MS: int = Field(default=constants.CB_RESET_TIME_MS, ge=0)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """Rate limiting defaults."""

    RATE_LIMIT_DEFAULT_LIMIT: int = Field(default=10, ge=1)
    RATE_LIMIT_DEFAULT_WINDOW: int = Field(default=60, ge=1)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    Usage:
        from cronkit.core.config import get_settings

        settings = get_settings()
        redis_url = settings.cache.REDIS_URL
        threshold = settings.circuit_breaker.CB_FAILURE_THRESHOLD
    """

    # Cache / Redis
    REDIS_URL: str | None = Field(default=None, description="Redis connection URL")
    REDIS_SOCKET_TIMEOUT: float = Field(default=5.0)
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=constants.REDIS_CONNECT_TIMEOUT)
    REDIS_MAX_CONNECTIONS: int = Field(default=50)
    CACHE_DEFAULT_TTL: int = Field(default=constants.CacheTTL.MEDIUM)
    CACHE_MEMORY_MAX_SIZE: int = Field(default=constants.MEMORY_CACHE_MAX_SIZE)
    CACHE_SWEEP_INTERVAL: int = Field(default=constants.MEMORY_CACHE_SWEEP_INTERVAL)
    CACHE_MAX_RECONNECT_ATTEMPTS: int = Field(default=constants.REDIS_MAX_RECONNECT_ATTEMPTS)

    # Cron
    CRON_SECRET: str | None = Field(default=None)
    CRON_API_KEY: str | None = Field(default=None)
    CRON_LOCK_TTL: int = Field(default=constants.DEFAULT_LOCK_TTL)
    CRON_LAST_RUN_TTL: int = Field(default=constants.DEFAULT_LAST_RUN_TTL)

    # Retry
    RETRY_MAX_RETRIES: int = Field(default=constants.MAX_RETRIES)
    RETRY_INITIAL_DELAY_MS: int = Field(default=constants.RETRY_INITIAL_DELAY_MS)
    RETRY_MAX_DELAY_MS: int = Field(default=constants.RETRY_MAX_DELAY_MS)
    RETRY_EXPONENTIAL_BASE: float = Field(default=constants.RETRY_EXPONENTIAL_BASE)

    # Circuit breaker
    CB_FAILURE_THRESHOLD: int = Field(default=constants.CB_FAILURE_THRESHOLD)
    CB_RESET_TIME_MS: int = Field(default=constants.CB_RESET_TIME_MS)

    # Rate limiting
    RATE_LIMIT_DEFAULT_LIMIT: int = Field(default=10)
    RATE_LIMIT_DEFAULT_WINDOW: int = Field(default=60)

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development", description="Application environment"
    )
    APP_NAME: str = Field(default="cronkit", description="Application name")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("REDIS_URL")
    @classmethod
    def validate_redis_url(cls, v):
        """Reject URLs redis-py cannot open; blank values mean memory-only mode."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must start with redis://, rediss:// or unix://")
        return v

    # Nested configuration objects
    @property
    def cache(self) -> CacheSettings:
        """Get cache settings."""
        return CacheSettings(
            REDIS_URL=self.REDIS_URL,
            REDIS_SOCKET_TIMEOUT=self.REDIS_SOCKET_TIMEOUT,
            REDIS_SOCKET_CONNECT_TIMEOUT=self.REDIS_SOCKET_CONNECT_TIMEOUT,
            REDIS_MAX_CONNECTIONS=self.REDIS_MAX_CONNECTIONS,
            CACHE_DEFAULT_TTL=self.CACHE_DEFAULT_TTL,
            CACHE_MEMORY_MAX_SIZE=self.CACHE_MEMORY_MAX_SIZE,
            CACHE_SWEEP_INTERVAL=self.CACHE_SWEEP_INTERVAL,
            CACHE_MAX_RECONNECT_ATTEMPTS=self.CACHE_MAX_RECONNECT_ATTEMPTS,
        )

    @property
    def cron(self) -> CronSettings:
        """Get cron settings."""
        return CronSettings(
            CRON_SECRET=self.CRON_SECRET,
            CRON_API_KEY=self.CRON_API_KEY,
            CRON_LOCK_TTL=self.CRON_LOCK_TTL,
            CRON_LAST_RUN_TTL=self.CRON_LAST_RUN_TTL,
        )

    @property
    def retry(self) -> RetrySettings:
        """Get retry settings."""
        return RetrySettings(
            RETRY_MAX_RETRIES=self.RETRY_MAX_RETRIES,
            RETRY_INITIAL_DELAY_MS=self.RETRY_INITIAL_DELAY_MS,
            RETRY_MAX_DELAY_MS=self.RETRY_MAX_DELAY_MS,
            RETRY_EXPONENTIAL_BASE=self.RETRY_EXPONENTIAL_BASE,
        )

    @property
    def circuit_breaker(self) -> CircuitBreakerSettings:
        """Get circuit breaker settings."""
        return CircuitBreakerSettings(
            CB_FAILURE_THRESHOLD=self.CB_FAILURE_THRESHOLD,
            CB_RESET_TIME_MS=self.CB_RESET_TIME_MS,
        )

    @property
    def rate_limit(self) -> RateLimitSettings:
        """Get rate limit settings."""
        return RateLimitSettings(
            RATE_LIMIT_DEFAULT_LIMIT=self.RATE_LIMIT_DEFAULT_LIMIT,
            RATE_LIMIT_DEFAULT_WINDOW=self.RATE_LIMIT_DEFAULT_WINDOW,
        )

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
