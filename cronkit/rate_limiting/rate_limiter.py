"""
Rate Limiter

Fixed-window request counting backed by the tiered cache.

Algorithm:
1. ``window_number = now // window_seconds``
2. INCR ``ratelimit:<identifier>:<window_number>``
3. On the first hit of a window, expire the key after ``window_seconds + 1``
4. Allowed while the count is <= limit

Every process sharing the Redis instance sees the same counter, because INCR
is atomic. A new window uses a new key, so counters never need resetting.

Failure Policy: fail open. Counting runs in strict-remote mode, so when a
configured Redis fails the request is allowed and the failure is logged
instead of being counted per process. A broken backend must not take the
API down with it. Memory-only caches count in memory.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from cronkit.core.config.constants import (
    HEADER_CF_CONNECTING_IP,
    HEADER_FINGERPRINT,
    HEADER_FORWARDED_FOR,
    HEADER_RATE_LIMIT,
    HEADER_RATE_REMAINING,
    HEADER_RATE_RESET,
    HEADER_REAL_IP,
    HEADER_RETRY_AFTER,
    REDIS_KEY_RATE_LIMIT,
    Stage,
)
from cronkit.core.exceptions import CacheError, RateLimitExceededError
from cronkit.core.logging.logger import get_logger, log_stage
from cronkit.infrastructure.cache.cache_manager import TieredCache

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    key: str
    limit: int = 10
    window_seconds: int = 60

    def __post_init__(self):
        if self.limit < 1:
            raise ValueError("limit must be at least 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")


@dataclass(frozen=True)
class RateLimitResult:
    """``reset`` is the Unix time (seconds) at which the current window ends."""

    success: bool
    remaining: int
    reset: int
    limit: int

    def headers(self) -> dict[str, str]:
        return {
            HEADER_RATE_LIMIT: str(self.limit),
            HEADER_RATE_REMAINING: str(self.remaining),
            HEADER_RATE_RESET: str(self.reset),
        }


@dataclass(frozen=True)
class RateLimitPreset:
    limit: int
    window_seconds: int


RATE_LIMIT_PRESETS: dict[str, RateLimitPreset] = {
    # AI endpoints
    "AI_ANALYSIS": RateLimitPreset(limit=10, window_seconds=60),
    "AI_BUSINESS_ASSISTANT": RateLimitPreset(limit=5, window_seconds=60),
    "SMART_SCAN": RateLimitPreset(limit=5, window_seconds=60),
    "BATCH_OPERATIONS": RateLimitPreset(limit=5, window_seconds=60),
    "BG_REMOVAL_BATCH": RateLimitPreset(limit=10, window_seconds=60),
    "CONTENT_GENERATION": RateLimitPreset(limit=20, window_seconds=60),
    "BG_REMOVAL": RateLimitPreset(limit=50, window_seconds=60),
    # Auth
    "LOGIN": RateLimitPreset(limit=10, window_seconds=60),
    # General API
    "STANDARD": RateLimitPreset(limit=100, window_seconds=60),
    # Mobile
    "MOBILE_SCAN": RateLimitPreset(limit=30, window_seconds=60),
    "MOBILE_PHOTO_UPLOAD": RateLimitPreset(limit=10, window_seconds=60),
    "MOBILE_PROFILE_UPDATE": RateLimitPreset(limit=5, window_seconds=60),
    "MOBILE_PRODUCT_SUBMIT": RateLimitPreset(limit=10, window_seconds=60),
    "MOBILE_SEARCH": RateLimitPreset(limit=60, window_seconds=60),
    "MOBILE_FEEDBACK": RateLimitPreset(limit=5, window_seconds=60),
    # Voting
    "VOTING": RateLimitPreset(limit=10, window_seconds=60),
    "VOTE_COOLDOWN": RateLimitPreset(limit=1, window_seconds=5),
}


class RateLimiter:
    """
    Cache-backed fixed-window rate limiter.

    Usage:
        limiter = RateLimiter(cache)
        result = await limiter.check_limit(RateLimitConfig(key="ip:1.2.3.4", limit=10))
        if not result.success:
            return rate_limited_response(result)
    """

    def __init__(self, cache: TieredCache, clock: Callable[[], float] = time.time):
        self._cache = cache
        self._clock = clock

    async def check_limit(self, config: RateLimitConfig) -> RateLimitResult:
        now = int(self._clock())
        window = config.window_seconds
        window_number = now // window
        bucket_key = f"{REDIS_KEY_RATE_LIMIT}:{config.key}:{window_number}"

        try:
            count = await self._cache.increment(bucket_key, fallback=False)
            if count == 1:
                await self._cache.expire(bucket_key, window + 1, fallback=False)
        except CacheError as e:
            log_stage(
                logger,
                Stage.RATE_LIMITING,
                "Rate limit check failed, allowing request",
                level="warning",
                key=config.key,
                error=e.message,
            )
            return RateLimitResult(
                success=True,
                remaining=config.limit,
                reset=now + window,
                limit=config.limit,
            )

        result = RateLimitResult(
            success=count <= config.limit,
            remaining=max(0, config.limit - count),
            reset=(window_number + 1) * window,
            limit=config.limit,
        )

        if not result.success:
            log_stage(
                logger,
                Stage.RATE_LIMITING,
                "Rate limit exceeded",
                level="warning",
                key=config.key,
                count=count,
                limit=config.limit,
            )
        return result

    async def rate_limit(
        self, identifier: str, limit: int = 10, window_seconds: int = 60
    ) -> RateLimitResult:
        return await self.check_limit(
            RateLimitConfig(key=identifier, limit=limit, window_seconds=window_seconds)
        )

    async def apply_preset(self, preset: str, identifier: str) -> RateLimitResult:
        """
        Check ``identifier`` against a named preset.

        Raises:
            KeyError: unknown preset name
        """
        config = RATE_LIMIT_PRESETS[preset]
        return await self.rate_limit(identifier, config.limit, config.window_seconds)

    async def check_and_respond(
        self, config: RateLimitConfig, message: str = "Rate limit exceeded"
    ) -> JSONResponse | None:
        """Return a 429 response when limited, None when the request may proceed."""
        result = await self.check_limit(config)
        if result.success:
            return None
        return rate_limited_response(result, message, now=int(self._clock()))

    async def enforce(self, config: RateLimitConfig) -> RateLimitResult:
        """
        Raising form of ``check_limit`` for code paths without a response.

        Raises:
            RateLimitExceededError: the limit for ``config.key`` is spent
        """
        result = await self.check_limit(config)
        if not result.success:
            raise RateLimitExceededError(
                f"Rate limit exceeded for {config.key}",
                reset=result.reset,
                remaining=result.remaining,
            )
        return result


def rate_limited_response(
    result: RateLimitResult,
    message: str = "Rate limit exceeded",
    now: int | None = None,
) -> JSONResponse:
    """Build the 429 response with rate limit headers."""
    now = int(time.time()) if now is None else now
    retry_after = max(1, result.reset - now)

    return JSONResponse(
        status_code=429,
        content={
            "error": message,
            "retryAfter": retry_after,
            "message": f"Too many requests. Please try again in {retry_after} seconds.",
        },
        headers={
            HEADER_RATE_LIMIT: str(result.remaining + 1),
            HEADER_RATE_REMAINING: str(result.remaining),
            HEADER_RATE_RESET: str(result.reset),
            HEADER_RETRY_AFTER: str(retry_after),
        },
    )


def get_client_ip(request: Request) -> str:
    """
    Resolve the caller's IP from proxy headers.

    Priority: first X-Forwarded-For entry > X-Real-IP > CF-Connecting-IP > "anonymous"
    """
    forwarded = request.headers.get(HEADER_FORWARDED_FOR)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    return (
        request.headers.get(HEADER_REAL_IP)
        or request.headers.get(HEADER_CF_CONNECTING_IP)
        or "anonymous"
    )


def get_rate_limit_identifier(request: Request, user_id: Any = None) -> str:
    """``user:<id>`` for authenticated callers, ``ip:<address>`` otherwise."""
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_client_ip(request)}"


def get_mobile_identifier(request: Request) -> str:
    """Prefer the device fingerprint header, then fall back to the IP."""
    fingerprint = request.headers.get(HEADER_FINGERPRINT)
    if fingerprint:
        return f"device:{fingerprint}"
    return f"ip:{get_client_ip(request)}"
