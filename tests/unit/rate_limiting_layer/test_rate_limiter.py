"""
Unit Tests for RateLimiter

Tests window counting, expiry, fail-open behavior, presets, the 429 response
and identifier extraction.
"""

from unittest.mock import AsyncMock

import pytest
from starlette.requests import Request

from cronkit.core.exceptions import CacheConnectionError, RateLimitExceededError
from cronkit.infrastructure.cache.cache_manager import TieredCache
from cronkit.rate_limiting.rate_limiter import (
    RATE_LIMIT_PRESETS,
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
    get_mobile_identifier,
    get_rate_limit_identifier,
    rate_limited_response,
)


def make_request(headers: dict[str, str] | None = None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


@pytest.fixture
def limiter(memory_tiered_cache, fake_clock):
    return RateLimiter(memory_tiered_cache, clock=fake_clock)


@pytest.mark.unit
class TestCheckLimit:
    @pytest.mark.asyncio
    async def test_counts_down_then_rejects(self, limiter, fake_clock):
        config = RateLimitConfig(key="ip:1.2.3.4", limit=3, window_seconds=60)

        results = [await limiter.check_limit(config) for _ in range(4)]

        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert [r.success for r in results] == [True, True, True, False]
        window_number = int(fake_clock()) // 60
        assert all(r.reset == (window_number + 1) * 60 for r in results)
        assert all(r.limit == 3 for r in results)

    @pytest.mark.asyncio
    async def test_bucket_key_and_expiry(self, limiter, memory_tiered_cache, fake_clock):
        await limiter.check_limit(RateLimitConfig(key="user:7", limit=5, window_seconds=60))

        bucket = f"ratelimit:user:7:{int(fake_clock()) // 60}"
        assert await memory_tiered_cache.get(bucket) == 1
        assert await memory_tiered_cache.memory.ttl(bucket) == 61

    @pytest.mark.asyncio
    async def test_new_window_starts_fresh(self, limiter, fake_clock):
        config = RateLimitConfig(key="ip:1.2.3.4", limit=1, window_seconds=60)
        await limiter.check_limit(config)
        assert (await limiter.check_limit(config)).success is False

        fake_clock.advance(60)

        assert (await limiter.check_limit(config)).success is True

    @pytest.mark.asyncio
    async def test_identifiers_are_independent(self, limiter):
        await limiter.rate_limit("ip:a", limit=1)

        assert (await limiter.rate_limit("ip:b", limit=1)).success is True

    @pytest.mark.asyncio
    async def test_redis_backend(self, redis_tiered_cache, fake_redis, fake_clock):
        limiter = RateLimiter(redis_tiered_cache, clock=fake_clock)
        config = RateLimitConfig(key="ip:9.9.9.9", limit=2, window_seconds=10)

        results = [await limiter.check_limit(config) for _ in range(3)]

        assert [r.success for r in results] == [True, True, False]
        bucket = f"ratelimit:ip:9.9.9.9:{int(fake_clock()) // 10}"
        assert 0 < await fake_redis.ttl(bucket) <= 11

    @pytest.mark.asyncio
    async def test_backend_error_fails_open(self, fake_clock):
        cache = AsyncMock(spec=TieredCache)
        cache.increment.side_effect = CacheConnectionError("down")
        limiter = RateLimiter(cache, clock=fake_clock)

        result = await limiter.check_limit(RateLimitConfig(key="k", limit=10, window_seconds=60))

        assert result.success is True
        assert result.remaining == 10
        assert result.reset == int(fake_clock()) + 60

    @pytest.mark.asyncio
    async def test_failing_redis_fails_open_instead_of_counting_locally(
        self, degraded_tiered_cache, fake_clock
    ):
        limiter = RateLimiter(degraded_tiered_cache, clock=fake_clock)
        config = RateLimitConfig(key="ip:5.5.5.5", limit=3, window_seconds=60)

        results = [await limiter.check_limit(config) for _ in range(4)]

        assert [(r.success, r.remaining) for r in results] == [(True, 3)] * 4
        assert all(r.reset == int(fake_clock()) + 60 for r in results)

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            RateLimitConfig(key="k", limit=0)
        with pytest.raises(ValueError):
            RateLimitConfig(key="k", window_seconds=0)


@pytest.mark.unit
class TestPresetsAndHelpers:
    def test_preset_values(self):
        assert RATE_LIMIT_PRESETS["STANDARD"].limit == 100
        assert RATE_LIMIT_PRESETS["VOTE_COOLDOWN"].limit == 1
        assert RATE_LIMIT_PRESETS["VOTE_COOLDOWN"].window_seconds == 5
        assert len(RATE_LIMIT_PRESETS) == 17

    @pytest.mark.asyncio
    async def test_apply_preset(self, limiter):
        first = await limiter.apply_preset("VOTE_COOLDOWN", "user:1")
        second = await limiter.apply_preset("VOTE_COOLDOWN", "user:1")

        assert first.success is True
        assert second.success is False

    @pytest.mark.asyncio
    async def test_unknown_preset(self, limiter):
        with pytest.raises(KeyError):
            await limiter.apply_preset("NOPE", "user:1")

    @pytest.mark.asyncio
    async def test_check_and_respond(self, limiter):
        config = RateLimitConfig(key="ip:x", limit=1, window_seconds=60)

        assert await limiter.check_and_respond(config) is None
        response = await limiter.check_and_respond(config)

        assert response.status_code == 429

    @pytest.mark.asyncio
    async def test_enforce_raises(self, limiter):
        config = RateLimitConfig(key="ip:x", limit=1, window_seconds=60)
        await limiter.enforce(config)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.enforce(config)

        assert exc_info.value.remaining == 0


@pytest.mark.unit
class TestRateLimitedResponse:
    def test_headers_and_body(self):
        result = RateLimitResult(success=False, remaining=0, reset=1_700_000_100, limit=5)

        response = rate_limited_response(result, "Slow down", now=1_700_000_070)

        assert response.status_code == 429
        assert response.headers["X-RateLimit-Limit"] == "1"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Reset"] == "1700000100"
        assert response.headers["Retry-After"] == "30"
        assert b'"error":"Slow down"' in response.body
        assert b'"retryAfter":30' in response.body

    def test_retry_after_at_least_one(self):
        result = RateLimitResult(success=False, remaining=0, reset=100, limit=5)

        response = rate_limited_response(result, now=200)

        assert response.headers["Retry-After"] == "1"

    def test_result_headers(self):
        result = RateLimitResult(success=True, remaining=4, reset=160, limit=5)

        assert result.headers() == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "4",
            "X-RateLimit-Reset": "160",
        }


@pytest.mark.unit
class TestIdentifiers:
    def test_user_id_wins(self):
        assert get_rate_limit_identifier(make_request({"x-real-ip": "1.1.1.1"}), 42) == "user:42"

    def test_first_forwarded_for_entry(self):
        request = make_request({"x-forwarded-for": " 203.0.113.5 , 10.0.0.1"})

        assert get_rate_limit_identifier(request) == "ip:203.0.113.5"

    def test_real_ip_then_cloudflare(self):
        assert get_rate_limit_identifier(make_request({"x-real-ip": "1.1.1.1"})) == "ip:1.1.1.1"
        assert (
            get_rate_limit_identifier(make_request({"cf-connecting-ip": "2.2.2.2"}))
            == "ip:2.2.2.2"
        )

    def test_anonymous_fallback(self):
        assert get_rate_limit_identifier(make_request()) == "ip:anonymous"

    def test_mobile_fingerprint(self):
        assert get_mobile_identifier(make_request({"x-fingerprint": "abc"})) == "device:abc"
        assert get_mobile_identifier(make_request({"x-real-ip": "3.3.3.3"})) == "ip:3.3.3.3"
