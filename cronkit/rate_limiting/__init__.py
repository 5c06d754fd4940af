"""
Rate Limiting Module

Provides fixed-window rate limiting on top of the tiered cache.
"""

from .rate_limiter import (
    RATE_LIMIT_PRESETS,
    RateLimitConfig,
    RateLimiter,
    RateLimitPreset,
    RateLimitResult,
    get_client_ip,
    get_mobile_identifier,
    get_rate_limit_identifier,
    rate_limited_response,
)

__all__ = [
    "RATE_LIMIT_PRESETS",
    "RateLimitConfig",
    "RateLimitPreset",
    "RateLimitResult",
    "RateLimiter",
    "get_client_ip",
    "get_mobile_identifier",
    "get_rate_limit_identifier",
    "rate_limited_response",
]
