"""
Rate Limiting Exceptions

All exceptions related to rate limiting operations
"""

from cronkit.core.exceptions.base import CronkitError


class RateLimitError(CronkitError):
    """Base exception for rate limiting errors."""
    pass


class RateLimitExceededError(RateLimitError):
    """
    Raised when rate limit is exceeded.

    ``check_limit`` reports rejection as a result; this exception is for
    callers that prefer raising, e.g. inside background jobs.

    The response should include:
    - X-RateLimit-Limit: Maximum requests allowed
    - X-RateLimit-Remaining: Requests remaining
    - X-RateLimit-Reset: Time when limit resets (Unix timestamp)
    """

    def __init__(self, message: str, reset: int = 0, remaining: int = 0):
        super().__init__(message, details={"reset": reset, "remaining": remaining})
        self.reset = reset
        self.remaining = remaining
