"""
Circuit Breaker Exceptions

All exceptions related to circuit breaker operations
"""

from cronkit.core.exceptions.base import CronkitError


class CircuitBreakerError(CronkitError):
    """Base exception for circuit breaker errors."""
    pass


class CircuitBreakerOpenError(CircuitBreakerError):
    """
    Raised when circuit breaker is open (fail fast).

    The guarded operation was not invoked. ``retry_after_seconds`` is the
    remaining cool-down before the next call is let through as a probe.

    Common causes:
    - Too many consecutive failures
    - Downstream service is down
    """

    def __init__(self, message: str, key: str = "", retry_after_seconds: int = 0):
        super().__init__(
            message, details={"key": key, "retry_after_seconds": retry_after_seconds}
        )
        self.key = key
        self.retry_after_seconds = retry_after_seconds
