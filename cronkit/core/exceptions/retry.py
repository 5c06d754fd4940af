"""
Retry Exceptions
"""

from cronkit.core.exceptions.base import CronkitError


class RetryError(CronkitError):
    """Base exception for retry errors."""
    pass


class RetryExhaustedError(RetryError):
    """
    Raised by ``retryable`` wrappers once every attempt has failed.

    The last error is chained as ``__cause__`` and kept in ``last_error``.
    """

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_error: BaseException | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details={"attempts": attempts, **(details or {})})
        self.attempts = attempts
        self.last_error = last_error
