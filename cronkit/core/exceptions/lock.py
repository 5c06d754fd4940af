"""
Job Lock Exceptions
"""

from cronkit.core.exceptions.base import CronkitError


class LockError(CronkitError):
    """Base exception for job lock errors."""
    pass


class LockAcquisitionError(LockError):
    """
    Raised by ``JobLockManager.hold`` when the lock cannot be taken.

    ``acquire`` itself never raises for contention; it returns a
    ``LockResult`` with ``acquired=False``.
    """
    pass
