"""
Jobs Module

Job lock / idempotency guard and the cron endpoint wrapper.
"""

from .cron_handler import CronJobOptions, is_authorized, log_cron_execution, wrap_cron_handler
from .job_lock import JobLockManager, LockRecord, LockResult, default_holder_id

__all__ = [
    "CronJobOptions",
    "JobLockManager",
    "LockRecord",
    "LockResult",
    "default_holder_id",
    "is_authorized",
    "log_cron_execution",
    "wrap_cron_handler",
]
