from .logger import (
    bind_job_context,
    clear_job_context,
    get_job_name,
    get_logger,
    log_stage,
    setup_logging,
)

__all__ = [
    "bind_job_context",
    "clear_job_context",
    "get_job_name",
    "get_logger",
    "log_stage",
    "setup_logging",
]
