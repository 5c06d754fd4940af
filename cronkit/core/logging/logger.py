#!/usr/bin/env python3
"""
Structured Logging Module using structlog

This module provides structured logging with:
- Job name correlation for cron runs
- Stage identifiers for execution flow
- JSON formatting for log aggregation
- Secret redaction (bearer tokens, API keys)
- Context processors for automatic field injection

Architectural Decision: structlog for production logging
- Context-aware logging with automatic field injection
- JSON output for log aggregation
- Async-safe via context variables
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

from cronkit.core.config.settings import get_settings

# Context variables for the job currently executing in this task
job_name_ctx: ContextVar[str | None] = ContextVar("job_name", default=None)
holder_id_ctx: ContextVar[str | None] = ContextVar("holder_id", default=None)

_BEARER_RE = re.compile(r"\bBearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
_API_KEY_RE = re.compile(r"\b(sk|pk|rk)[-_][A-Za-z0-9_-]{8,}\b")
_REDIS_PASSWORD_RE = re.compile(r"(rediss?://[^:/@]*:)[^@]+@")


def add_job_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add the running job name and lock holder to the log event.

    This processor automatically adds the cron context to every log entry
    emitted while a wrapped handler is running.
    """
    job_name = job_name_ctx.get()
    if job_name:
        event_dict.setdefault("job_name", job_name)
    holder_id = holder_id_ctx.get()
    if holder_id:
        event_dict.setdefault("holder_id", holder_id)
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO timestamp to log event."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact credentials from log messages and string fields.

    Patterns redacted:
    - Bearer tokens -> Bearer [REDACTED]
    - API keys (sk-..., pk_...) -> [REDACTED]
    - Passwords embedded in redis:// URLs -> redis://user:[REDACTED]@
    """
    for field, value in list(event_dict.items()):
        if not isinstance(value, str):
            continue
        value = _BEARER_RE.sub("Bearer [REDACTED]", value)
        value = _API_KEY_RE.sub("[REDACTED]", value)
        value = _REDIS_PASSWORD_RE.sub(r"\1[REDACTED]@", value)
        event_dict[field] = value

    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Uppercase the level name."""
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Setup structured logging with structlog.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
    """
    settings = get_settings()

    log_level = log_level or settings.logging.LOG_LEVEL
    log_format = log_format or settings.logging.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_job_context,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_secrets,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage="CACHE.1")
    """
    return structlog.get_logger(name)


def bind_job_context(job_name: str, holder_id: str | None = None) -> None:
    """
    Set the job context for the current task.

    Called by the cron wrapper once the lock is acquired so that every log
    line emitted by the handler carries the job name.
    """
    job_name_ctx.set(job_name)
    holder_id_ctx.set(holder_id)


def get_job_name() -> str | None:
    """Get the job name bound to the current task."""
    return job_name_ctx.get()


def clear_job_context() -> None:
    """Clear job context at the end of a cron run."""
    job_name_ctx.set(None)
    holder_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger, stage: str, message: str, level: str = "info", **kwargs
) -> None:
    """
    Log a message with stage information.

    Usage:
        log_stage(logger, Stage.LOCK_ACQUIRE, "Lock acquired", job_name="digest")
    """
    log_func = getattr(logger, level.lower())
    stage_value = stage.value if hasattr(stage, "value") else stage
    log_func(message, stage=stage_value, **kwargs)
