"""
Cron Handler Wrapper

Turns a job function into a FastAPI endpoint for an external scheduler.

Request flow:
    authorize -> acquire job lock -> run with retry -> release lock -> respond

Responses:
    401 {"error": "Unauthorized"}                                   bad/missing secret
    200 {"success": true, "jobName", "skipped": true, "reason"}      skip window or lock busy
    200 {"success": true, "jobName", "data", "duration", "attempts"} job succeeded
    500 {"success": false, "jobName", "error", "duration", "attempts"} retries exhausted

A busy lock answers 200 because another instance is already doing the work;
schedulers should not page anyone for it.
"""

import hmac
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from cronkit.core.config.constants import (
    DEFAULT_LOCK_TTL,
    HEADER_API_KEY,
    HEADER_AUTHORIZATION,
    CronStatus,
    Stage,
)
from cronkit.core.config.settings import get_settings
from cronkit.core.logging.logger import (
    bind_job_context,
    clear_job_context,
    get_logger,
    log_stage,
)
from cronkit.core.resilience.retry import RetryOptions, with_retry
from cronkit.jobs.job_lock import JobLockManager

logger = get_logger(__name__)

CronHandler = Callable[[Request], Awaitable[Any] | Any]


@dataclass(frozen=True)
class CronJobOptions:
    """
    Attributes:
        lock_ttl: Seconds before an abandoned lock expires
        skip_window: Seconds after a run during which new runs are skipped (0 = never)
        retry: Backoff for the job body
    """

    lock_ttl: int = DEFAULT_LOCK_TTL
    skip_window: int = 0
    retry: RetryOptions = field(default_factory=RetryOptions)


def log_cron_execution(job_name: str, status: CronStatus | str, **metadata) -> None:
    """Write one ``cron_execution`` audit line. Never raises."""
    status_value = status.value if isinstance(status, CronStatus) else str(status)
    try:
        logger.info(
            "cron_execution",
            job_name=job_name,
            status=status_value,
            success=status_value == CronStatus.SUCCESS.value,
            timestamp=datetime.now(timezone.utc).isoformat(),
            **metadata,
        )
    except Exception as e:
        logger.error("Failed to log cron execution", job_name=job_name, error=str(e))


def _secret_matches(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def is_authorized(request: Request, cron_secret: str | None, api_key: str | None) -> bool:
    """
    Check ``Authorization: Bearer <cron_secret>`` or ``x-api-key: <api_key>``.

    With neither secret configured nothing is authorized.
    """
    authorization = request.headers.get(HEADER_AUTHORIZATION, "")
    bearer = authorization[len("Bearer "):] if authorization.startswith("Bearer ") else None

    return _secret_matches(bearer, cron_secret) or _secret_matches(
        request.headers.get(HEADER_API_KEY), api_key
    )


def wrap_cron_handler(
    job_name: str,
    handler: CronHandler,
    *,
    lock_manager: JobLockManager,
    options: CronJobOptions | None = None,
    cron_secret: str | None = None,
    api_key: str | None = None,
) -> Callable[[Request], Awaitable[JSONResponse]]:
    """
    Wrap ``handler`` with authorization, the job lock and retry.

    Args:
        job_name: Lock and log identity of the job
        handler: Receives the request; its return value becomes ``data``
        lock_manager: Lock manager shared by every instance of the job
        options: Lock and retry settings
        cron_secret: Bearer secret (defaults to ``CRON_SECRET``)
        api_key: ``x-api-key`` secret (defaults to ``CRON_API_KEY``)

    Usage:
        app.add_api_route(
            "/api/cron/digest",
            wrap_cron_handler("digest", send_digest, lock_manager=container.job_locks),
            methods=["GET"],
        )
    """
    options = options or CronJobOptions()
    if cron_secret is None and api_key is None:
        settings = get_settings()
        cron_secret = settings.CRON_SECRET
        api_key = settings.CRON_API_KEY

    def on_retry(attempt: int, error: BaseException, delay_ms: float) -> None:
        log_stage(
            logger,
            Stage.RETRY,
            f"[{job_name}] Attempt {attempt} failed: {error}. Retrying in {round(delay_ms)}ms",
            level="warning",
            job_name=job_name,
            attempt=attempt,
            delay_ms=round(delay_ms),
        )

    retry_options = options.retry
    if retry_options.on_retry is None:
        retry_options = replace(retry_options, on_retry=on_retry)

    async def endpoint(request: Request) -> JSONResponse:
        if not is_authorized(request, cron_secret, api_key):
            logger.warning("Unauthorized cron request", job_name=job_name)
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})

        lock = await lock_manager.acquire(
            job_name, lock_ttl=options.lock_ttl, skip_window=options.skip_window
        )
        if not lock.acquired:
            log_cron_execution(job_name, CronStatus.SKIPPED, reason=lock.reason)
            return JSONResponse(
                status_code=200,
                content={
                    "success": True,
                    "jobName": job_name,
                    "skipped": True,
                    "reason": lock.reason,
                },
            )

        bind_job_context(job_name, lock.holder_id)
        try:
            log_stage(logger, Stage.CRON_START, "Cron job started", job_name=job_name)
            log_cron_execution(job_name, CronStatus.STARTED)

            result = await with_retry(lambda: handler(request), retry_options)

            log_cron_execution(
                job_name,
                CronStatus.SUCCESS if result.success else CronStatus.ERROR,
                duration=result.duration,
                attempts=result.attempts,
                error=result.error,
            )
            log_stage(
                logger,
                Stage.CRON_FINISH,
                "Cron job finished",
                level="info" if result.success else "error",
                job_name=job_name,
                success=result.success,
                duration_ms=result.duration,
                attempts=result.attempts,
            )
        finally:
            await lock_manager.release(
                job_name,
                record_last_run=True,
                skip_window=options.skip_window,
                holder_id=lock.holder_id,
            )
            clear_job_context()

        if result.success:
            return JSONResponse(
                status_code=200,
                content={
                    "success": True,
                    "jobName": job_name,
                    "data": jsonable_encoder(result.data),
                    "duration": result.duration,
                    "attempts": result.attempts,
                },
            )

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "jobName": job_name,
                "error": result.error,
                "duration": result.duration,
                "attempts": result.attempts,
            },
        )

    endpoint.__name__ = f"cron_{job_name.replace('-', '_')}"
    return endpoint
