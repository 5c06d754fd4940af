"""
Job Lock Manager

Distributed lock + idempotency guard for scheduled jobs.

MECHANISM OF ACTION:
-------------------
1.  **Skip window**: when ``skip_window > 0`` the last-run record is read
    first. A job that finished less than ``skip_window`` seconds ago is
    skipped without touching the lock.
2.  **Lock check**: an existing lock record means another holder is running
    the job. The caller gets ``acquired=False`` with the holder in ``reason``.
3.  **Lock write**: the record is written set-if-absent with ``lock_ttl`` and
    read back. Only the holder that reads back its own id owns the lock.
4.  **Release** deletes the lock (only when the caller still owns it) and
    writes the last-run record.

Keys:
    cron:lock:<job_name>      {job_name, holder_id, acquired_at, ttl_seconds}
    cron:last-run:<job_name>  ISO-8601 timestamp

Guarantees:
- With Redis, the write is SET NX EX, so exactly one holder wins across
  processes. On the memory fallback the write is exclusive within this
  process only.
- A crashed holder's lock disappears after ``lock_ttl``.
- A failing Redis degrades the lock to an in-process lock, because the tiered
  cache serves ``get``/``add`` from memory. Exclusion then holds within this
  process only.
- Errors the cache still raises (an unreadable record, or a cache with no
  fallback) make acquire FAIL OPEN: the job runs unguarded and a warning is
  logged. Storage failures during release are logged; the TTL cleans up.
"""

import os
import socket
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from cronkit.core.config.constants import (
    DEFAULT_LAST_RUN_TTL,
    DEFAULT_LOCK_TTL,
    REDIS_KEY_LAST_RUN,
    REDIS_KEY_LOCK,
    Stage,
)
from cronkit.core.exceptions import CacheError, LockAcquisitionError
from cronkit.core.logging.logger import get_logger, log_stage
from cronkit.infrastructure.cache.cache_manager import TieredCache

logger = get_logger(__name__)


def default_holder_id() -> str:
    """``<hostname>:<pid>:<random suffix>``, unique per acquire."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def lock_key(job_name: str) -> str:
    return f"{REDIS_KEY_LOCK}:{job_name}"


def last_run_key(job_name: str) -> str:
    return f"{REDIS_KEY_LAST_RUN}:{job_name}"


@dataclass(frozen=True)
class LockRecord:
    job_name: str
    holder_id: str
    acquired_at: str
    ttl_seconds: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_value(cls, job_name: str, value: Any) -> "LockRecord":
        if isinstance(value, dict):
            return cls(
                job_name=value.get("job_name", job_name),
                holder_id=str(value.get("holder_id", "unknown")),
                acquired_at=str(value.get("acquired_at", "unknown")),
                ttl_seconds=int(value.get("ttl_seconds", 0)),
            )
        # Foreign writers may store a bare holder id
        return cls(job_name=job_name, holder_id=str(value), acquired_at="unknown", ttl_seconds=0)


@dataclass(frozen=True)
class LockResult:
    acquired: bool
    skipped: bool = False
    reason: str | None = None
    holder_id: str | None = None


class JobLockManager:
    """
    Per-job mutual exclusion and skip-window guard.

    Usage:
        locks = JobLockManager(cache)

        result = await locks.acquire("daily-digest", lock_ttl=600, skip_window=3600)
        if result.acquired:
            try:
                await send_digest()
            finally:
                await locks.release("daily-digest", skip_window=3600, holder_id=result.holder_id)

        # or
        async with locks.hold("daily-digest", lock_ttl=600):
            await send_digest()
    """

    def __init__(
        self,
        cache: TieredCache,
        default_lock_ttl: int = DEFAULT_LOCK_TTL,
        default_last_run_ttl: int = DEFAULT_LAST_RUN_TTL,
        clock: Callable[[], datetime] | None = None,
    ):
        self._cache = cache
        self._default_lock_ttl = default_lock_ttl
        self._default_last_run_ttl = default_last_run_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def acquire(
        self,
        job_name: str,
        lock_ttl: int | None = None,
        skip_window: int = 0,
        holder_id: str | None = None,
    ) -> LockResult:
        """
        Try to take the lock for ``job_name``.

        Returns:
            LockResult; contention and skip-window suppression are reported
            here, never raised
        """
        lock_ttl = self._default_lock_ttl if lock_ttl is None else lock_ttl
        holder_id = holder_id or default_holder_id()

        try:
            if skip_window > 0:
                last_run = await self.get_last_run(job_name)
                if last_run is not None:
                    elapsed = (self._clock() - last_run).total_seconds()
                    if elapsed < skip_window:
                        reason = (
                            f"Last run {int(elapsed)}s ago, within {skip_window}s skip window"
                        )
                        log_stage(logger, Stage.LOCK_ACQUIRE, "Job skipped", job_name=job_name, reason=reason)
                        return LockResult(acquired=False, skipped=True, reason=reason)

            existing = await self.get_lock(job_name)
            if existing is not None:
                reason = f"held by {existing.holder_id} since {existing.acquired_at}"
                log_stage(logger, Stage.LOCK_ACQUIRE, "Lock busy", job_name=job_name, reason=reason)
                return LockResult(acquired=False, reason=reason)

            record = LockRecord(
                job_name=job_name,
                holder_id=holder_id,
                acquired_at=self._clock().isoformat(),
                ttl_seconds=lock_ttl,
            )
            await self._cache.add(lock_key(job_name), record.to_dict(), ttl=lock_ttl)

            current = await self.get_lock(job_name)
            if current is None or current.holder_id != holder_id:
                log_stage(logger, Stage.LOCK_ACQUIRE, "Lost lock race", job_name=job_name)
                return LockResult(acquired=False, reason="lost lock race")

        except CacheError as e:
            log_stage(
                logger,
                Stage.LOCK_ACQUIRE,
                "Lock storage unavailable, running unguarded",
                level="warning",
                job_name=job_name,
                error=e.message,
            )
            return LockResult(
                acquired=True,
                reason=f"lock storage unavailable: {e.message}",
                holder_id=holder_id,
            )

        log_stage(
            logger,
            Stage.LOCK_ACQUIRE,
            "Lock acquired",
            job_name=job_name,
            holder_id=holder_id,
            ttl=lock_ttl,
        )
        return LockResult(acquired=True, holder_id=holder_id)

    async def release(
        self,
        job_name: str,
        record_last_run: bool = True,
        skip_window: int = 0,
        holder_id: str | None = None,
    ) -> bool:
        """
        Drop the lock and optionally record the run.

        With ``holder_id`` the lock is deleted only while that holder owns
        it. Never raises for storage errors.

        Returns:
            True if the lock record was removed (or was already gone)
        """
        released = False
        try:
            current = await self.get_lock(job_name) if holder_id else None
            if current is not None and current.holder_id != holder_id:
                log_stage(
                    logger,
                    Stage.LOCK_RELEASE,
                    "Lock owned by another holder, leaving it",
                    level="warning",
                    job_name=job_name,
                    owner=current.holder_id,
                    holder_id=holder_id,
                )
            else:
                await self._cache.delete(lock_key(job_name))
                released = True

            if record_last_run:
                ttl = skip_window if skip_window > 0 else self._default_last_run_ttl
                await self._cache.set(last_run_key(job_name), self._clock().isoformat(), ttl=ttl)

        except CacheError as e:
            log_stage(
                logger,
                Stage.LOCK_RELEASE,
                "Lock release failed, TTL will expire it",
                level="error",
                job_name=job_name,
                error=e.message,
            )
            return False

        log_stage(
            logger,
            Stage.LOCK_RELEASE,
            "Lock released",
            job_name=job_name,
            released=released,
            recorded_last_run=record_last_run,
        )
        return released

    async def get_lock(self, job_name: str) -> LockRecord | None:
        value = await self._cache.get(lock_key(job_name))
        if value is None:
            return None
        return LockRecord.from_value(job_name, value)

    async def get_last_run(self, job_name: str) -> datetime | None:
        value = await self._cache.get(last_run_key(job_name))
        if not value:
            return None
        try:
            last_run = datetime.fromisoformat(str(value))
        except ValueError:
            logger.warning("Unreadable last-run record", job_name=job_name, value=value)
            return None
        if last_run.tzinfo is None:
            last_run = last_run.replace(tzinfo=timezone.utc)
        return last_run

    @asynccontextmanager
    async def hold(
        self,
        job_name: str,
        lock_ttl: int | None = None,
        skip_window: int = 0,
        record_last_run: bool = True,
    ) -> AsyncIterator[LockResult]:
        """
        Hold the lock for the duration of the block.

        Raises:
            LockAcquisitionError: the job is locked or inside its skip window
        """
        result = await self.acquire(job_name, lock_ttl=lock_ttl, skip_window=skip_window)
        if not result.acquired:
            raise LockAcquisitionError(
                f"Could not acquire lock for {job_name}: {result.reason}",
                details={"job_name": job_name, "skipped": result.skipped},
            )

        try:
            yield result
        finally:
            await self.release(
                job_name,
                record_last_run=record_last_run,
                skip_window=skip_window,
                holder_id=result.holder_id,
            )
