"""
Job store maintenance: startup recovery and a periodic reaper.

- At startup: ``running`` jobs past the stale threshold (left by a dead
  process) are failed with ``interrupted``.  (``pending`` ones are
  re-dispatched by the orchestrator.)
- Every ``MAINTENANCE_INTERVAL_SECONDS``: ``running`` jobs not updated within
  the stale threshold are failed with ``abandoned``, and terminal jobs older
  than ``JOB_RETENTION_DAYS`` are deleted.

All operations are best-effort: failures are logged but never crash the server.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from .job_store import JobStore
from .models import JobStatus

logger = logging.getLogger(__name__)

INTERRUPTED_REASON = "interrupted: the process running this job stopped before it finished"
ABANDONED_REASON = "abandoned: no progress within the maximum pipeline duration"

_maintenance_task: Optional[asyncio.Task] = None


async def recover_interrupted(store: JobStore, stale_after_seconds: float) -> int:
    """Fail ``running`` jobs not updated within *stale_after_seconds*.

    Other processes may share the store, so a fresh ``running`` job can
    belong to a live sibling and is left alone.
    """
    if stale_after_seconds <= 0:
        return 0
    cutoff = store.now() - timedelta(seconds=stale_after_seconds)
    try:
        jobs = await store.list_by_status(JobStatus.RUNNING, updated_before=cutoff)
        failed = 0
        for job in jobs:
            if await store.fail(job.id, INTERRUPTED_REASON):
                failed += 1
    except Exception:
        logger.exception("Startup recovery failed")
        return 0
    if failed:
        logger.warning("Startup recovery: %d interrupted job(s) marked failed", failed)
    return failed


async def reap_abandoned(store: JobStore, stale_after_seconds: float) -> int:
    """Fail ``running`` jobs whose last update is older than *stale_after_seconds*."""
    if stale_after_seconds <= 0:
        return 0
    cutoff = store.now() - timedelta(seconds=stale_after_seconds)
    reaped = 0
    for job in await store.list_by_status(JobStatus.RUNNING, updated_before=cutoff):
        if await store.fail(job.id, ABANDONED_REASON):
            reaped += 1
    if reaped:
        logger.warning("Reaped %d abandoned job(s)", reaped)
    return reaped


async def purge_old_jobs(store: JobStore, retention_days: int) -> int:
    cutoff = store.now() - timedelta(days=retention_days)
    deleted = await store.purge_terminal(cutoff)
    if deleted:
        logger.info("Purged %d terminal job(s) older than %dd", deleted, retention_days)
    return deleted


async def run_maintenance_once(
    store: JobStore, *, stale_after_seconds: float, retention_days: int
) -> tuple[int, int]:
    """One maintenance pass.  Returns ``(reaped, purged)``; never raises."""
    reaped = purged = 0
    try:
        reaped = await reap_abandoned(store, stale_after_seconds)
    except Exception:
        logger.exception("Abandoned-job sweep failed")
    try:
        purged = await purge_old_jobs(store, retention_days)
    except Exception:
        logger.exception("Job retention purge failed")
    return reaped, purged


async def _maintenance_loop(
    store: JobStore, *, interval: float, stale_after_seconds: float, retention_days: int
) -> None:
    logger.info(
        "Job maintenance loop started (interval=%ds, stale_after=%ds, retention=%dd)",
        interval, stale_after_seconds, retention_days,
    )
    while True:
        try:
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            break
        await run_maintenance_once(
            store, stale_after_seconds=stale_after_seconds, retention_days=retention_days
        )


def schedule_db_maintenance(
    store: JobStore, *, interval: float, stale_after_seconds: float, retention_days: int
) -> asyncio.Task:
    """Start the maintenance background task."""
    global _maintenance_task
    _maintenance_task = asyncio.create_task(
        _maintenance_loop(
            store,
            interval=interval,
            stale_after_seconds=stale_after_seconds,
            retention_days=retention_days,
        ),
        name="db_maintenance",
    )
    return _maintenance_task


def cancel_db_maintenance() -> None:
    """Cancel the maintenance background task."""
    global _maintenance_task
    if _maintenance_task and not _maintenance_task.done():
        _maintenance_task.cancel()
    _maintenance_task = None
