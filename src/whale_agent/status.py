"""
Job status reads.

Reads never block on a running worker.  A ``running`` job whose last update
is older than the worst-case pipeline duration (times a safety multiplier)
is flagged ``likely_abandoned``: the process that ran it probably died.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from .job_store import JobStore
from .models import Job, JobStatus, JobStatusView
from .providers.base import ProviderSpec


def max_pipeline_seconds(
    catalog: Sequence[ProviderSpec],
    *,
    context_timeout: float,
    max_attempts: int,
    backoff_base: float,
    backoff_cap: float,
) -> float:
    """Longest a worker run can take when every provider times out on every attempt.

    Server-supplied ``Retry-After`` waits are not included; the stale
    multiplier absorbs them.
    """
    waits = sum(min(backoff_base * (2 ** i), backoff_cap) for i in range(max(max_attempts - 1, 0)))
    per_provider = [spec.timeout * max_attempts + waits for spec in catalog]
    return context_timeout + sum(per_provider)


def likely_abandoned(job: Job, *, stale_after_seconds: float, now: Optional[datetime] = None) -> bool:
    if job.status != JobStatus.RUNNING or stale_after_seconds <= 0:
        return False
    now = now or datetime.now(tz=timezone.utc)
    return (now - job.updated_at).total_seconds() > stale_after_seconds


def to_view(job: Job, *, stale_after_seconds: float, now: Optional[datetime] = None) -> JobStatusView:
    return JobStatusView(
        job_id=job.id,
        analysis_kind=job.analysis_kind,
        status=job.status,
        result=job.result,
        failure_reason=job.failure_reason,
        created_at=job.created_at,
        updated_at=job.updated_at,
        likely_abandoned=likely_abandoned(job, stale_after_seconds=stale_after_seconds, now=now),
    )


async def read_job_status(
    store: JobStore, job_id: str, *, stale_after_seconds: float
) -> Optional[JobStatusView]:
    """Return the polling view of *job_id*, or ``None`` if no such job exists."""
    job = await store.get(job_id)
    if job is None:
        return None
    return to_view(job, stale_after_seconds=stale_after_seconds, now=store.now())
