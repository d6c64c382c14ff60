"""Tests for job status reads and the abandoned-job heuristic."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from whale_agent.job_store import InMemoryJobStore
from whale_agent.models import Job, JobStatus
from whale_agent.providers.base import ProviderSpec
from whale_agent.status import likely_abandoned, max_pipeline_seconds, read_job_status, to_view

_T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _job(status=JobStatus.RUNNING, **kw):
    return Job(
        id="j1", subject_key="bitcoin:abc", analysis_kind="whale_analysis",
        status=status, created_at=_T0, updated_at=_T0, **kw,
    )


class TestMaxPipelineSeconds:

    def test_sums_every_attempt_and_backoff(self):
        catalog = [
            ProviderSpec("a", "fast", "fast", timeout=30),
            ProviderSpec("a", "deep", "deep", timeout=120),
        ]
        worst = max_pipeline_seconds(
            catalog, context_timeout=5, max_attempts=3, backoff_base=1, backoff_cap=8
        )
        # 5 + (30*3 + 1 + 2) + (120*3 + 1 + 2)
        assert worst == 461

    def test_empty_catalog(self):
        assert max_pipeline_seconds(
            [], context_timeout=5, max_attempts=3, backoff_base=1, backoff_cap=8
        ) == 5


class TestLikelyAbandoned:

    def test_fresh_running_job(self):
        assert not likely_abandoned(_job(), stale_after_seconds=600, now=_T0 + timedelta(seconds=60))

    def test_stale_running_job(self):
        assert likely_abandoned(_job(), stale_after_seconds=600, now=_T0 + timedelta(seconds=601))

    def test_terminal_never_abandoned(self):
        job = _job(JobStatus.COMPLETED, result={"analysis": {}})
        assert not likely_abandoned(job, stale_after_seconds=1, now=_T0 + timedelta(days=1))

    def test_disabled(self):
        assert not likely_abandoned(_job(), stale_after_seconds=0, now=_T0 + timedelta(days=1))


class TestReadJobStatus:

    def test_view_fields(self):
        view = to_view(_job(JobStatus.FAILED, failure_reason="invalid_output: 2 schema problem(s)"),
                       stale_after_seconds=600, now=_T0)
        assert view.job_id == "j1"
        assert view.status == JobStatus.FAILED
        assert view.failure_reason.startswith("invalid_output")
        assert view.result is None
        assert not view.likely_abandoned

    @pytest.mark.asyncio
    async def test_unknown_job(self):
        assert await read_job_status(InMemoryJobStore(), "missing", stale_after_seconds=600) is None

    @pytest.mark.asyncio
    async def test_uses_store_clock(self):
        now = [_T0]
        store = InMemoryJobStore(clock=lambda: now[0])
        job, _ = await store.create_or_reuse("bitcoin:abc", "whale_analysis", {})
        await store.claim(job.id)

        view = await read_job_status(store, job.id, stale_after_seconds=600)
        assert view.status == JobStatus.RUNNING
        assert not view.likely_abandoned

        now[0] = _T0 + timedelta(seconds=900)
        view = await read_job_status(store, job.id, stale_after_seconds=600)
        assert view.likely_abandoned
