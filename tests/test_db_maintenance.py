"""Tests for startup recovery and the periodic job reaper."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from whale_agent.db_maintenance import (
    ABANDONED_REASON,
    INTERRUPTED_REASON,
    cancel_db_maintenance,
    purge_old_jobs,
    reap_abandoned,
    recover_interrupted,
    run_maintenance_once,
    schedule_db_maintenance,
)
from whale_agent.errors import StoreError
from whale_agent.job_store import InMemoryJobStore, SQLiteJobStore
from whale_agent.models import JobStatus

_T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return [_T0]


@pytest.fixture
def store(now):
    return InMemoryJobStore(clock=lambda: now[0])


async def _job(store, key, status):
    job, _ = await store.create_or_reuse(key, "whale_analysis", {})
    if status is JobStatus.PENDING:
        return job
    await store.claim(job.id)
    if status is JobStatus.COMPLETED:
        await store.complete(job.id, {"analysis": {}})
    return job


class TestRecoverInterrupted:

    @pytest.mark.asyncio
    async def test_fails_stale_running_jobs_only(self, store, now):
        running = await _job(store, "bitcoin:a", JobStatus.RUNNING)
        pending = await _job(store, "bitcoin:b", JobStatus.PENDING)
        now[0] = _T0 + timedelta(seconds=700)

        assert await recover_interrupted(store, stale_after_seconds=600) == 1

        failed = await store.get(running.id)
        assert failed.status == JobStatus.FAILED
        assert failed.failure_reason == INTERRUPTED_REASON
        assert (await store.get(pending.id)).status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_fresh_running_job_left_alone(self, store, now):
        running = await _job(store, "bitcoin:a", JobStatus.RUNNING)
        now[0] = _T0 + timedelta(seconds=30)

        assert await recover_interrupted(store, stale_after_seconds=600) == 0
        assert (await store.get(running.id)).status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_sibling_process_keeps_its_live_job(self, tmp_path, now):
        path = str(tmp_path / "jobs.db")
        owner = SQLiteJobStore(path, clock=lambda: now[0])
        starting = SQLiteJobStore(path, clock=lambda: now[0])
        try:
            job, _ = await owner.create_or_reuse("bitcoin:a", "whale_analysis", {})
            await owner.claim(job.id)
            now[0] = _T0 + timedelta(seconds=5)

            assert await recover_interrupted(starting, stale_after_seconds=600) == 0
            assert await owner.complete(job.id, {"analysis": {}}) is True
            assert (await starting.get(job.id)).status == JobStatus.COMPLETED
        finally:
            await owner.close()
            await starting.close()

    @pytest.mark.asyncio
    async def test_disabled(self, store, now):
        await _job(store, "bitcoin:a", JobStatus.RUNNING)
        now[0] = _T0 + timedelta(days=1)
        assert await recover_interrupted(store, stale_after_seconds=0) == 0

    @pytest.mark.asyncio
    async def test_store_error_is_logged_not_raised(self, store):
        with patch.object(store, "list_by_status", AsyncMock(side_effect=StoreError("locked"))):
            assert await recover_interrupted(store, stale_after_seconds=600) == 0


class TestReapAbandoned:

    @pytest.mark.asyncio
    async def test_only_stale_running_jobs(self, store, now):
        stale = await _job(store, "bitcoin:a", JobStatus.RUNNING)
        now[0] = _T0 + timedelta(seconds=500)
        fresh = await _job(store, "bitcoin:b", JobStatus.RUNNING)
        now[0] = _T0 + timedelta(seconds=700)

        assert await reap_abandoned(store, stale_after_seconds=600) == 1

        assert (await store.get(stale.id)).failure_reason == ABANDONED_REASON
        assert (await store.get(fresh.id)).status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_disabled(self, store, now):
        await _job(store, "bitcoin:a", JobStatus.RUNNING)
        now[0] = _T0 + timedelta(days=1)
        assert await reap_abandoned(store, stale_after_seconds=0) == 0


class TestPurge:

    @pytest.mark.asyncio
    async def test_removes_old_terminal_jobs(self, store, now):
        done = await _job(store, "bitcoin:a", JobStatus.COMPLETED)
        active = await _job(store, "bitcoin:b", JobStatus.PENDING)
        now[0] = _T0 + timedelta(days=8)

        assert await purge_old_jobs(store, retention_days=7) == 1
        assert await store.get(done.id) is None
        assert await store.get(active.id) is not None

    @pytest.mark.asyncio
    async def test_recent_jobs_kept(self, store, now):
        await _job(store, "bitcoin:a", JobStatus.COMPLETED)
        now[0] = _T0 + timedelta(days=2)
        assert await purge_old_jobs(store, retention_days=7) == 0


class TestRunMaintenanceOnce:

    @pytest.mark.asyncio
    async def test_counts(self, store, now):
        await _job(store, "bitcoin:a", JobStatus.RUNNING)
        await _job(store, "bitcoin:b", JobStatus.COMPLETED)
        now[0] = _T0 + timedelta(days=31)

        reaped, purged = await run_maintenance_once(store, stale_after_seconds=600, retention_days=30)

        assert (reaped, purged) == (1, 1)

    @pytest.mark.asyncio
    async def test_never_raises(self, store):
        with patch.object(store, "list_by_status", AsyncMock(side_effect=StoreError("gone"))), \
                patch.object(store, "purge_terminal", AsyncMock(side_effect=StoreError("gone"))):
            assert await run_maintenance_once(store, stale_after_seconds=600, retention_days=30) == (0, 0)


class TestSchedule:

    @pytest.mark.asyncio
    async def test_loop_runs_and_cancels(self):
        store = InMemoryJobStore(clock=lambda: _T0)
        with patch(
            "whale_agent.db_maintenance.run_maintenance_once", AsyncMock(return_value=(0, 0))
        ) as once:
            task = schedule_db_maintenance(store, interval=0.01, stale_after_seconds=600, retention_days=30)
            for _ in range(100):
                if once.await_count:
                    break
                await asyncio.sleep(0.01)
            cancel_db_maintenance()
            await task

        assert once.await_count >= 1
        once.assert_awaited_with(store, stale_after_seconds=600, retention_days=30)
        assert task.done()

    @pytest.mark.asyncio
    async def test_cancel_without_task(self):
        cancel_db_maintenance()
