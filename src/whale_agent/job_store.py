"""
Durable job records.

Two backends share one interface:

1. **InMemoryJobStore**: a plain ``dict``; single process, used by tests
   and the CLI.
2. **SQLiteJobStore**: ``aiosqlite`` with WAL; survives restarts.  A partial
   unique index guarantees at most one active job per
   ``(subject_key, analysis_kind)`` even if two processes race.

Every state change is a guarded transition: ``claim`` only moves
``pending → running``, ``complete`` / ``fail`` only leave ``running``.  A
transition that does not apply returns ``False`` / ``None`` instead of
overwriting.  I/O failures raise ``StoreError``.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import os
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from .errors import StoreError
from .models import ACTIVE_STATUSES, Job, JobStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


class JobStore(abc.ABC):
    """Abstract job store."""

    backend = "abstract"

    def __init__(self, *, clock: Clock = utcnow) -> None:
        self._clock = clock
        # Writes are sequenced; reads may see a slightly stale but consistent row
        self._lock = asyncio.Lock()

    def now(self) -> datetime:
        return self._clock()

    @abc.abstractmethod
    async def create_or_reuse(
        self,
        subject_key: str,
        analysis_kind: str,
        payload: dict[str, Any],
        *,
        reuse_window_seconds: float = 0,
    ) -> tuple[Job, bool]:
        """Return ``(job, created)``.

        Reuses a ``pending`` / ``running`` job for the pair, or a
        ``completed`` one updated within *reuse_window_seconds*.  Failed jobs
        never block a new submission.
        """

    @abc.abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        ...

    @abc.abstractmethod
    async def claim(self, job_id: str) -> Optional[Job]:
        """``pending → running``.  Returns the claimed job or ``None``."""

    @abc.abstractmethod
    async def complete(self, job_id: str, result: dict[str, Any]) -> bool:
        ...

    @abc.abstractmethod
    async def fail(self, job_id: str, reason: str) -> bool:
        ...

    @abc.abstractmethod
    async def list_by_status(
        self,
        status: JobStatus,
        *,
        updated_before: Optional[datetime] = None,
        limit: int = 500,
    ) -> list[Job]:
        ...

    @abc.abstractmethod
    async def purge_terminal(self, older_than: datetime) -> int:
        """Delete completed/failed jobs last updated before *older_than*."""

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryJobStore(JobStore):
    backend = "memory"

    def __init__(self, *, clock: Clock = utcnow) -> None:
        super().__init__(clock=clock)
        self._jobs: dict[str, Job] = {}

    async def create_or_reuse(self, subject_key, analysis_kind, payload, *, reuse_window_seconds=0):
        async with self._lock:
            now = self.now()
            existing = _find_reusable(
                (j for j in self._jobs.values()
                 if j.subject_key == subject_key and j.analysis_kind == analysis_kind),
                now,
                reuse_window_seconds,
            )
            if existing is not None:
                return existing, False
            job = Job(
                id=new_job_id(),
                subject_key=subject_key,
                analysis_kind=analysis_kind,
                input=dict(payload),
                created_at=now,
                updated_at=now,
            )
            self._jobs[job.id] = job
            return job, True

    async def get(self, job_id):
        return self._jobs.get(job_id)

    async def claim(self, job_id):
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return None
            job = job.model_copy(update={"status": JobStatus.RUNNING, "updated_at": self.now()})
            self._jobs[job_id] = job
            return job

    async def complete(self, job_id, result):
        return await self._finish(job_id, status=JobStatus.COMPLETED, result=result)

    async def fail(self, job_id, reason):
        return await self._finish(job_id, status=JobStatus.FAILED, failure_reason=reason)

    async def _finish(self, job_id: str, **update: Any) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return False
            update["updated_at"] = self.now()
            # Re-validate so terminal-field invariants hold
            self._jobs[job_id] = Job.model_validate({**job.model_dump(), **update})
            return True

    async def list_by_status(self, status, *, updated_before=None, limit=500):
        jobs = [
            j for j in self._jobs.values()
            if j.status == status and (updated_before is None or j.updated_at < updated_before)
        ]
        jobs.sort(key=lambda j: j.created_at)
        return jobs[:limit]

    async def purge_terminal(self, older_than):
        async with self._lock:
            doomed = [
                job_id for job_id, j in self._jobs.items()
                if j.is_terminal and j.updated_at < older_than
            ]
            for job_id in doomed:
                del self._jobs[job_id]
            return len(doomed)


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id             TEXT PRIMARY KEY,
        subject_key    TEXT NOT NULL,
        analysis_kind  TEXT NOT NULL,
        status         TEXT NOT NULL,
        input          TEXT NOT NULL,
        result         TEXT,
        failure_reason TEXT,
        created_at     REAL NOT NULL,
        updated_at     REAL NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_active
        ON jobs(subject_key, analysis_kind)
        WHERE status IN ('pending', 'running')
    """,
    "CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status, updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_subject ON jobs(subject_key, analysis_kind, updated_at)",
)

_COLUMNS = "id, subject_key, analysis_kind, status, input, result, failure_reason, created_at, updated_at"


class SQLiteJobStore(JobStore):
    """Async SQLite job store with a persistent, lazily-opened connection."""

    backend = "sqlite"

    def __init__(self, db_path: str = "data/jobs.db", *, clock: Clock = utcnow) -> None:
        super().__init__(clock=clock)
        self._db_path = db_path
        self._conn: Any = None  # aiosqlite.Connection
        self._conn_lock = asyncio.Lock()

    async def _get_conn(self) -> Any:
        """Return (and lazily create) the aiosqlite connection."""
        if self._conn is not None:
            return self._conn
        import aiosqlite

        async with self._conn_lock:
            if self._conn is not None:
                return self._conn
            try:
                if self._db_path != ":memory:":
                    os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
                conn = await aiosqlite.connect(self._db_path)
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA busy_timeout=5000")
                for stmt in _SCHEMA:
                    await conn.execute(stmt)
                await conn.commit()
            except (sqlite3.Error, OSError) as exc:
                raise StoreError(f"cannot open job store at {self._db_path}: {exc}") from exc
            self._conn = conn
            logger.info("SQLite job store opened at %s", self._db_path)
        return self._conn

    async def close(self) -> None:
        if self._conn is not None:
            try:
                await self._conn.close()
            except sqlite3.Error:
                logger.warning("Error closing job store", exc_info=True)
            self._conn = None

    # ------------------------------------------------------------------

    async def create_or_reuse(self, subject_key, analysis_kind, payload, *, reuse_window_seconds=0):
        async with self._lock:
            db = await self._get_conn()
            now = self.now()
            try:
                existing = await self._select_reusable(db, subject_key, analysis_kind, now, reuse_window_seconds)
                if existing is not None:
                    return existing, False
                job = Job(
                    id=new_job_id(),
                    subject_key=subject_key,
                    analysis_kind=analysis_kind,
                    input=dict(payload),
                    created_at=now,
                    updated_at=now,
                )
                try:
                    await db.execute(
                        f"INSERT INTO jobs ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, NULL, NULL, ?, ?)",
                        (
                            job.id, subject_key, analysis_kind, job.status.value,
                            json.dumps(job.input, default=str),
                            now.timestamp(), now.timestamp(),
                        ),
                    )
                    await db.commit()
                except sqlite3.IntegrityError:
                    # Another process inserted an active job for the pair first
                    await db.rollback()
                    existing = await self._select_reusable(
                        db, subject_key, analysis_kind, now, reuse_window_seconds
                    )
                    if existing is None:
                        raise StoreError("concurrent job creation could not be resolved")
                    return existing, False
                return job, True
            except sqlite3.Error as exc:
                raise StoreError(f"job store write failed: {exc}") from exc

    async def _select_reusable(self, db, subject_key, analysis_kind, now, window) -> Optional[Job]:
        cutoff = (now - timedelta(seconds=window)).timestamp()
        cursor = await db.execute(
            f"""
            SELECT {_COLUMNS} FROM jobs
            WHERE subject_key = ? AND analysis_kind = ?
              AND (status IN ('pending', 'running')
                   OR (status = 'completed' AND updated_at >= ?))
            ORDER BY CASE WHEN status IN ('pending', 'running') THEN 0 ELSE 1 END,
                     updated_at DESC
            LIMIT 1
            """,
            (subject_key, analysis_kind, cutoff),
        )
        row = await cursor.fetchone()
        if row is None or (window <= 0 and row[3] == JobStatus.COMPLETED.value):
            return None
        return _row_to_job(row)

    async def get(self, job_id):
        db = await self._get_conn()
        try:
            cursor = await db.execute(f"SELECT {_COLUMNS} FROM jobs WHERE id = ?", (job_id,))
            row = await cursor.fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"job store read failed: {exc}") from exc
        return _row_to_job(row) if row else None

    async def claim(self, job_id):
        async with self._lock:
            db = await self._get_conn()
            try:
                cursor = await db.execute(
                    "UPDATE jobs SET status = 'running', updated_at = ? "
                    "WHERE id = ? AND status = 'pending'",
                    (self.now().timestamp(), job_id),
                )
                await db.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"job store write failed: {exc}") from exc
            if cursor.rowcount != 1:
                return None
        return await self.get(job_id)

    async def complete(self, job_id, result):
        return await self._finish(
            "UPDATE jobs SET status = 'completed', result = ?, updated_at = ? "
            "WHERE id = ? AND status = 'running'",
            (json.dumps(result, default=str), self.now().timestamp(), job_id),
        )

    async def fail(self, job_id, reason):
        return await self._finish(
            "UPDATE jobs SET status = 'failed', failure_reason = ?, updated_at = ? "
            "WHERE id = ? AND status = 'running'",
            (reason or "internal_error", self.now().timestamp(), job_id),
        )

    async def _finish(self, sql: str, params: tuple) -> bool:
        async with self._lock:
            db = await self._get_conn()
            try:
                cursor = await db.execute(sql, params)
                await db.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"job store write failed: {exc}") from exc
            return cursor.rowcount == 1

    async def list_by_status(self, status, *, updated_before=None, limit=500):
        db = await self._get_conn()
        sql = f"SELECT {_COLUMNS} FROM jobs WHERE status = ?"
        params: list[Any] = [JobStatus(status).value]
        if updated_before is not None:
            sql += " AND updated_at < ?"
            params.append(updated_before.timestamp())
        sql += " ORDER BY created_at ASC LIMIT ?"
        params.append(limit)
        try:
            cursor = await db.execute(sql, tuple(params))
            rows = await cursor.fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"job store read failed: {exc}") from exc
        return [_row_to_job(r) for r in rows]

    async def purge_terminal(self, older_than):
        async with self._lock:
            db = await self._get_conn()
            try:
                cursor = await db.execute(
                    "DELETE FROM jobs WHERE status IN ('completed', 'failed') AND updated_at < ?",
                    (older_than.timestamp(),),
                )
                await db.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"job store write failed: {exc}") from exc
            return cursor.rowcount


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _find_reusable(jobs: Iterable[Job], now: datetime, window: float) -> Optional[Job]:
    completed: Optional[Job] = None
    for job in jobs:
        if job.status in ACTIVE_STATUSES:
            return job
        if (
            job.status == JobStatus.COMPLETED
            and window > 0
            and (now - job.updated_at).total_seconds() <= window
            and (completed is None or job.updated_at > completed.updated_at)
        ):
            completed = job
    return completed


def _row_to_job(row: tuple) -> Job:
    (job_id, subject_key, kind, status, input_json, result_json, reason, created, updated) = row
    return Job(
        id=job_id,
        subject_key=subject_key,
        analysis_kind=kind,
        status=JobStatus(status),
        input=json.loads(input_json),
        result=json.loads(result_json) if result_json else None,
        failure_reason=reason,
        created_at=datetime.fromtimestamp(created, tz=timezone.utc),
        updated_at=datetime.fromtimestamp(updated, tz=timezone.utc),
    )


def build_job_store(backend: str, path: str = "data/jobs.db") -> JobStore:
    """Create the configured job store backend."""
    if backend == "sqlite":
        return SQLiteJobStore(path)
    if backend != "memory":
        logger.warning("Unknown JOB_STORE_BACKEND %r – using in-memory store", backend)
    return InMemoryJobStore()
