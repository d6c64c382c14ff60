"""
Job orchestration: de-duplicated submission and in-process dispatch.

``submit`` validates, creates (or reuses) a job and schedules exactly one
background worker run with ``asyncio.create_task``, returning immediately.
The caller then polls ``get_status``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence

import config
from pydantic import ValidationError as PydanticValidationError

from .context_aggregator import ContextAggregator
from .errors import ValidationError
from .job_store import JobStore
from .models import (
    Job,
    JobStatus,
    JobStatusView,
    SubmitJobRequest,
    SubmitJobResponse,
    WhaleTransaction,
    subject_key_for,
)
from .output_extractor import schema_problems
from .provider_invoker import ProviderInvoker
from .provider_selector import preference_is_known
from .providers.base import ProviderSpec
from .schemas import ANALYSIS_SCHEMAS
from .status import max_pipeline_seconds, read_job_status
from .worker import BackgroundWorker

logger = logging.getLogger(__name__)


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore,
        worker: BackgroundWorker,
        *,
        catalog: Sequence[ProviderSpec] = (),
        reuse_window_seconds: float = 3600,
        stale_after_seconds: float = 0,
    ) -> None:
        self.store = store
        self._worker = worker
        self._catalog = list(catalog)
        self._reuse_window = reuse_window_seconds
        self.stale_after_seconds = stale_after_seconds
        # Strong references so running tasks are not garbage-collected
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def validate(self, subject_key: str, analysis_kind: str, payload: Any) -> WhaleTransaction:
        """Return the parsed transaction or raise ``ValidationError`` with every problem."""
        problems: list[str] = []
        if not isinstance(subject_key, str) or not subject_key.strip():
            problems.append("subject_key: must not be empty")
        if analysis_kind not in ANALYSIS_SCHEMAS:
            known = ", ".join(sorted(ANALYSIS_SCHEMAS))
            problems.append(f"analysis_kind: unknown kind {analysis_kind!r} (expected one of {known})")

        tx: Optional[WhaleTransaction] = None
        if not isinstance(payload, dict):
            problems.append("payload: must be an object")
        else:
            try:
                tx = WhaleTransaction.model_validate(payload)
            except PydanticValidationError as exc:
                problems.extend(schema_problems(exc))

        if tx is not None and tx.model_preference and not preference_is_known(tx.model_preference, self._catalog):
            problems.append(f"model_preference: {tx.model_preference!r} matches no configured provider")

        if problems:
            raise ValidationError(problems)
        assert tx is not None
        return tx

    async def submit_job(self, subject_key: str, analysis_kind: str, payload: Any) -> Job:
        """Create or reuse a job and return it.  Raises ``ValidationError`` / ``StoreError``."""
        tx = self.validate(subject_key, analysis_kind, payload)
        job, created = await self.store.create_or_reuse(
            subject_key.strip(),
            analysis_kind,
            tx.model_dump(mode="json"),
            reuse_window_seconds=self._reuse_window,
        )
        if created:
            logger.info("Job %s created for %s (%s)", job.id, job.subject_key, analysis_kind)
            self._dispatch(job.id)
        else:
            logger.info("Reusing job %s (%s) for %s", job.id, job.status.value, job.subject_key)
        return job

    async def submit(self, subject_key: str, analysis_kind: str, payload: Any) -> str:
        job = await self.submit_job(subject_key, analysis_kind, payload)
        return job.id

    async def submit_request(self, request: SubmitJobRequest) -> SubmitJobResponse:
        """Submit an API/CLI request, deriving the subject key when it is omitted."""
        subject_key = request.subject_key
        if subject_key is None:
            tx = self.validate("derived", request.analysis_kind, request.transaction)
            subject_key = subject_key_for(tx)
        job = await self.submit_job(subject_key, request.analysis_kind, request.transaction)
        return SubmitJobResponse(job_id=job.id, status=job.status)

    def _dispatch(self, job_id: str) -> None:
        task = asyncio.create_task(self._worker.process(job_id), name=f"job:{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Status / lifecycle
    # ------------------------------------------------------------------

    async def get_status(self, job_id: str) -> Optional[JobStatusView]:
        return await read_job_status(self.store, job_id, stale_after_seconds=self.stale_after_seconds)

    async def resume_pending(self) -> int:
        """Dispatch ``pending`` jobs left behind by a previous process."""
        jobs = await self.store.list_by_status(JobStatus.PENDING)
        for job in jobs:
            self._dispatch(job.id)
        if jobs:
            logger.info("Resumed %d pending job(s)", len(jobs))
        return len(jobs)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight worker runs to finish."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("%d worker run(s) still in flight after drain", len(pending))


# ---------------------------------------------------------------------------
# Default wiring
# ---------------------------------------------------------------------------

_orchestrator: Optional[JobOrchestrator] = None


def build_orchestrator(store: Optional[JobStore] = None) -> JobOrchestrator:
    """Wire an orchestrator from ``config`` and the shared clients."""
    from .data_sources import _clients
    from .providers.registry import build_catalog, get_providers

    store = store or _clients.get_job_store()
    catalog = build_catalog()
    invoker = ProviderInvoker(
        get_providers(),
        max_attempts=config.PROVIDER_MAX_RETRIES,
        backoff_base=config.BACKOFF_BASE_SECONDS,
        backoff_cap=config.BACKOFF_CAP_SECONDS,
        retry_after_cap=config.RETRY_AFTER_CAP_SECONDS,
    )
    aggregator = ContextAggregator(
        history=_clients.get_history_client(),
        prices=_clients.get_price_client(),
        labels=_clients.get_label_client(),
        lookup_timeout=config.CONTEXT_LOOKUP_TIMEOUT_SECONDS,
        fallback_prices=_clients.FALLBACK_PRICES,
    )
    worker = BackgroundWorker(
        store,
        aggregator=aggregator,
        invoker=invoker,
        catalog=catalog,
        deep_threshold=config.DEEP_THRESHOLD_BTC,
        high_activity_tx_count=config.HIGH_ACTIVITY_TX_COUNT,
    )
    worst_case = max_pipeline_seconds(
        catalog,
        context_timeout=config.CONTEXT_LOOKUP_TIMEOUT_SECONDS,
        max_attempts=config.PROVIDER_MAX_RETRIES,
        backoff_base=config.BACKOFF_BASE_SECONDS,
        backoff_cap=config.BACKOFF_CAP_SECONDS,
    )
    return JobOrchestrator(
        store,
        worker,
        catalog=catalog,
        reuse_window_seconds=config.JOB_REUSE_WINDOW_SECONDS,
        stale_after_seconds=worst_case * config.JOB_STALE_MULTIPLIER,
    )


def get_orchestrator() -> JobOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: Optional[JobOrchestrator]) -> None:
    global _orchestrator
    _orchestrator = orchestrator


async def submit_job(subject_key: str, analysis_kind: str, payload: Any) -> str:
    """Submit a job through the default orchestrator and return its id."""
    return await get_orchestrator().submit(subject_key, analysis_kind, payload)


async def get_job_status(job_id: str) -> Optional[JobStatusView]:
    return await get_orchestrator().get_status(job_id)
