"""
Background worker: runs the analysis pipeline for one job.

claim → gather context → select providers → build prompt → invoke →
extract → complete.  Every failure ends in a ``failed`` job with a short
classified reason; ``process`` itself never raises.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Sequence

import sentry_sdk
from pydantic import ValidationError as PydanticValidationError

from .context_aggregator import ContextAggregator
from .errors import ValidationError, WhaleAgentError, failure_reason
from .logging_config import job_id_ctx
from .job_store import JobStore
from .models import AggregatedContext, Job, WhaleTransaction
from .output_extractor import extract_with_stage, schema_problems
from .prompt_builder import build_prompt, build_system_prompt
from .provider_invoker import InvocationResult, ProviderInvoker
from .provider_selector import select_providers
from .providers.base import ProviderSpec
from .schemas import ANALYSIS_SCHEMAS

logger = logging.getLogger(__name__)


def parse_transaction(payload: dict[str, Any]) -> WhaleTransaction:
    """Validate a raw payload, converting pydantic errors into ``ValidationError``."""
    try:
        return WhaleTransaction.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(schema_problems(exc)) from exc


class BackgroundWorker:
    def __init__(
        self,
        store: JobStore,
        *,
        aggregator: ContextAggregator,
        invoker: ProviderInvoker,
        catalog: Sequence[ProviderSpec],
        deep_threshold: float,
        high_activity_tx_count: int,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._invoker = invoker
        self._catalog = list(catalog)
        self._deep_threshold = deep_threshold
        self._high_activity = high_activity_tx_count

    async def process(self, job_id: str) -> None:
        token = job_id_ctx.set(job_id)
        try:
            await self._run(job_id)
        finally:
            job_id_ctx.reset(token)

    async def _run(self, job_id: str) -> None:
        try:
            job = await self._store.claim(job_id)
        except Exception:
            # Nothing was written, so the job stays pending for recovery
            logger.exception("Could not claim job %s", job_id)
            return
        if job is None:
            logger.info("Job %s is not pending – another worker owns it", job_id)
            return

        started = time.monotonic()
        try:
            result = await self._analyse(job, started)
        except WhaleAgentError as exc:
            reason = failure_reason(exc)
            logger.warning("Job %s failed: %s", job_id, reason)
            await self._fail(job_id, reason)
            return
        except Exception as exc:
            logger.exception("Unexpected error while processing job %s", job_id)
            sentry_sdk.capture_exception(exc)
            await self._fail(job_id, failure_reason(exc))
            return

        try:
            written = await self._store.complete(job_id, result)
        except Exception as exc:
            logger.exception("Could not store result for job %s", job_id)
            await self._fail(job_id, failure_reason(exc))
            return
        if not written:
            logger.warning("Job %s left running state before it could complete", job_id)
            return
        logger.info(
            "Job %s completed via %s in %.0fms",
            job_id, result["metadata"]["provider"] + ":" + result["metadata"]["model"],
            result["metadata"]["processing_ms"],
        )

    async def _fail(self, job_id: str, reason: str) -> None:
        try:
            if not await self._store.fail(job_id, reason):
                logger.warning("Job %s was no longer running; failure not recorded", job_id)
        except Exception:
            logger.exception("Could not record failure for job %s", job_id)

    async def _analyse(self, job: Job, started: float) -> dict[str, Any]:
        schema = ANALYSIS_SCHEMAS.get(job.analysis_kind)
        if schema is None:
            raise ValidationError(f"unknown analysis kind {job.analysis_kind!r}")
        tx = parse_transaction(job.input)

        context, notes = await self._aggregator.gather(tx)
        order = select_providers(
            tx,
            self._catalog,
            analysis_kind=job.analysis_kind,
            context=context,
            deep_threshold=self._deep_threshold,
            high_activity_tx_count=self._high_activity,
        )
        prompt = build_prompt(tx, context, notes)
        invocation = await self._invoker.invoke(
            order, prompt, system=build_system_prompt(job.analysis_kind)
        )
        analysis, stage = extract_with_stage(invocation.text, schema)
        return {
            "analysis": analysis,
            "metadata": _metadata(tx, context, notes, invocation, stage, started),
        }


def _metadata(
    tx: WhaleTransaction,
    context: AggregatedContext,
    notes: list[str],
    invocation: InvocationResult,
    stage: str,
    started: float,
) -> dict[str, Any]:
    price = context.price
    value_usd = tx.amount_usd
    if value_usd is None and price is not None:
        value_usd = round(tx.amount * price.usd, 2)
    return {
        "provider": invocation.spec.provider,
        "model": invocation.spec.model,
        "tier": invocation.spec.tier,
        "processing_ms": round((time.monotonic() - started) * 1000, 1),
        "attempts": [a.summary() for a in invocation.attempts],
        "repair_stage": stage,
        "limitations": list(notes),
        "reference_price_usd": price.usd if price else None,
        "price_source": price.source if price else None,
        "data_sources_used": list(context.data_sources_used),
        "transaction_value_usd": value_usd,
        "inferred_transaction_type": context.inferred_transaction_type,
        "analyzed_at": datetime.now(tz=timezone.utc).isoformat(),
    }
