"""
FastAPI service for the Whale Deep-Dive Agent.

Endpoints
---------
GET  /health           - Uptime, job store backend, workers in flight, circuits
POST /jobs             - Submit a whale transaction for analysis (202)
GET  /jobs/{job_id}    - Poll a job's status and result

Submissions return immediately; analysis runs in a background task inside
this process and the client polls ``GET /jobs/{job_id}``.  Both job
endpoints are rate limited per client IP, and store failures surface as 503
without internal detail.
"""

from __future__ import annotations

import logging
import re
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

import sentry_sdk
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from config import (
    API_HOST,
    API_PORT,
    CORS_ORIGINS,
    JOB_RETENTION_DAYS,
    MAINTENANCE_INTERVAL_SECONDS,
    RATE_LIMIT_STATUS,
    RATE_LIMIT_SUBMIT,
    SENTRY_DSN,
    SENTRY_ENVIRONMENT,
    SENTRY_TRACES_SAMPLE_RATE,
)
from .circuit_breaker import get_all_statuses as cb_statuses
from .data_sources._clients import close_clients, init_clients
from .db_maintenance import cancel_db_maintenance, recover_interrupted, schedule_db_maintenance
from .errors import StoreError, ValidationError
from .logging_config import generate_request_id, request_id_ctx, setup_logging
from .models import JobStatusView, SubmitJobRequest, SubmitJobResponse
from .orchestrator import get_orchestrator, set_orchestrator
from .providers.registry import close_providers

setup_logging()
logger = logging.getLogger(__name__)


def _drop_client_errors(event: dict[str, Any], hint: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Sentry ``before_send``: bad input and 4xx responses are not incidents."""
    exc = (hint.get("exc_info") or (None, None))[1]
    if isinstance(exc, ValidationError):
        return None
    if isinstance(exc, HTTPException) and exc.status_code < 500:
        return None
    return event


if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENVIRONMENT,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
        before_send=_drop_client_errors,
    )
    logger.info("Sentry enabled (env=%s)", SENTRY_ENVIRONMENT)
else:
    logger.info("SENTRY_DSN not set, error reporting disabled")

_start_time = time.monotonic()

limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Open clients and the job store, recover leftovers, start maintenance."""
    await init_clients()
    orchestrator = get_orchestrator()
    interrupted = await recover_interrupted(
        orchestrator.store, orchestrator.stale_after_seconds
    )
    resumed = await orchestrator.resume_pending()
    schedule_db_maintenance(
        orchestrator.store,
        interval=MAINTENANCE_INTERVAL_SECONDS,
        stale_after_seconds=orchestrator.stale_after_seconds,
        retention_days=JOB_RETENTION_DAYS,
    )
    logger.info(
        "Ready: store=%s, %d interrupted job(s) failed, %d pending job(s) resumed",
        orchestrator.store.backend, interrupted, resumed,
    )
    yield
    logger.info("Shutting down, draining %d worker run(s)", orchestrator.in_flight)
    cancel_db_maintenance()
    await orchestrator.drain(timeout=10)
    await close_providers()
    await close_clients()
    set_orchestrator(None)


app = FastAPI(
    title="Whale Deep-Dive Agent API",
    description="Asynchronous AI analysis of large on-chain Bitcoin transfers.",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Accept", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

_CLIENT_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag the request with an id (the caller's ``X-Request-ID`` when sane) and log it."""

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get("x-request-id", "")
        rid = incoming if _CLIENT_REQUEST_ID.match(incoming) else generate_request_id()
        request_id_ctx.set(rid)
        start = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level, "%s %s -> %d in %.1fms",
            request.method, request.url.path, response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        return response


app.add_middleware(RequestIdMiddleware)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": exc.code, "problems": exc.problems},
    )


@app.exception_handler(StoreError)
async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Job store unavailable: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"error": exc.code, "detail": "Job store temporarily unavailable, retry later"},
    )


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@app.get("/", tags=["system"], include_in_schema=False)
async def root():
    """Redirect to Swagger UI."""
    return RedirectResponse(url="/docs")


@app.get("/health", tags=["system"])
async def health() -> dict:
    """Health check including uptime, job store backend, workers and circuit breakers."""
    orchestrator = get_orchestrator()
    return {
        "status": "ok",
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "job_store": orchestrator.store.backend,
        "workers_in_flight": orchestrator.in_flight,
        "circuit_breakers": cb_statuses(),
    }


@app.post("/jobs", response_model=SubmitJobResponse, status_code=202, tags=["jobs"])
@limiter.limit(RATE_LIMIT_SUBMIT)
async def submit(request: Request, body: SubmitJobRequest) -> SubmitJobResponse:
    """Create (or reuse) an analysis job and return its id immediately."""
    return await get_orchestrator().submit_request(body)


@app.get("/jobs/{job_id}", response_model=JobStatusView, tags=["jobs"])
@limiter.limit(RATE_LIMIT_STATUS)
async def job_status(request: Request, job_id: str) -> JobStatusView:
    """Return the job's status, and its result or failure reason once terminal."""
    view = await get_orchestrator().get_status(job_id)
    if view is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return view


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "whale_agent.api:app",
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
