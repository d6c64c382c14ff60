"""
Logging setup for the Whale Deep-Dive Agent.

``LOG_FORMAT=text`` (default) prints one readable line per record;
``LOG_FORMAT=json`` prints one JSON object per record for log shipping.
``LOG_LEVEL`` picks the root level (default INFO).

Two context variables tag every record: the HTTP request id (set by the API
middleware) and the job id (set by the background worker for one run), so a
job can be followed from ``POST /jobs`` through every provider attempt.
"""

from __future__ import annotations

import json as json_mod
import logging
import sys
import uuid
from contextvars import ContextVar

from config import LOG_FORMAT, LOG_LEVEL

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
job_id_ctx: ContextVar[str] = ContextVar("job_id", default="-")

# Optional ``extra=`` keys copied into JSON output when a call site sets them
_EXTRA_FIELDS = ("provider", "attempt", "stage")

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [req=%(request_id)s job=%(job_id)s] %(message)s"


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get()  # type: ignore[attr-defined]
        record.job_id = job_id_ctx.get()  # type: ignore[attr-defined]
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", request_id_ctx.get()),
            "job_id": getattr(record, "job_id", job_id_ctx.get()),
        }
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json_mod.dumps(entry, default=str)


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Replace the root handlers with one stdout handler in the chosen format."""
    level = (level or LOG_LEVEL).upper()
    fmt = fmt or LOG_FORMAT

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_ContextFilter())
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]
