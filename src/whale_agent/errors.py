"""
Error taxonomy for the Whale Deep-Dive Agent.

Every error carries a short ``code`` that is safe to expose to polling
clients.  ``failure_reason`` strings written to the job store are built from
these codes plus a short message, never from a traceback.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class WhaleAgentError(Exception):
    """Base class for all errors raised by the orchestration core."""

    code = "internal_error"

    def public_message(self) -> str:
        return str(self)


class ValidationError(WhaleAgentError):
    """Bad input supplied by the caller.  Not retryable."""

    code = "invalid_input"

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "invalid input")


class StoreError(WhaleAgentError):
    """The job store could not read or write durably.  Callers should retry."""

    code = "store_error"


class UpstreamUnavailable(WhaleAgentError):
    """A context sub-lookup failed.  Recorded as a limitation, never fatal."""

    code = "upstream_unavailable"

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class ProviderErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    AUTH_ERROR = "auth_error"
    BAD_REQUEST = "bad_request"

    @property
    def retryable(self) -> bool:
        return self not in (ProviderErrorKind.AUTH_ERROR, ProviderErrorKind.BAD_REQUEST)


class ProviderError(WhaleAgentError):
    """A classified failure from one analysis provider call."""

    code = "provider_error"

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        *,
        provider: str = "",
        model: str = "",
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def public_message(self) -> str:
        return f"{self.kind.value}: {self}"


class AllProvidersExhausted(WhaleAgentError):
    """Every provider in the fallback chain failed.

    ``failures`` maps each provider key (``provider:model``) to its final
    ``ProviderError`` so no diagnostic is lost.
    """

    code = "all_providers_exhausted"

    def __init__(self, failures: dict[str, ProviderError]) -> None:
        self.failures = dict(failures)
        if not self.failures:
            summary = "no analysis providers configured"
        else:
            summary = "; ".join(
                f"{key}: {err.kind.value}" for key, err in self.failures.items()
            )
        super().__init__(summary)


class ExtractionError(WhaleAgentError):
    """Base for failures turning provider text into a structured record."""


class UnparseableOutputError(ExtractionError):
    """No repair stage produced a parseable JSON object."""

    code = "unparseable_output"

    def __init__(self, raw_text: str, *, excerpt_chars: int = 200) -> None:
        self.raw_length = len(raw_text)
        self.head = raw_text[:excerpt_chars]
        self.tail = raw_text[-excerpt_chars:] if len(raw_text) > excerpt_chars else ""
        super().__init__(
            f"no JSON object could be recovered from {self.raw_length} chars of output"
        )


class SchemaValidationError(ExtractionError):
    """Output parsed as JSON but violated the analysis schema.

    ``problems`` lists every violation, not just the first.
    """

    code = "invalid_output"

    def __init__(self, problems: list[str], *, stage: str = "") -> None:
        self.problems = list(problems)
        self.stage = stage
        super().__init__(f"{len(self.problems)} schema problem(s): " + "; ".join(self.problems))


def failure_reason(exc: BaseException, *, max_length: int = 500) -> str:
    """Turn any exception into a short, classified ``failure_reason`` string."""
    if isinstance(exc, WhaleAgentError):
        reason = f"{exc.code}: {exc.public_message()}"
    else:
        reason = f"internal_error: {type(exc).__name__}"
    if len(reason) > max_length:
        reason = reason[: max_length - 1] + "…"
    return reason
