"""
Resilient provider invocation.

Two layers:

1. **Retry**: up to ``max_attempts`` calls to one provider, each bounded by
   the ProviderSpec timeout.  Retryable failures back off exponentially (or by the
   provider's ``Retry-After``); auth and bad-request failures end that
   provider immediately.
2. **Fallback**: move on to the next spec in the order.  When every spec is
   exhausted, raise ``AllProvidersExhausted`` with each provider's last error.

Each provider also has a circuit breaker; an open circuit skips the provider
without a network call.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Sequence

from config import CB_FAILURE_THRESHOLD, CB_RECOVERY_TIMEOUT

from .circuit_breaker import CircuitBreaker, get_or_create
from .errors import AllProvidersExhausted, ProviderError, ProviderErrorKind
from .models import ProviderAttempt
from .providers.base import ProviderSpec, TextProvider

logger = logging.getLogger(__name__)


@dataclass
class InvocationResult:
    text: str
    spec: ProviderSpec
    attempts: list[ProviderAttempt] = field(default_factory=list)


def backoff_delay(
    attempt: int,
    *,
    base: float,
    cap: float,
    retry_after: Optional[float] = None,
    retry_after_cap: float = 60.0,
) -> float:
    """Seconds to wait after the zero-based *attempt* failed."""
    if retry_after is not None and retry_after > 0:
        return min(retry_after, retry_after_cap)
    return min(base * (2 ** attempt), cap)


def _provider_breaker(name: str) -> CircuitBreaker:
    return get_or_create(
        f"provider:{name}",
        failure_threshold=CB_FAILURE_THRESHOLD,
        recovery_timeout=CB_RECOVERY_TIMEOUT,
    )


class ProviderInvoker:
    def __init__(
        self,
        providers: Mapping[str, TextProvider],
        *,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_cap: float = 8.0,
        retry_after_cap: float = 60.0,
        breaker_factory: Optional[Callable[[str], CircuitBreaker]] = None,
    ) -> None:
        self._providers = dict(providers)
        self._max_attempts = max(1, max_attempts)
        self._backoff_base = backoff_base
        self._backoff_cap = backoff_cap
        self._retry_after_cap = retry_after_cap
        self._breaker_factory = breaker_factory or _provider_breaker

    async def invoke(
        self,
        order: Sequence[ProviderSpec],
        prompt: str,
        *,
        system: Optional[str] = None,
    ) -> InvocationResult:
        attempts: list[ProviderAttempt] = []
        failures: dict[str, ProviderError] = {}

        for spec in order:
            provider = self._providers.get(spec.provider)
            if provider is None:
                failures[spec.key] = ProviderError(
                    ProviderErrorKind.AUTH_ERROR, "provider not configured",
                    provider=spec.provider, model=spec.model,
                )
                continue
            try:
                text = await self._call_with_retry(provider, spec, prompt, system, attempts)
            except ProviderError as exc:
                failures[spec.key] = exc
                logger.warning("Provider %s exhausted (%s) – falling back", spec.key, exc.kind.value)
                continue
            return InvocationResult(text=text, spec=spec, attempts=attempts)

        raise AllProvidersExhausted(failures)

    async def _call_with_retry(
        self,
        provider: TextProvider,
        spec: ProviderSpec,
        prompt: str,
        system: Optional[str],
        attempts: list[ProviderAttempt],
    ) -> str:
        breaker = self._breaker_factory(spec.provider)
        last: Optional[ProviderError] = None

        for attempt in range(self._max_attempts):
            if not breaker.allow():
                err = ProviderError(
                    ProviderErrorKind.SERVER_ERROR, "circuit open",
                    provider=spec.provider, model=spec.model,
                )
                attempts.append(ProviderAttempt(
                    spec.provider, spec.model, attempt + 1, 0.0, err.kind.value, str(err),
                ))
                raise err

            started = time.monotonic()
            try:
                text = await asyncio.wait_for(
                    provider.complete(prompt, spec.params, spec.timeout, system=system),
                    timeout=spec.timeout,
                )
            except asyncio.CancelledError:
                breaker.release()
                raise
            except ProviderError as exc:
                last = exc
            except asyncio.TimeoutError:
                last = ProviderError(
                    ProviderErrorKind.TIMEOUT, f"timed out after {spec.timeout:.0f}s",
                    provider=spec.provider, model=spec.model,
                )
            except Exception as exc:
                last = ProviderError(
                    ProviderErrorKind.NETWORK_ERROR, f"{type(exc).__name__}: {exc}",
                    provider=spec.provider, model=spec.model,
                )
            else:
                breaker.record_success()
                attempts.append(ProviderAttempt(
                    spec.provider, spec.model, attempt + 1, (time.monotonic() - started) * 1000,
                ))
                logger.info(
                    "Provider %s answered on attempt %d", spec.key, attempt + 1,
                    extra={"provider": spec.key, "attempt": attempt + 1},
                )
                return text

            elapsed_ms = (time.monotonic() - started) * 1000
            attempts.append(ProviderAttempt(
                spec.provider, spec.model, attempt + 1, elapsed_ms, last.kind.value, str(last)[:200],
            ))
            # A bad request says nothing about the provider's health
            if last.kind == ProviderErrorKind.BAD_REQUEST:
                breaker.release()
            else:
                breaker.record_failure()

            if not last.retryable:
                logger.warning("Provider %s: %s is not retryable", spec.key, last.kind.value)
                break
            if attempt < self._max_attempts - 1:
                wait = backoff_delay(
                    attempt,
                    base=self._backoff_base,
                    cap=self._backoff_cap,
                    retry_after=last.retry_after,
                    retry_after_cap=self._retry_after_cap,
                )
                logger.warning(
                    "Provider %s attempt %d failed (%s) – retry in %.1fs",
                    spec.key, attempt + 1, last.kind.value, wait,
                    extra={"provider": spec.key, "attempt": attempt + 1},
                )
                await asyncio.sleep(wait)

        assert last is not None
        raise last
