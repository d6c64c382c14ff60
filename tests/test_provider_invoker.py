"""Tests for the provider invoker (retry, backoff, fallback, circuit breaking)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, call, patch

import pytest

from conftest import ScriptedProvider, fresh_breaker
from whale_agent.circuit_breaker import CircuitBreaker
from whale_agent.errors import AllProvidersExhausted, ProviderError, ProviderErrorKind
from whale_agent.provider_invoker import ProviderInvoker, backoff_delay
from whale_agent.providers.base import ProviderSpec

_A = ProviderSpec("alpha", "a-1", "fast", timeout=0.05)
_B = ProviderSpec("beta", "b-1", "fast", timeout=0.05)


def _err(kind, **kw):
    return ProviderError(kind, kind.value, **kw)


def _invoker(providers, **kw):
    kw.setdefault("backoff_base", 0)
    kw.setdefault("backoff_cap", 0)
    kw.setdefault("breaker_factory", fresh_breaker)
    return ProviderInvoker(providers, **kw)


class TestBackoffDelay:

    def test_exponential_and_capped(self):
        delays = [backoff_delay(i, base=1, cap=8) for i in range(5)]
        assert delays == [1, 2, 4, 8, 8]

    def test_retry_after_wins(self):
        assert backoff_delay(0, base=1, cap=8, retry_after=20) == 20

    def test_retry_after_capped(self):
        assert backoff_delay(0, base=1, cap=8, retry_after=600, retry_after_cap=60) == 60


class TestInvoke:

    @pytest.mark.asyncio
    async def test_first_provider_succeeds(self):
        alpha = ScriptedProvider("alpha", ["{}"])
        result = await _invoker({"alpha": alpha}).invoke([_A, _B], "prompt", system="sys")
        assert result.text == "{}"
        assert result.spec == _A
        assert len(result.attempts) == 1 and result.attempts[0].ok
        assert alpha.calls[0][3] == "sys"

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_then_fallback(self):
        """A hangs on every attempt; B answers on its first."""
        alpha = ScriptedProvider("alpha", [lambda: asyncio.Event().wait()])
        beta = ScriptedProvider("beta", ['{"ok": true}'])

        result = await _invoker({"alpha": alpha, "beta": beta}, max_attempts=3).invoke(
            [_A, _B], "prompt"
        )

        assert result.spec == _B
        assert len(alpha.calls) == 3
        assert len(beta.calls) == 1
        kinds = [a.error_kind for a in result.attempts]
        assert kinds == ["timeout", "timeout", "timeout", None]

    @pytest.mark.asyncio
    async def test_auth_error_moves_on_after_one_attempt(self):
        alpha = ScriptedProvider("alpha", [_err(ProviderErrorKind.AUTH_ERROR)])
        beta = ScriptedProvider("beta", ["{}"])

        result = await _invoker({"alpha": alpha, "beta": beta}).invoke([_A, _B], "p")

        assert len(alpha.calls) == 1
        assert result.spec == _B

    @pytest.mark.asyncio
    async def test_retry_after_honoured(self):
        alpha = ScriptedProvider(
            "alpha", [_err(ProviderErrorKind.RATE_LIMITED, retry_after=7.0), "{}"]
        )
        invoker = _invoker({"alpha": alpha}, backoff_base=1, backoff_cap=8)

        with patch("whale_agent.provider_invoker.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await invoker.invoke([_A], "p")

        assert result.spec == _A
        sleep.assert_awaited_once_with(7.0)

    @pytest.mark.asyncio
    async def test_exponential_backoff_between_attempts(self):
        alpha = ScriptedProvider("alpha", [_err(ProviderErrorKind.SERVER_ERROR)])
        invoker = _invoker({"alpha": alpha}, max_attempts=3, backoff_base=1, backoff_cap=8)

        with patch("whale_agent.provider_invoker.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(AllProvidersExhausted):
                await invoker.invoke([_A], "p")

        assert sleep.await_args_list == [call(1), call(2)]
        assert len(alpha.calls) == 3

    @pytest.mark.asyncio
    async def test_all_exhausted_keeps_each_failure(self):
        alpha = ScriptedProvider("alpha", [_err(ProviderErrorKind.SERVER_ERROR)])
        beta = ScriptedProvider("beta", [_err(ProviderErrorKind.BAD_REQUEST)])

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await _invoker({"alpha": alpha, "beta": beta}).invoke([_A, _B], "p")

        failures = exc_info.value.failures
        assert failures["alpha:a-1"].kind == ProviderErrorKind.SERVER_ERROR
        assert failures["beta:b-1"].kind == ProviderErrorKind.BAD_REQUEST

    @pytest.mark.asyncio
    async def test_unconfigured_provider_skipped(self):
        beta = ScriptedProvider("beta", ["{}"])
        result = await _invoker({"beta": beta}).invoke([_A, _B], "p")
        assert result.spec == _B
        assert all(a.provider == "beta" for a in result.attempts)

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_network_error(self):
        alpha = ScriptedProvider("alpha", [ConnectionResetError("reset")])
        with pytest.raises(AllProvidersExhausted) as exc_info:
            await _invoker({"alpha": alpha}, max_attempts=1).invoke([_A], "p")
        assert exc_info.value.failures["alpha:a-1"].kind == ProviderErrorKind.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_empty_order(self):
        with pytest.raises(AllProvidersExhausted) as exc_info:
            await _invoker({}).invoke([], "p")
        assert "no analysis providers" in str(exc_info.value)


class TestCircuitBreaking:

    @pytest.mark.asyncio
    async def test_open_circuit_skips_provider(self):
        breaker = CircuitBreaker("alpha", failure_threshold=1, recovery_timeout=60)
        breaker.record_failure()
        alpha = ScriptedProvider("alpha", ["{}"])
        beta = ScriptedProvider("beta", ["{}"])
        invoker = _invoker(
            {"alpha": alpha, "beta": beta},
            breaker_factory=lambda name: breaker if name == "alpha" else fresh_breaker(name),
        )

        result = await invoker.invoke([_A, _B], "p")

        assert alpha.calls == []
        assert result.spec == _B
        assert result.attempts[0].error == "circuit open"

    @pytest.mark.asyncio
    async def test_bad_request_does_not_trip_breaker(self):
        breaker = CircuitBreaker("alpha", failure_threshold=1, recovery_timeout=60)
        alpha = ScriptedProvider("alpha", [_err(ProviderErrorKind.BAD_REQUEST)])

        with pytest.raises(AllProvidersExhausted):
            await _invoker({"alpha": alpha}, breaker_factory=lambda n: breaker).invoke([_A], "p")

        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_bad_request_frees_half_open_trial(self):
        breaker = CircuitBreaker("alpha", failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()
        alpha = ScriptedProvider("alpha", [_err(ProviderErrorKind.BAD_REQUEST), "{}"])
        invoker = _invoker({"alpha": alpha}, breaker_factory=lambda n: breaker)

        with pytest.raises(AllProvidersExhausted):
            await invoker.invoke([_A], "p")
        result = await invoker.invoke([_A], "p")

        assert result.text == "{}"
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_server_errors_trip_breaker(self):
        breaker = CircuitBreaker("alpha", failure_threshold=2, recovery_timeout=60)
        alpha = ScriptedProvider("alpha", [_err(ProviderErrorKind.SERVER_ERROR)])

        with pytest.raises(AllProvidersExhausted):
            await _invoker({"alpha": alpha}, max_attempts=3, breaker_factory=lambda n: breaker).invoke(
                [_A], "p"
            )

        # Two failures open the circuit; the third attempt is refused locally
        assert len(alpha.calls) == 2
        assert not breaker.is_closed
