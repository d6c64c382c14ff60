"""Shared test fixtures for the Whale Deep-Dive Agent test suite."""

from __future__ import annotations

import sys
import os

# Ensure src/ is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import json
from datetime import datetime, timezone
from typing import Optional

import pytest

from whale_agent.circuit_breaker import CircuitBreaker
from whale_agent.context_aggregator import ContextAggregator
from whale_agent.job_store import InMemoryJobStore
from whale_agent.models import AddressHistory, EntityLabel, PriceQuote, Unavailable
from whale_agent.orchestrator import JobOrchestrator
from whale_agent.provider_invoker import ProviderInvoker
from whale_agent.providers.base import ModelParams, ProviderSpec, TextProvider
from whale_agent.worker import BackgroundWorker

SOURCE = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
BINANCE = "34xp4vRoCGJym3xR7yCVPFHoCNxv4Twseo"


# ---------------------------------------------------------------------------
# Doubles
# ---------------------------------------------------------------------------

class ScriptedProvider(TextProvider):
    """Provider that replays a script of answers (strings) or exceptions."""

    def __init__(self, name: str, script: list) -> None:
        self.name = name
        self.script = list(script)
        self.calls: list[tuple[str, ModelParams, float, Optional[str]]] = []

    async def complete(self, prompt, params, timeout, *, system=None):
        self.calls.append((prompt, params, timeout, system))
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return await step()
        return step


class StaticHistory:
    def __init__(self, histories: Optional[dict] = None, error: Optional[Exception] = None):
        self.histories = histories or {}
        self.error = error

    async def lookup(self, address):
        if self.error is not None:
            raise self.error
        return self.histories.get(address) or Unavailable(source="blockchain.info", reason="no history")


class StaticPrices:
    def __init__(self, quote=None):
        self.quote_value = quote or PriceQuote(asset="BTC", usd=100_000.0, source="coingecko")

    async def quote(self, asset):
        if isinstance(self.quote_value, Exception):
            raise self.quote_value
        return self.quote_value


class StaticLabels:
    def __init__(self, labels: Optional[dict] = None):
        self.labels = labels or {}

    async def lookup(self, address):
        return self.labels.get(address) or Unavailable(source="arkham", reason="not configured")


def fresh_breaker(name: str) -> CircuitBreaker:
    return CircuitBreaker(name, failure_threshold=100, recovery_timeout=60)


# ---------------------------------------------------------------------------
# Sample data fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tx_payload():
    """A 250 BTC deposit into a Binance cold wallet."""
    return {
        "tx_hash": "a1075db55d416d3ca199f55b6084e2115b9345e16c5cf302fc80e9d5fbf5d48d",
        "amount": 250.0,
        "amount_usd": 25_000_000.0,
        "from_address": SOURCE,
        "to_address": BINANCE,
        "timestamp": "2026-03-01T12:00:00Z",
        "type": "exchange_deposit",
    }


@pytest.fixture
def whale_analysis():
    """A WhaleAnalysis object that satisfies the schema."""
    return {
        "transaction_type": "exchange_deposit",
        "market_impact": "Bearish",
        "confidence": 78,
        "reasoning": (
            "A 250 BTC transfer from a long-dormant wallet into a Binance cold wallet "
            "usually precedes distribution; exchange inflows of this size add sell-side liquidity."
        ),
        "key_findings": [
            "Destination is a known Binance cold wallet",
            "Source wallet had no outgoing transfers in 2 years",
            "Transfer is 0.02% of daily spot volume",
        ],
        "trader_action": "Reduce long exposure ahead of the US open and wait for a retest of support.",
        "price_levels": {"support": [94000, 92500], "resistance": [98000, 100000]},
    }


@pytest.fixture
def whale_analysis_text(whale_analysis):
    return json.dumps(whale_analysis)


@pytest.fixture
def catalog():
    return [
        ProviderSpec("anthropic", "claude-haiku", "fast", timeout=5),
        ProviderSpec("anthropic", "claude-sonnet", "deep", timeout=10),
        ProviderSpec("openai", "gpt-4o-mini", "fast", timeout=5),
        ProviderSpec("openai", "gpt-4o", "deep", timeout=10),
    ]


@pytest.fixture
def history_source():
    return StaticHistory({
        SOURCE: AddressHistory(address=SOURCE, total_received=300, total_sent=50, final_balance=250, transaction_count=12),
        BINANCE: AddressHistory(address=BINANCE, total_received=9e5, total_sent=8e5, final_balance=1e5, transaction_count=1200),
    })


@pytest.fixture
def label_source():
    return StaticLabels({BINANCE: EntityLabel(address=BINANCE, name="Binance", entity_type="exchange")})


@pytest.fixture
def make_orchestrator(catalog, history_source, label_source):
    """Build an orchestrator around scripted providers and an in-memory store."""

    def _make(providers: dict, *, store=None, history=None, prices=None, labels=None,
              reuse_window_seconds=3600, max_attempts=3, lookup_timeout=1.0):
        store = store or InMemoryJobStore()
        aggregator = ContextAggregator(
            history=history or history_source,
            prices=prices or StaticPrices(),
            labels=labels or label_source,
            lookup_timeout=lookup_timeout,
            fallback_prices={"BTC": 95_000.0},
        )
        invoker = ProviderInvoker(
            providers,
            max_attempts=max_attempts,
            backoff_base=0,
            backoff_cap=0,
            breaker_factory=fresh_breaker,
        )
        worker = BackgroundWorker(
            store,
            aggregator=aggregator,
            invoker=invoker,
            catalog=catalog,
            deep_threshold=100,
            high_activity_tx_count=5000,
        )
        return JobOrchestrator(
            store, worker, catalog=catalog,
            reuse_window_seconds=reuse_window_seconds, stale_after_seconds=600,
        )

    return _make


@pytest.fixture
def now_utc():
    return datetime.now(tz=timezone.utc)
