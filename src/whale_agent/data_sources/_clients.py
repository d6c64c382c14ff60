"""
Singleton client management for the Whale Deep-Dive Agent.

Provides lazy-initialised clients for address history, reference prices and
entity labels, the shared price cache, and the job store instance.

``init_clients`` / ``close_clients`` should be called at app startup/shutdown.
"""

from __future__ import annotations

import logging
from typing import Optional

from config import (
    ADDRESS_HISTORY_LIMIT,
    ARKHAM_API_KEY,
    ARKHAM_BASE_URL,
    BLOCKCHAIN_INFO_BASE_URL,
    CB_FAILURE_THRESHOLD,
    CB_RECOVERY_TIMEOUT,
    COINGECKO_BASE_URL,
    COINMARKETCAP_API_KEY,
    COINMARKETCAP_BASE_URL,
    FALLBACK_BTC_PRICE_USD,
    JOB_STORE_BACKEND,
    JOB_STORE_PATH,
    PRICE_CACHE_TTL_SECONDS,
    REQUEST_TIMEOUT,
)

from ..cache import TTLCache
from ..circuit_breaker import CircuitBreaker, register
from ..job_store import JobStore, build_job_store
from .blockchain import AddressHistoryClient
from .labels import EntityLabelClient
from .prices import ReferencePriceClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singletons (created once, reused)
# ---------------------------------------------------------------------------
_history_client: Optional[AddressHistoryClient] = None
_price_client: Optional[ReferencePriceClient] = None
_label_client: Optional[EntityLabelClient] = None
_job_store: Optional[JobStore] = None

# Last-resort prices used when every live source fails
FALLBACK_PRICES: dict[str, float] = {"BTC": FALLBACK_BTC_PRICE_USD}

price_cache = TTLCache(default_ttl=PRICE_CACHE_TTL_SECONDS)
label_cache = TTLCache(default_ttl=3600)


def _breaker(name: str) -> CircuitBreaker:
    return register(
        CircuitBreaker(
            name,
            failure_threshold=CB_FAILURE_THRESHOLD,
            recovery_timeout=CB_RECOVERY_TIMEOUT,
        )
    )


# Circuit breakers – one per external data service, registered for health reporting
cb_blockchain_info = _breaker("blockchain_info")
cb_coingecko = _breaker("coingecko")
cb_coinmarketcap = _breaker("coinmarketcap")
cb_arkham = _breaker("arkham")


def get_history_client() -> AddressHistoryClient:
    global _history_client
    if _history_client is None:
        _history_client = AddressHistoryClient(
            base_url=BLOCKCHAIN_INFO_BASE_URL,
            timeout=REQUEST_TIMEOUT,
            tx_limit=ADDRESS_HISTORY_LIMIT,
            circuit_breaker=cb_blockchain_info,
        )
    return _history_client


def get_price_client() -> ReferencePriceClient:
    global _price_client
    if _price_client is None:
        _price_client = ReferencePriceClient(
            coingecko_url=COINGECKO_BASE_URL,
            coinmarketcap_url=COINMARKETCAP_BASE_URL,
            coinmarketcap_key=COINMARKETCAP_API_KEY,
            fallback_prices=FALLBACK_PRICES,
            timeout=REQUEST_TIMEOUT,
            cache=price_cache,
            cache_ttl=PRICE_CACHE_TTL_SECONDS,
            circuit_breakers={"coingecko": cb_coingecko, "coinmarketcap": cb_coinmarketcap},
        )
    return _price_client


def get_label_client() -> EntityLabelClient:
    global _label_client
    if _label_client is None:
        _label_client = EntityLabelClient(
            arkham_url=ARKHAM_BASE_URL,
            arkham_key=ARKHAM_API_KEY,
            timeout=REQUEST_TIMEOUT,
            cache=label_cache,
            circuit_breaker=cb_arkham,
        )
    return _label_client


def get_job_store() -> JobStore:
    global _job_store
    if _job_store is None:
        _job_store = build_job_store(JOB_STORE_BACKEND, JOB_STORE_PATH)
    return _job_store


def set_job_store(store: Optional[JobStore]) -> None:
    """Replace the job store singleton (tests, CLI)."""
    global _job_store
    _job_store = store


async def init_clients() -> None:
    """Eagerly create the singleton clients (called at startup)."""
    get_history_client()
    get_price_client()
    get_label_client()
    get_job_store()


async def close_clients() -> None:
    """Close singleton clients gracefully (called at shutdown)."""
    global _history_client, _price_client, _label_client, _job_store
    if _history_client is not None:
        await _history_client.close()
        _history_client = None
    if _price_client is not None:
        await _price_client.close()
        _price_client = None
    if _label_client is not None:
        await _label_client.close()
        _label_client = None
    if _job_store is not None:
        await _job_store.close()
        _job_store = None
