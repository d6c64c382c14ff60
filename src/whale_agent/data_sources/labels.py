"""
Entity identification for Bitcoin addresses.

Resolution strategy:
  1. O(1) lookup in the static ``KNOWN_LABELS`` table (exchange cold wallets).
  2. Arkham Intelligence address lookup when ``ARKHAM_API_KEY`` is set.
  3. ``Unavailable`` when neither source knows the address.

Entity types (``entity_type`` field):
  "exchange"    – Centralised exchange hot/cold wallet
  "custodian"   – Custody provider or ETF custodian
  "miner"       – Mining pool payout or coinbase address
  "government"  – Seized-funds wallet held by a government
  "fund"        – Investment fund / treasury company
  "mixer"       – Known mixing / obfuscation service
  "individual"  – Known individual
  "unknown"     – Labelled but unclassified
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

import httpx

from ..cache import TTLCache
from ..circuit_breaker import CircuitBreaker, CircuitOpenError
from ..models import EntityLabel, Unavailable
from ._retry import async_http_get

logger = logging.getLogger(__name__)

SOURCE = "arkham"

# Format: address → (display_label, entity_type)
KNOWN_LABELS: dict[str, tuple[str, str]] = {
    "34xp4vRoCGJym3xR7yCVPFHoCNxv4Twseo": ("Binance", "exchange"),
    "bc1qgdjqv0av3q56jvd82tkdjpy7gdp9ut8tlqmgrpmv24sq90ecnvqqjwvw97": ("Binance", "exchange"),
    "3D2oetdNuZUqQHPJmcMDDHYoqkyNVsFk9r": ("Coinbase", "exchange"),
    "3FupZp77ySr7jwoLYEJ9mwzJpvoNBXsBnE": ("Kraken", "exchange"),
}

# Arkham entity types → our taxonomy
_ARKHAM_TYPES: dict[str, str] = {
    "cex": "exchange",
    "exchange": "exchange",
    "custodian": "custodian",
    "miner": "miner",
    "mining": "miner",
    "government": "government",
    "fund": "fund",
    "treasury": "fund",
    "mixer": "mixer",
    "individual": "individual",
}

TRANSACTION_TYPES = ("exchange_deposit", "exchange_withdrawal", "whale_to_whale", "unknown")


def get_static_label(address: str) -> Optional[EntityLabel]:
    entry = KNOWN_LABELS.get(address)
    if entry is None:
        return None
    name, entity_type = entry
    return EntityLabel(address=address, name=name, entity_type=entity_type, source="static")


class EntityLabelClient:
    """Static table first, Arkham Intelligence second."""

    def __init__(
        self,
        *,
        arkham_url: str = "",
        arkham_key: str = "",
        timeout: float = 5,
        cache: TTLCache | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self._arkham_url = arkham_url.rstrip("/")
        self._arkham_key = arkham_key
        self._timeout = timeout
        self._cache = cache if cache is not None else TTLCache(default_ttl=3600)
        self._cb = circuit_breaker
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Accept": "application/json", "API-Key": self._arkham_key},
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def lookup(self, address: str) -> Union[EntityLabel, Unavailable]:
        static = get_static_label(address)
        if static is not None:
            return static
        if not self._arkham_key or not self._arkham_url:
            return Unavailable(source=SOURCE, reason="no entity label (Arkham not configured)")

        cache_key = f"label:{address}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        data = await self._fetch(address)
        label = self.from_arkham(address, data) if data else None
        if label is None:
            return Unavailable(source=SOURCE, reason=f"no entity label for {address[:12]}…")
        self._cache.set(cache_key, label)
        return label

    @staticmethod
    def from_arkham(address: str, data: dict[str, Any]) -> Optional[EntityLabel]:
        entity = data.get("arkhamEntity") or {}
        label = data.get("arkhamLabel") or {}
        name = entity.get("name") or label.get("name") or ""
        if not name:
            return None
        raw_type = str(entity.get("type") or "").lower()
        return EntityLabel(
            address=address,
            name=name,
            entity_type=_ARKHAM_TYPES.get(raw_type, "unknown"),
            source=SOURCE,
        )

    async def _fetch(self, address: str) -> Optional[dict[str, Any]]:
        client = await self._get_client()
        url = f"{self._arkham_url}/intelligence/address/{address}"

        async def _do() -> dict[str, Any]:
            result = await async_http_get(
                client, url, params={"chain": "bitcoin"}, label="Arkham",
            )
            if result is None:
                raise httpx.RequestError("Arkham: all retries exhausted")
            return result

        if self._cb is None:
            return await async_http_get(client, url, params={"chain": "bitcoin"}, label="Arkham")
        try:
            return await self._cb.call(_do)
        except CircuitOpenError:
            logger.warning("Arkham circuit OPEN – fast-failing %s", address[:12])
            return None
        except httpx.HTTPError:
            return None


def infer_transaction_type(
    source: Union[EntityLabel, Unavailable, None],
    destination: Union[EntityLabel, Unavailable, None],
    hint: str = "",
) -> str:
    """Classify a transfer from the entity labels of both sides.

    Falls back to the upstream *hint* when labels are inconclusive.
    """
    src_exchange = isinstance(source, EntityLabel) and source.entity_type == "exchange"
    dst_exchange = isinstance(destination, EntityLabel) and destination.entity_type == "exchange"
    if dst_exchange and not src_exchange:
        return "exchange_deposit"
    if src_exchange and not dst_exchange:
        return "exchange_withdrawal"
    if (
        not src_exchange
        and isinstance(source, EntityLabel)
        and isinstance(destination, EntityLabel)
    ):
        return "whale_to_whale"
    hint = (hint or "").strip().lower()
    return hint if hint in TRANSACTION_TYPES else "unknown"
