"""
Reference price client.

Sources are tried in order: CoinGecko (public), then CoinMarketCap (only when
``COINMARKETCAP_API_KEY`` is configured).  Successful quotes are cached for
``PRICE_CACHE_TTL_SECONDS``.  When every source fails, a documented fallback
price is returned with ``is_fallback=True`` so the prompt can say so.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

import httpx

from ..cache import TTLCache
from ..circuit_breaker import CircuitBreaker, CircuitOpenError
from ..errors import UpstreamUnavailable
from ..models import PriceQuote, Unavailable
from ._retry import async_http_get

logger = logging.getLogger(__name__)

# CoinGecko identifies coins by slug, not ticker
COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
}


class ReferencePriceClient:
    """Current USD price for an asset, with source fallback and caching."""

    def __init__(
        self,
        *,
        coingecko_url: str,
        coinmarketcap_url: str = "",
        coinmarketcap_key: str = "",
        fallback_prices: Optional[dict[str, float]] = None,
        timeout: float = 5,
        cache: TTLCache | None = None,
        cache_ttl: int = 60,
        circuit_breakers: Optional[dict[str, CircuitBreaker]] = None,
    ) -> None:
        self._coingecko_url = coingecko_url.rstrip("/")
        self._cmc_url = coinmarketcap_url.rstrip("/")
        self._cmc_key = coinmarketcap_key
        self._fallback = {k.upper(): v for k, v in (fallback_prices or {}).items()}
        self._timeout = timeout
        self._cache = cache if cache is not None else TTLCache(default_ttl=cache_ttl)
        self._cache_ttl = cache_ttl
        self._cbs = circuit_breakers or {}
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def current_price(self, asset: str = "BTC") -> float:
        """Return the USD price of *asset*.

        Raises ``UpstreamUnavailable`` only when no source answered and no
        fallback price is configured for the asset.
        """
        quote = await self.quote(asset)
        if isinstance(quote, Unavailable):
            raise UpstreamUnavailable(quote.source, quote.reason)
        return quote.usd

    async def quote(self, asset: str = "BTC") -> Union[PriceQuote, Unavailable]:
        asset = asset.upper()
        cache_key = f"price:{asset}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        for name, fetch in (("coingecko", self._from_coingecko), ("coinmarketcap", self._from_cmc)):
            if not self._serves(name, asset):
                continue
            usd = await self._guarded(name, fetch, asset)
            if usd is not None and usd > 0:
                quote = PriceQuote(asset=asset, usd=usd, source=name)
                self._cache.set(cache_key, quote, ttl=self._cache_ttl)
                return quote

        fallback = self._fallback.get(asset)
        if fallback:
            logger.warning("All price sources failed for %s – using fallback %.2f", asset, fallback)
            return PriceQuote(asset=asset, usd=fallback, source="fallback", is_fallback=True)
        return Unavailable(source="price", reason=f"no price source answered for {asset}")

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _serves(self, name: str, asset: str) -> bool:
        """True when *name* would make a request for *asset* at all."""
        if name == "coingecko":
            return asset in COINGECKO_IDS
        return bool(self._cmc_key and self._cmc_url)

    async def _guarded(self, name: str, fetch, asset: str) -> Optional[float]:
        # Only a request that got no answer counts against the breaker; an
        # answer without a price for the asset is a success.
        cb = self._cbs.get(name)
        try:
            if cb is None:
                return await fetch(asset)
            return await cb.call(fetch, asset)
        except CircuitOpenError:
            logger.warning("%s circuit OPEN – skipping price lookup", name)
            return None
        except httpx.HTTPError:
            return None

    async def _from_coingecko(self, asset: str) -> Optional[float]:
        coin_id = COINGECKO_IDS[asset]
        client = await self._get_client()
        data = await async_http_get(
            client,
            f"{self._coingecko_url}/api/v3/simple/price",
            params={"ids": coin_id, "vs_currencies": "usd"},
            label="CoinGecko",
        )
        if data is None:
            raise httpx.RequestError(f"CoinGecko: no answer for {asset}")
        return _safe_float((data.get(coin_id) or {}).get("usd"))

    async def _from_cmc(self, asset: str) -> Optional[float]:
        client = await self._get_client()
        data = await async_http_get(
            client,
            f"{self._cmc_url}/v1/cryptocurrency/quotes/latest",
            params={"symbol": asset, "convert": "USD"},
            headers={"X-CMC_PRO_API_KEY": self._cmc_key},
            label="CoinMarketCap",
        )
        if data is None:
            raise httpx.RequestError(f"CoinMarketCap: no answer for {asset}")
        entry: Any = (data.get("data") or {}).get(asset)
        # v2 responses wrap each symbol in a list
        if isinstance(entry, list):
            entry = entry[0] if entry else None
        if not entry:
            return None
        return _safe_float(((entry.get("quote") or {}).get("USD") or {}).get("price"))


def _safe_float(val: Any) -> Optional[float]:
    """Try to cast *val* to float, returning ``None`` on failure."""
    if val is None:
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        return None
