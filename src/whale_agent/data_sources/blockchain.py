"""
blockchain.info address-history client.

Reference: https://www.blockchain.com/explorer/api/blockchain_api

Public endpoint, no API key.  Amounts come back in satoshi and are converted
to BTC here.  Any failure (unknown address, rate limit, open circuit) is
reported as an ``Unavailable`` marker rather than an exception.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

import httpx

from ..circuit_breaker import CircuitBreaker, CircuitOpenError
from ..models import AddressHistory, RecentTransaction, Unavailable
from ._retry import async_http_get

logger = logging.getLogger(__name__)

SATOSHI_PER_BTC = 100_000_000
SOURCE = "blockchain.info"

_MAX_RETRIES = 2
_BACKOFF_BASE = 0.5  # seconds


class AddressHistoryClient:
    """Async wrapper around the blockchain.info ``rawaddr`` endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5,
        tx_limit: int = 3,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._tx_limit = tx_limit
        self._client: httpx.AsyncClient | None = None
        self._cb = circuit_breaker

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

    async def lookup(self, address: str) -> Union[AddressHistory, Unavailable]:
        """Return lifetime totals and the latest transactions for *address*."""
        url = f"{self._base_url}/rawaddr/{address}"
        data = await self._get(url, params={"limit": self._tx_limit})
        if data is None:
            return Unavailable(source=SOURCE, reason=f"no history for {address[:12]}…")
        return self.to_history(address, data, limit=self._tx_limit)

    # ------------------------------------------------------------------
    # Conversion helpers (sync – pure data transforms)
    # ------------------------------------------------------------------

    @staticmethod
    def to_history(address: str, data: dict[str, Any], *, limit: int = 3) -> AddressHistory:
        recent = []
        for tx in (data.get("txs") or [])[:limit]:
            outputs = tx.get("out") or []
            recent.append(
                RecentTransaction(
                    hash=(tx.get("hash") or "")[:16],
                    time=_from_unix(tx.get("time")),
                    inputs=len(tx.get("inputs") or []),
                    outputs=len(outputs),
                    total_value=_btc(sum(o.get("value") or 0 for o in outputs)),
                )
            )
        return AddressHistory(
            address=address,
            total_received=_btc(data.get("total_received")),
            total_sent=_btc(data.get("total_sent")),
            final_balance=_btc(data.get("final_balance")),
            transaction_count=int(data.get("n_tx") or 0),
            recent_transactions=recent,
        )

    async def _get(
        self, url: str, params: dict | None = None
    ) -> Optional[dict[str, Any]]:
        """GET with retry + exponential backoff, guarded by circuit breaker."""
        client = await self._get_client()

        async def _do() -> dict[str, Any]:
            result = await async_http_get(
                client, url, params=params,
                max_retries=_MAX_RETRIES, backoff_base=_BACKOFF_BASE,
                label="blockchain.info",
            )
            if result is None:
                raise httpx.RequestError("blockchain.info: all retries exhausted")
            return result

        if self._cb is not None:
            try:
                return await self._cb.call(_do)
            except CircuitOpenError:
                logger.warning("blockchain.info circuit OPEN – fast-failing %s", url)
                return None
            except httpx.HTTPError:
                return None
        return await async_http_get(
            client, url, params=params,
            max_retries=_MAX_RETRIES, backoff_base=_BACKOFF_BASE,
            label="blockchain.info",
        )


def _btc(satoshi: Any) -> float:
    try:
        return round(float(satoshi or 0) / SATOSHI_PER_BTC, 8)
    except (TypeError, ValueError):
        return 0.0


def _from_unix(ts: Any) -> Optional[datetime]:
    if not ts:
        return None
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
