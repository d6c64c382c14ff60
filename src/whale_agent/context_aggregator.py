"""
Context gathering for one transaction.

Every sub-lookup runs concurrently and is bounded by its own timeout.  A
lookup that times out, raises or reports ``Unavailable`` becomes a plain
limitation note; the gather as a whole never fails.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Protocol, Union

from .data_sources.labels import infer_transaction_type
from .models import (
    AddressHistory,
    AggregatedContext,
    EntityLabel,
    PriceQuote,
    Unavailable,
    WhaleTransaction,
)

logger = logging.getLogger(__name__)


class HistorySource(Protocol):
    async def lookup(self, address: str) -> Union[AddressHistory, Unavailable]: ...


class PriceSource(Protocol):
    async def quote(self, asset: str) -> Union[PriceQuote, Unavailable]: ...


class LabelSource(Protocol):
    async def lookup(self, address: str) -> Union[EntityLabel, Unavailable]: ...


class ContextAggregator:
    def __init__(
        self,
        *,
        history: HistorySource,
        prices: PriceSource,
        labels: LabelSource,
        lookup_timeout: float = 5.0,
        fallback_prices: Optional[dict[str, float]] = None,
    ) -> None:
        self._history = history
        self._prices = prices
        self._labels = labels
        self._timeout = lookup_timeout
        self._fallback = {k.upper(): v for k, v in (fallback_prices or {}).items()}

    async def gather(self, tx: WhaleTransaction) -> tuple[AggregatedContext, list[str]]:
        """Return the aggregated context and its limitation notes."""
        src_hist, dst_hist, price, src_label, dst_label = await asyncio.gather(
            self._bounded("source address history", self._history.lookup(tx.from_address)),
            self._bounded("destination address history", self._history.lookup(tx.to_address)),
            self._bounded("reference price", self._prices.quote(tx.asset)),
            self._bounded("source entity label", self._labels.lookup(tx.from_address)),
            self._bounded("destination entity label", self._labels.lookup(tx.to_address)),
        )

        notes: list[str] = []
        sources: list[str] = []

        for what, value in (
            ("Source address history", src_hist),
            ("Destination address history", dst_hist),
        ):
            if isinstance(value, AddressHistory):
                _add(sources, "blockchain.info")
            else:
                notes.append(f"{what} unavailable ({value.reason})")

        for what, value in (
            ("Source address", src_label),
            ("Destination address", dst_label),
        ):
            if isinstance(value, EntityLabel):
                _add(sources, "arkham" if value.source == "arkham" else "known-address table")
            else:
                notes.append(f"{what} entity could not be identified ({value.reason})")

        quote = self._resolve_price(tx.asset, price, notes)
        if quote is not None and not quote.is_fallback:
            _add(sources, quote.source)

        context = AggregatedContext(
            source_history=src_hist,
            destination_history=dst_hist,
            source_entity=src_label,
            destination_entity=dst_label,
            price=quote,
            inferred_transaction_type=infer_transaction_type(src_label, dst_label, tx.type),
            data_sources_used=sources,
            limitations=notes,
        )
        if notes:
            logger.info("Context for %s gathered with %d limitation(s)", tx.tx_hash[:16], len(notes))
        return context, notes

    def _resolve_price(
        self, asset: str, price: Union[PriceQuote, Unavailable], notes: list[str]
    ) -> Optional[PriceQuote]:
        if isinstance(price, PriceQuote):
            if price.is_fallback:
                notes.append(
                    f"Live {asset} price unavailable; using documented fallback ${price.usd:,.0f}"
                )
            return price
        fallback = self._fallback.get(asset.upper())
        if fallback:
            notes.append(
                f"Reference price unavailable ({price.reason}); using documented fallback ${fallback:,.0f}"
            )
            return PriceQuote(asset=asset.upper(), usd=fallback, source="fallback", is_fallback=True)
        notes.append(f"Reference price unavailable ({price.reason})")
        return None

    async def _bounded(self, what: str, coro: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("%s lookup timed out after %.1fs", what, self._timeout)
            return Unavailable(source=what, reason=f"timed out after {self._timeout:g}s")
        except Exception as exc:
            logger.warning("%s lookup failed: %s", what, exc)
            return Unavailable(source=what, reason=f"{type(exc).__name__}")


def _add(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)
