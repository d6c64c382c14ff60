"""
Provider selection.

Decides which ``provider:model`` pairs to try, and in what order, for one
transaction.  Pure and deterministic: the same inputs always produce the
same order.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .models import AggregatedContext, WhaleTransaction
from .providers.base import ProviderSpec
from .schemas import DEEP_KINDS

logger = logging.getLogger(__name__)

TIERS = ("fast", "deep")


def is_complex(
    tx: WhaleTransaction,
    *,
    analysis_kind: str,
    context: Optional[AggregatedContext] = None,
    deep_threshold: float,
    high_activity_tx_count: int,
) -> bool:
    """A transfer warrants the deep tier first when it is large, touches a very
    active address, or the analysis kind itself is a deep one."""
    if analysis_kind in DEEP_KINDS:
        return True
    if tx.amount >= deep_threshold:
        return True
    if context is not None and context.max_transaction_count() >= high_activity_tx_count:
        return True
    return False


def matches_preference(spec: ProviderSpec, preference: str) -> bool:
    pref = preference.strip().lower()
    return pref in (spec.tier, spec.provider, spec.model.lower(), spec.key.lower())


def select_providers(
    tx: WhaleTransaction,
    catalog: Sequence[ProviderSpec],
    *,
    analysis_kind: str,
    context: Optional[AggregatedContext] = None,
    preference: Optional[str] = None,
    deep_threshold: float,
    high_activity_tx_count: int,
) -> list[ProviderSpec]:
    """Return the ordered fallback chain for *tx*.

    Complex inputs try the deep tier first, then the fast tier; simple inputs
    the reverse.  Catalog order is kept within a tier.  A *preference* that
    matches a tier, provider, model or ``provider:model`` key moves the
    matching specs to the front; an unknown preference is ignored.
    """
    complex_input = is_complex(
        tx,
        analysis_kind=analysis_kind,
        context=context,
        deep_threshold=deep_threshold,
        high_activity_tx_count=high_activity_tx_count,
    )
    tier_order = ("deep", "fast") if complex_input else ("fast", "deep")

    ordered: list[ProviderSpec] = []
    seen: set[str] = set()
    for tier in tier_order:
        for spec in catalog:
            if spec.tier == tier and spec.key not in seen:
                ordered.append(spec)
                seen.add(spec.key)

    preference = preference or tx.model_preference
    if preference:
        preferred = [s for s in ordered if matches_preference(s, preference)]
        if preferred:
            ordered = preferred + [s for s in ordered if s not in preferred]
        else:
            logger.info("Provider preference %r matches nothing in the catalog – ignored", preference)

    logger.debug(
        "Selected %s (complex=%s, kind=%s, amount=%s)",
        [s.key for s in ordered], complex_input, analysis_kind, tx.amount,
    )
    return ordered


def preference_is_known(preference: str, catalog: Sequence[ProviderSpec]) -> bool:
    """True when *preference* would match at least one spec in *catalog*."""
    return any(matches_preference(spec, preference) for spec in catalog)
