"""
Prompt construction for whale-transaction analysis.

One system prompt per analysis kind describes the exact JSON shape expected
back; the user prompt lays out the transaction, the gathered context and a
DATA LIMITATIONS section listing what could not be verified.
"""

from __future__ import annotations

from typing import Optional, Union

from .models import (
    AddressHistory,
    AggregatedContext,
    EntityLabel,
    Unavailable,
    WhaleTransaction,
)

_COMMON_RULES = """\
Rules:
- Respond with a single JSON object only: no markdown, no text outside the JSON.
- Be strictly factual: only reference data explicitly provided below.
- Anything listed under DATA LIMITATIONS is unknown. Do not invent it.
- confidence is an integer percentage 0-100.\
"""

_WHALE_ANALYSIS_PROMPT = """\
You are a Bitcoin on-chain analyst specialising in large ("whale") transfers \
and their likely market impact.

Return EXACTLY these fields:

{
  "transaction_type": <"exchange_deposit" | "exchange_withdrawal" | "whale_to_whale" | "unknown">,
  "market_impact": <"Bearish" | "Bullish" | "Neutral">,
  "confidence": <integer 0-100>,
  "reasoning": <string, at least 100 characters: why this transfer matters>,
  "key_findings": [<3-10 concise factual findings>],
  "trader_action": <string, at least 50 characters: concrete positioning advice>,
  "price_levels": {"support": [<at least 2 USD prices>], "resistance": [<at least 2 USD prices>]},
  "timeframe_analysis": {"short_term": <string>, "medium_term": <string>},
  "risk_reward": {"ratio": <string>, "position_size": <string>, "stop_loss": <number>, "take_profit": [<numbers>]},
  "historical_context": {"similar_transactions": <string>, "historical_outcome": <string>, \
"pattern_match": <string>, "confidence_based_on_history": <integer 0-100>}
}

""" + _COMMON_RULES

_DEEP_DIVE_PROMPT = """\
You are a blockchain forensics analyst producing an address-level deep dive on \
a large Bitcoin transfer: who the counterparties are, where the funds came \
from and are going, and what it means for the market.

Return EXACTLY these fields:

{
  "address_behavior": {
    "source_classification": <"exchange" | "whale" | "institutional" | "mixer" | "cold_storage" | "retail">,
    "source_strategy": <string>,
    "destination_classification": <same values as source_classification>,
    "destination_strategy": <string>
  },
  "fund_flow_analysis": {
    "origin_hypothesis": <string>,
    "destination_hypothesis": <string>,
    "mixing_detected": <true | false>,
    "cluster_analysis": <string>
  },
  "market_prediction": {
    "short_term_24h": <string>,
    "medium_term_7d": <string>,
    "key_price_levels": {"support": [<at least 2 USD prices>], "resistance": [<at least 2 USD prices>]},
    "probability_further_movement": <integer 0-100>
  },
  "strategic_intelligence": {
    "intent": <string>,
    "sentiment_indicator": <"bullish" | "bearish" | "neutral">,
    "trader_positioning": <string>,
    "risk_reward_ratio": <string>
  },
  "transaction_type": <"exchange_deposit" | "exchange_withdrawal" | "whale_to_whale" | "unknown">,
  "reasoning": <string, at least 100 characters>,
  "key_findings": [<3-10 concise factual findings>],
  "trader_action": <string>,
  "confidence": <integer 0-100>
}

""" + _COMMON_RULES

SYSTEM_PROMPTS: dict[str, str] = {
    "whale_analysis": _WHALE_ANALYSIS_PROMPT,
    "deep_dive": _DEEP_DIVE_PROMPT,
}


def build_system_prompt(analysis_kind: str) -> str:
    return SYSTEM_PROMPTS[analysis_kind]


def build_prompt(
    tx: WhaleTransaction,
    context: AggregatedContext,
    limitations: Optional[list[str]] = None,
) -> str:
    """Render the user prompt for one transaction."""
    limitations = context.limitations if limitations is None else limitations
    price = context.price.usd if context.price else None

    parts: list[str] = ["=== TRANSACTION ==="]
    parts.append(f"Hash: {tx.tx_hash}")
    parts.append(f"Chain: {tx.blockchain} ({tx.asset})")
    parts.append(f"Amount: {tx.amount:,.8f}".rstrip("0").rstrip(".") + f" {tx.asset}")
    usd = tx.amount_usd if tx.amount_usd is not None else (tx.amount * price if price else None)
    if usd is not None:
        parts.append(f"Value: ${usd:,.0f}")
    if tx.timestamp:
        parts.append(f"Time: {tx.timestamp.isoformat()}")
    parts.append(f"From: {tx.from_address}")
    parts.append(f"To: {tx.to_address}")
    if tx.description:
        parts.append(f"Detector note: {tx.description}")
    parts.append(f"Inferred type: {context.inferred_transaction_type}")

    parts.append("")
    parts.append("=== MARKET ===")
    if context.price:
        fallback = " (fallback estimate, live price unavailable)" if context.price.is_fallback else ""
        parts.append(f"Reference {context.price.asset} price: ${context.price.usd:,.2f}{fallback}")
    else:
        parts.append("Reference price: unknown")

    for title, history, entity in (
        ("SOURCE ADDRESS", context.source_history, context.source_entity),
        ("DESTINATION ADDRESS", context.destination_history, context.destination_entity),
    ):
        parts.append("")
        parts.append(f"=== {title} ===")
        parts.extend(_entity_lines(entity))
        parts.extend(_history_lines(history, tx.asset))

    if context.data_sources_used:
        parts.append("")
        parts.append("=== DATA SOURCES ===")
        parts.append(", ".join(context.data_sources_used))

    parts.append("")
    parts.append("=== DATA LIMITATIONS ===")
    if limitations:
        parts.extend(f"- {note}" for note in limitations)
    else:
        parts.append("- None: all context sources answered.")
    return "\n".join(parts)


def _entity_lines(entity: Union[EntityLabel, Unavailable, None]) -> list[str]:
    if isinstance(entity, EntityLabel):
        return [f"Entity: {entity.name} ({entity.entity_type}, via {entity.source})"]
    return ["Entity: unknown"]


def _history_lines(history: Union[AddressHistory, Unavailable, None], asset: str) -> list[str]:
    if not isinstance(history, AddressHistory):
        return ["History: unavailable"]
    lines = [
        f"Total received: {history.total_received:,.2f} {asset}",
        f"Total sent: {history.total_sent:,.2f} {asset}",
        f"Balance: {history.final_balance:,.2f} {asset}",
        f"Transactions: {history.transaction_count}",
    ]
    for rt in history.recent_transactions:
        when = rt.time.isoformat() if rt.time else "?"
        lines.append(
            f"  {rt.hash}… {when} inputs={rt.inputs} outputs={rt.outputs} value={rt.total_value:,.2f} {asset}"
        )
    return lines
