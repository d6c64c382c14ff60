"""
Structured analysis schemas the provider output must satisfy.

One schema per analysis kind.  The Output Extractor validates repaired JSON
against these models and reports every violation at once.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

TransactionType = Literal["exchange_deposit", "exchange_withdrawal", "whale_to_whale", "unknown"]
AddressClass = Literal["exchange", "whale", "institutional", "mixer", "cold_storage", "retail"]


def _percent(value):
    """Models sometimes answer 0.85 for 85%; scale fractions to 0-100."""
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return value
    if isinstance(value, float) and 0.0 < value < 1.0:
        return round(value * 100, 1)
    return value


class PriceLevels(BaseModel):
    support: list[float] = Field(..., min_length=2)
    resistance: list[float] = Field(..., min_length=2)


class TimeframeAnalysis(BaseModel):
    short_term: str = ""
    medium_term: str = ""


class RiskReward(BaseModel):
    ratio: str = ""
    position_size: str = ""
    stop_loss: Optional[float] = None
    take_profit: list[float] = Field(default_factory=list)


class HistoricalContext(BaseModel):
    similar_transactions: str = ""
    historical_outcome: str = ""
    pattern_match: str = ""
    confidence_based_on_history: Optional[float] = Field(None, ge=0, le=100)

    @field_validator("confidence_based_on_history", mode="before")
    @classmethod
    def scale_history_confidence(cls, value):
        return _percent(value)


class WhaleAnalysis(BaseModel):
    """Standard whale-transaction analysis."""

    transaction_type: TransactionType
    market_impact: Literal["Bearish", "Bullish", "Neutral"]
    confidence: float = Field(..., ge=0, le=100)
    reasoning: str = Field(..., min_length=100)
    key_findings: list[str] = Field(..., min_length=3, max_length=10)
    trader_action: str = Field(..., min_length=50)
    price_levels: Optional[PriceLevels] = None
    timeframe_analysis: Optional[TimeframeAnalysis] = None
    risk_reward: Optional[RiskReward] = None
    historical_context: Optional[HistoricalContext] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def scale_confidence(cls, value):
        return _percent(value)


# ---------------------------------------------------------------------------
# Deep dive
# ---------------------------------------------------------------------------
class AddressBehavior(BaseModel):
    source_classification: AddressClass
    source_strategy: str
    destination_classification: AddressClass
    destination_strategy: str


class FundFlowAnalysis(BaseModel):
    origin_hypothesis: str
    destination_hypothesis: str
    mixing_detected: bool
    cluster_analysis: str = ""


class MarketPrediction(BaseModel):
    short_term_24h: str
    medium_term_7d: str
    key_price_levels: PriceLevels
    probability_further_movement: float = Field(..., ge=0, le=100)

    @field_validator("probability_further_movement", mode="before")
    @classmethod
    def scale_probability(cls, value):
        return _percent(value)


class StrategicIntelligence(BaseModel):
    intent: str
    sentiment_indicator: Literal["bullish", "bearish", "neutral"]
    trader_positioning: str
    risk_reward_ratio: str = ""


class DeepDiveAnalysis(BaseModel):
    """Address-level deep dive with fund-flow and market outlook."""

    address_behavior: AddressBehavior
    fund_flow_analysis: FundFlowAnalysis
    market_prediction: MarketPrediction
    strategic_intelligence: StrategicIntelligence
    transaction_type: TransactionType
    reasoning: str = Field(..., min_length=100)
    key_findings: list[str] = Field(..., min_length=3, max_length=10)
    trader_action: str = Field(..., min_length=20)
    confidence: float = Field(..., ge=0, le=100)

    @field_validator("confidence", mode="before")
    @classmethod
    def scale_confidence(cls, value):
        return _percent(value)


ANALYSIS_SCHEMAS: dict[str, type[BaseModel]] = {
    "whale_analysis": WhaleAnalysis,
    "deep_dive": DeepDiveAnalysis,
}

# Kinds that always warrant a deep-tier model
DEEP_KINDS = frozenset({"deep_dive"})
