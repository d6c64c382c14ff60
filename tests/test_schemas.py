"""Tests for the analysis output schemas."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from whale_agent.schemas import ANALYSIS_SCHEMAS, DEEP_KINDS, DeepDiveAnalysis, WhaleAnalysis


def _deep_dive():
    return {
        "address_behavior": {
            "source_classification": "whale",
            "source_strategy": "Long-term holder rotating to an exchange",
            "destination_classification": "exchange",
            "destination_strategy": "Binance cold storage consolidation",
        },
        "fund_flow_analysis": {
            "origin_hypothesis": "Coins mined in 2013",
            "destination_hypothesis": "Exchange deposit ahead of sale",
            "mixing_detected": False,
        },
        "market_prediction": {
            "short_term_24h": "Mild sell pressure",
            "medium_term_7d": "Range bound",
            "key_price_levels": {"support": [94000, 92000], "resistance": [98000, 100000]},
            "probability_further_movement": 0.65,
        },
        "strategic_intelligence": {
            "intent": "Distribution",
            "sentiment_indicator": "bearish",
            "trader_positioning": "Hedge longs",
        },
        "transaction_type": "exchange_deposit",
        "reasoning": "r" * 120,
        "key_findings": ["one", "two", "three"],
        "trader_action": "Reduce exposure into strength",
        "confidence": 70,
    }


class TestWhaleAnalysis:

    def test_valid(self, whale_analysis):
        record = WhaleAnalysis.model_validate(whale_analysis)
        assert record.market_impact == "Bearish"
        assert record.price_levels.support == [94000, 92500]

    def test_fraction_confidence_scaled(self, whale_analysis):
        whale_analysis["confidence"] = 0.85
        assert WhaleAnalysis.model_validate(whale_analysis).confidence == 85.0

    def test_percent_string_confidence(self, whale_analysis):
        whale_analysis["confidence"] = "72%"
        assert WhaleAnalysis.model_validate(whale_analysis).confidence == 72.0

    def test_confidence_out_of_range(self, whale_analysis):
        whale_analysis["confidence"] = 140
        with pytest.raises(PydanticValidationError):
            WhaleAnalysis.model_validate(whale_analysis)

    def test_reports_every_problem(self, whale_analysis):
        whale_analysis["reasoning"] = "short"
        whale_analysis["key_findings"] = ["only one"]
        whale_analysis["market_impact"] = "Sideways"
        with pytest.raises(PydanticValidationError) as exc_info:
            WhaleAnalysis.model_validate(whale_analysis)
        fields = {err["loc"][0] for err in exc_info.value.errors()}
        assert {"reasoning", "key_findings", "market_impact"} <= fields

    def test_price_levels_need_two_each(self, whale_analysis):
        whale_analysis["price_levels"] = {"support": [94000], "resistance": [98000, 99000]}
        with pytest.raises(PydanticValidationError):
            WhaleAnalysis.model_validate(whale_analysis)


class TestDeepDiveAnalysis:

    def test_valid_and_probability_scaled(self):
        record = DeepDiveAnalysis.model_validate(_deep_dive())
        assert record.market_prediction.probability_further_movement == 65.0
        assert record.fund_flow_analysis.mixing_detected is False

    def test_unknown_classification_rejected(self):
        data = _deep_dive()
        data["address_behavior"]["source_classification"] = "dragon"
        with pytest.raises(PydanticValidationError):
            DeepDiveAnalysis.model_validate(data)


def test_registry():
    assert set(ANALYSIS_SCHEMAS) == {"whale_analysis", "deep_dive"}
    assert DEEP_KINDS <= set(ANALYSIS_SCHEMAS)
