"""Tests for AI classification of scan results."""

import pytest

from enforcement.models.database import Product
from enforcement.services.ai_filter import (
    ERROR_REASON,
    INVALID_RESPONSE_REASON,
    AIFilter,
    FilterResult,
    SearchResult,
    build_product_context,
    build_system_prompt,
    classify_filter_result,
    estimate_filtering_cost,
    parse_filter_response,
)
from enforcement.services.intelligence_engine import IntelligenceData
from enforcement.services.llm_client import LLMProviderError, LLMResponseFormatError
from enforcement.tests.fakes import FakeLLM


@pytest.fixture
def product():
    return Product(
        name="Alpha Trend Indicator",
        type="trading_indicator",
        price=199.0,
        url="https://creatorlabs.example/alpha-trend",
        brand_name="Creator Labs",
        keywords=["alpha trend"],
        ai_extracted_data={"brand_identifiers": ["AlphaTrend"], "unique_phrases": ["see the trend"]},
    )


def result(url="https://leaks.test/alpha") -> SearchResult:
    return SearchResult(source_url=url, platform="google", title="Alpha Trend Indicator free download")


class TestClassification:
    """Tests for confidence bands."""

    @pytest.mark.parametrize("is_infringement,confidence,band", [
        (True, 0.85, "pass"),
        (True, 0.75, "pass"),
        (True, 0.60, "uncertain"),
        (False, 0.60, "uncertain"),
        (True, 0.50, "uncertain"),
        (True, 0.30, "filtered"),
        (False, 0.95, "filtered"),
    ])
    def test_bands(self, is_infringement, confidence, band):
        analysis = FilterResult(is_infringement=is_infringement, confidence=confidence, reasoning="r")
        assert classify_filter_result(analysis) == band

    def test_cost_estimate(self):
        assert estimate_filtering_cost(100) == pytest.approx(0.02)
        assert estimate_filtering_cost(0) == 0


class TestParseFilterResponse:
    """Tests for validating the JSON contract."""

    def test_valid_response(self):
        parsed = parse_filter_response({
            "is_infringement": True, "confidence": 0.9, "reasoning": "cracked copy", "infringement_type": "piracy",
        })
        assert parsed == FilterResult(True, 0.9, "cracked copy", "piracy")

    def test_confidence_clamped_and_unknown_type_dropped(self):
        parsed = parse_filter_response({
            "is_infringement": True, "confidence": 1.7, "reasoning": "x", "infringement_type": "theft",
        })
        assert parsed.confidence == 1.0
        assert parsed.infringement_type is None

    def test_type_cleared_when_not_infringement(self):
        parsed = parse_filter_response({
            "is_infringement": False, "confidence": 0.2, "reasoning": "official", "infringement_type": "piracy",
        })
        assert parsed.infringement_type is None

    @pytest.mark.parametrize("data", [
        {"confidence": 0.9, "reasoning": "x"},
        {"is_infringement": "yes", "confidence": 0.9, "reasoning": "x"},
        {"is_infringement": True, "confidence": True, "reasoning": "x"},
        {"is_infringement": True, "confidence": "high", "reasoning": "x"},
        {"is_infringement": True, "confidence": 0.9},
    ])
    def test_contract_violations(self, data):
        assert parse_filter_response(data) is None


class TestPrompts:
    """Tests for prompt assembly."""

    def test_intelligence_and_examples_included(self):
        intelligence = IntelligenceData(
            verified_platforms=["telegram"],
            false_positive_domains=["creatorlabs.example"],
        )
        prompt = build_system_prompt(intelligence, {
            "verified_examples": [f"verified {i}" for i in range(7)],
            "false_positive_examples": ["official store"],
        })
        assert "LEARNED INTELLIGENCE FROM USER FEEDBACK:" in prompt
        assert "- Platforms with confirmed infringements: telegram" in prompt
        assert "5. verified 4" in prompt
        assert "6. verified 5" not in prompt
        assert "1. official store" in prompt
        assert prompt.endswith("}")

    def test_no_learning_section_without_data(self):
        assert "LEARNED INTELLIGENCE" not in build_system_prompt(IntelligenceData())

    def test_product_context(self, product):
        context = build_product_context(product)
        assert "- Price: $199 (this is a PAID product" in context
        assert "- Brand Identifiers: AlphaTrend" in context
        assert '- Unique Marketing Phrases: "see the trend"' in context


class TestAIFilter:
    """Tests for batch classification."""

    @pytest.mark.asyncio
    async def test_report_bands(self, product):
        llm = FakeLLM([
            {"is_infringement": True, "confidence": 0.85, "reasoning": "free download"},
            {"is_infringement": True, "confidence": 0.6, "reasoning": "unclear"},
            {"is_infringement": False, "confidence": 0.3, "reasoning": "review site"},
        ])
        ai_filter = AIFilter(llm=llm, batch_size=1, batch_delay_ms=0)

        report = await ai_filter.filter_search_results(
            [result("https://a.test"), result("https://b.test"), result("https://c.test")], product
        )

        assert [item.band for item in report.classified] == ["pass", "uncertain", "filtered"]
        assert [r.source_url for r in report.passed] == ["https://a.test", "https://b.test"]
        data = report.to_dict()
        assert (data["total"], data["passed"], data["uncertain"], data["filtered"]) == (3, 1, 1, 1)
        assert llm.calls[0]["temperature"] == 0.2
        assert llm.calls[0]["max_tokens"] == 200

    @pytest.mark.asyncio
    async def test_provider_error_defaults_to_uncertain(self, product):
        ai_filter = AIFilter(llm=FakeLLM([LLMProviderError("rate limited", retryable=True)]))
        analysis = await ai_filter.filter_search_result(result(), product)
        assert analysis == FilterResult(True, 0.5, ERROR_REASON)
        assert classify_filter_result(analysis) == "uncertain"

    @pytest.mark.asyncio
    async def test_malformed_json_defaults(self, product):
        ai_filter = AIFilter(llm=FakeLLM([LLMResponseFormatError("Invalid JSON from LLM")]))
        analysis = await ai_filter.filter_search_result(result(), product)
        assert analysis.reasoning == INVALID_RESPONSE_REASON
        assert analysis.confidence == 0.5

    @pytest.mark.asyncio
    async def test_contract_violation_defaults(self, product):
        ai_filter = AIFilter(llm=FakeLLM([{"verdict": "pirated"}]))
        analysis = await ai_filter.filter_search_result(result(), product)
        assert analysis.is_infringement is True
        assert analysis.reasoning == INVALID_RESPONSE_REASON

    @pytest.mark.asyncio
    async def test_empty_input(self, product):
        report = await AIFilter(llm=FakeLLM()).filter_search_results([], product)
        assert report.to_dict()["total"] == 0
