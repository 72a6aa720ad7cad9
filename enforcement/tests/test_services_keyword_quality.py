"""Tests for generic keyword filtering."""

import pytest

from enforcement.services.keyword_quality import (
    filter_generic_keywords,
    filter_piracy_search_terms,
    is_evidence_worthy,
    is_generic_keyword,
    keyword_specificity_score,
)


class TestIsGenericKeyword:
    """Tests for generic keyword detection."""

    @pytest.mark.parametrize("keyword", ["trading", "Indicator", "ab", "2024", "trading indicator", "free download"])
    def test_generic(self, keyword):
        assert is_generic_keyword(keyword) is True

    @pytest.mark.parametrize("keyword", ["10x Bars", "Simpler Trading", "AlphaTrend"])
    def test_specific(self, keyword):
        assert is_generic_keyword(keyword) is False

    def test_filter_keeps_order(self):
        assert filter_generic_keywords(["course", "10x Bars", "pdf", "Simpler Trading"]) == [
            "10x Bars",
            "Simpler Trading",
        ]


class TestSpecificity:
    """Tests for the specificity score."""

    def test_stopword_scores_zero(self):
        assert keyword_specificity_score("trading") == 0.0

    def test_all_generic_phrase(self):
        assert keyword_specificity_score("trading indicator") == 0.1

    def test_single_brand_word(self):
        assert keyword_specificity_score("AlphaTrend") == 0.5

    def test_mixed_phrase(self):
        # one specific word of three plus a 0.3 length bonus
        assert keyword_specificity_score("alphatrend trading indicator") == pytest.approx(1 / 3 + 0.3)


class TestEvidenceWorthiness:
    """Tests for evidence display filtering."""

    def test_product_name_always_qualifies(self):
        assert is_evidence_worthy("alpha trend indicator free", "Alpha Trend Indicator")

    def test_brand_name_qualifies(self):
        assert is_evidence_worthy("by Creator Labs", "Alpha", brand_name="Creator Labs")

    def test_generic_rejected(self):
        assert not is_evidence_worthy("trading indicator", "Alpha Trend Indicator")


class TestPiracySearchTerms:
    """Tests for anchoring generated search terms to the product."""

    def test_unanchored_terms_dropped(self):
        terms = filter_piracy_search_terms(
            ["Alpha Trend Indicator crack", "free trading indicator download", "alpha leaked", "  "],
            product_name="Alpha Trend Indicator",
            brand_name="Creator Labs",
        )
        assert terms == ["Alpha Trend Indicator crack", "alpha leaked"]

    def test_brand_identifier_anchor(self):
        terms = filter_piracy_search_terms(
            ["ATX nulled"], product_name="Alpha Trend Indicator", brand_identifiers=["ATX"]
        )
        assert terms == ["ATX nulled"]
