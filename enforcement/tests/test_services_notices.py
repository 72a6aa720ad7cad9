"""Tests for notice assembly, comparison items, profiles and quality scoring."""

from datetime import date, datetime

import pytest

from enforcement.models.database import Infringement, Product
from enforcement.models.records import AIExtractedData, EvidencePacket
from enforcement.services.comparison_builder import (
    MAX_ITEMS,
    ComparisonItem,
    build_comparison_items,
    format_match_type,
)
from enforcement.services.infringement_profiles import (
    DEFAULT_PROFILE,
    detect_infringement_profile,
    get_profile_info,
)
from enforcement.services.notice_builder import (
    GOOD_FAITH_STATEMENT,
    PERJURY_STATEMENT,
    DMCAContact,
    NoticeEvidence,
    build_notice,
)
from enforcement.services.quality_checker import QualityInput, check_notice_quality
from enforcement.services.target_resolver import PROVIDERS


@pytest.fixture
def product():
    return Product(
        name="Alpha Trend Indicator",
        type="trading_indicator",
        price=199.0,
        url="https://creatorlabs.example/alpha-trend",
        description="A multi-timeframe trend indicator with proprietary smoothing.",
        copyright_info={"registration_number": "TX-123-456", "year": 2023},
        trademark_info={"name": "AlphaTrend", "registration_number": "5550001"},
    )


@pytest.fixture
def infringement():
    return Infringement(
        source_url="https://t.me/leakedindicators/42",
        platform="telegram",
        first_seen_at=datetime(2024, 2, 10, 8, 0),
        infrastructure={"schema_version": 1, "ip_address": "198.51.100.7", "hosting_provider": "Cloudflare"},
        whois_domain="t.me",
        whois_registrar_name="MarkMonitor Inc.",
    )


@pytest.fixture
def contact():
    return DMCAContact(
        full_name="Jane Creator",
        email="legal@example.com",
        company="Creator Labs LLC",
        phone="+1 555 0100",
        address="1 Main Street, Springfield",
    )


class TestInfringementProfiles:
    """Tests for profile detection."""

    def test_type_wins(self):
        assert detect_infringement_profile(platform="google", infringement_type="channel") == "leaked_download"

    def test_price_means_resale(self):
        assert detect_infringement_profile(evidence=EvidencePacket(has_price=True)) == "unauthorized_resale"

    def test_images_without_text(self):
        evidence = EvidencePacket(image_matches=["img1"])
        assert detect_infringement_profile(evidence=evidence) == "copied_images"

    def test_file_host_url(self):
        assert detect_infringement_profile(source_url="https://mega.nz/file/abc") == "leaked_download"

    def test_platform_fallback_and_default(self):
        assert detect_infringement_profile(platform="Telegram") == "leaked_download"
        assert detect_infringement_profile(platform="somewhere") == DEFAULT_PROFILE

    def test_unknown_profile_info_falls_back(self):
        assert get_profile_info("nonsense").id == DEFAULT_PROFILE


class TestComparisonItems:
    """Tests for comparison pair generation."""

    def test_product_url_comes_first(self):
        items = build_comparison_items(
            "Alpha Trend Indicator",
            "https://t.me/leak",
            product_url="https://creatorlabs.example/alpha",
            product_type="trading_indicator",
        )
        assert items[0].original == "Original product page: https://creatorlabs.example/alpha"
        assert items[-1].original.startswith("Trading indicator legitimately sold at")

    def test_enriched_snapshot_matches_preferred(self):
        items = build_comparison_items(
            "Alpha",
            "https://t.me/leak",
            snapshot_matches=[
                {"type": "unique_phrase", "original_text": "see the trend", "dmca_language": "Copied verbatim"},
                {"type": "text_match", "matched_text": "a plain text match here"},
            ],
        )
        assert len(items) == 1
        assert items[0].infringing == "Copied verbatim"
        assert "unique phrase" in items[0].original

    def test_duplicates_removed_and_capped(self):
        evidence = EvidencePacket(matched_excerpts=["same excerpt text"] * 3)
        items = build_comparison_items("Alpha", "https://t.me/leak", evidence=evidence)
        assert len(items) == 1

        many = [{"type": "text_match", "matched_text": f"distinct match number {i}"} for i in range(20)]
        ai_data = AIExtractedData(unique_phrases=["p1 phrase", "p2 phrase", "p3 phrase"], brand_identifiers=["AT"])
        items = build_comparison_items(
            "Alpha",
            "https://t.me/leak",
            product_url="https://x.example",
            product_type="ebook",
            snapshot_matches=many,
            evidence=EvidencePacket(matched_excerpts=[f"another excerpt {i}" for i in range(5)]),
            captured_text="p1 phrase p2 phrase p3 phrase AT",
            ai_data=ai_data,
        )
        assert len(items) == MAX_ITEMS

    def test_page_title_requires_product_name(self):
        items = build_comparison_items("Alpha", "https://t.me/leak", page_title="Free ALPHA download")
        assert len(items) == 1
        items = build_comparison_items("Alpha", "https://t.me/leak", page_title="Unrelated")
        assert items == []

    def test_copyrighted_terms_strip_symbols(self):
        items = build_comparison_items(
            "Alpha",
            "https://t.me/leak",
            captured_text="get alphatrend pro here",
            ai_data=AIExtractedData(copyrighted_terms=["AlphaTrend™"]),
        )
        assert items[0].original == 'Copyrighted term: "AlphaTrend™"'

    def test_format_match_type_default(self):
        assert format_match_type(None) == "content"


class TestBuildNotice:
    """Tests for the deterministic notice template."""

    def test_statutory_sections_present(self, contact, product, infringement):
        notice = build_notice(
            contact, product, infringement, "leaked_download", PROVIDERS["telegram"],
            [ComparisonItem("Original A", "Infringing A")],
            today=date(2024, 3, 1),
        )
        assert notice.subject == 'DMCA Takedown Notice — Unauthorized Leaked Download / File Distribution of "Alpha Trend Indicator"'
        assert notice.recipient_email == "dmca@telegram.org"
        assert notice.delivery_method == "email"
        assert GOOD_FAITH_STATEMENT in notice.body
        assert PERJURY_STATEMENT in notice.body
        assert "/ Jane Creator /" in notice.body
        assert "Date: March 1, 2024" in notice.body
        assert "First Detected: February 10, 2024" in notice.body
        assert "1. Original: Original A" in notice.body
        assert "Copyright Registration: TX-123-456 (2023)" in notice.body
        assert "SUPPLEMENTAL EVIDENCE" not in notice.body
        assert any("Lanham Act" in ref for ref in notice.legal_references)

    def test_supplemental_evidence_section(self, contact, product, infringement):
        evidence = NoticeEvidence(
            content_hash="ab" * 32,
            timestamp_anchored=True,
            captured_at="2024-02-11T09:30:00",
            html_storage_path="/evidence/html/x.html",
        )
        notice = build_notice(
            contact, product, infringement, "full_reupload", PROVIDERS["google"], [], evidence=evidence
        )
        assert "Content Fingerprint (SHA-256): " + "ab" * 32 in notice.body
        assert "Evidence Captured: February 11, 2024 at 09:30 UTC" in notice.body
        assert "anchored to Bitcoin blockchain" in notice.body
        assert "IP Address: 198.51.100.7" in notice.body
        assert "Registrar: MarkMonitor Inc." in notice.body
        assert notice.delivery_method == "web_form"
        assert notice.recipient_email == ""

    def test_agent_standing(self, product, infringement):
        agent = DMCAContact(
            full_name="Sam Agent", email="sam@agency.example",
            is_copyright_owner=False, relationship_to_owner="legal counsel",
        )
        notice = build_notice(agent, product, infringement, "copied_text", PROVIDERS["telegram"], [])
        assert "authorized to act on behalf of the copyright owner as legal counsel" in notice.body

    def test_to_dict(self, contact, product, infringement):
        data = build_notice(
            contact, product, infringement, "full_reupload", PROVIDERS["telegram"],
            [ComparisonItem("o", "i")],
        ).to_dict()
        assert data["comparison_items"] == [{"original": "o", "infringing": "i"}]
        assert data["profile"] == "full_reupload"


class TestQualityChecker:
    """Tests for notice quality scoring."""

    def _complete(self, **changes) -> QualityInput:
        values = dict(
            contact_name="Jane Creator",
            contact_email="legal@example.com",
            contact_address="1 Main Street",
            contact_phone="+1 555 0100",
            product_name="Alpha",
            product_description="A detailed description of the product.",
            product_url="https://x.example",
            copyright_reg_number="TX-1",
            infringing_url="https://t.me/leak",
            has_good_faith_statement=True,
            has_perjury_statement=True,
            has_signature=True,
            comparison_items=[ComparisonItem("a", "b")] * 3,
            has_evidence_packet=True,
            has_unique_markers=True,
            has_blockchain_timestamp=True,
        )
        values.update(changes)
        return QualityInput(**values)

    def test_complete_notice_is_strong(self):
        result = check_notice_quality(self._complete())
        assert result.passed is True
        assert result.score == 100
        assert result.strength == "strong"
        assert result.errors == []
        assert result.warnings == []

    def test_missing_address_is_error(self):
        result = check_notice_quality(self._complete(contact_address=None))
        assert result.passed is False
        assert result.strength == "weak"
        assert [issue.code for issue in result.errors] == ["NO_CONTACT_ADDRESS"]

    def test_warnings_reduce_score(self):
        result = check_notice_quality(self._complete(
            comparison_items=[ComparisonItem("a", "b")],
            contact_phone=None,
            has_evidence_packet=False,
            has_blockchain_timestamp=False,
        ))
        codes = [issue.code for issue in result.warnings]
        assert codes == ["FEW_COMPARISONS", "NO_EVIDENCE", "NO_PHONE"]
        assert result.warnings[0].message == "Only 1 comparison item (3+ recommended)"
        assert result.passed is True
        # three warnings, registration and unique marker bonuses
        assert result.score == 93
        assert result.strength == "standard"

    def test_empty_input_scores_zero(self):
        result = check_notice_quality(QualityInput())
        assert result.score == 0
        assert result.passed is False
        assert len(result.errors) == 8
