"""Tests for evidence collection and match confidence scoring."""

import httpx
import pytest
import respx

from enforcement.models.records import EvidencePacket
from enforcement.services.evidence_collector import (
    PAGE_TEXT_LIMIT,
    EvidenceCollectionContext,
    EvidenceCollector,
    InfringementDetection,
    build_search_terms,
    calculate_match_confidence,
    extract_excerpts,
    parse_page,
)

PAGE_HTML = """
<html>
  <head><title>Free indicators</title><script>var alpha = "Alpha Trend Indicator";</script></head>
  <body>
    <h1>Download Alpha Trend Indicator v3 cracked</h1>
    <p>The best free copy of the alpha trend system with all templates included.</p>
  </body>
</html>
"""

LINKED_PAGE_HTML = """
<html>
  <head><title>Alpha Trend Indicator free</title><script>var tracker = 1;</script></head>
  <body>
    <p>Alpha Trend Indicator full version</p>
    <a href="/files/alpha.zip">Mirror 1</a>
    <a href="https://files.test/alpha.zip">Mirror 2</a>
  </body>
</html>
"""


class TestCalculateMatchConfidence:
    """Tests for the 0..1 evidence quality score."""

    def test_empty_packet_scores_zero(self):
        assert calculate_match_confidence(EvidencePacket()) == 0.0

    def test_hash_match_sets_floor(self):
        score = calculate_match_confidence(EvidencePacket(hash_matches=["abc"]))
        assert score >= 0.95

    def test_full_evidence_clamps_to_one(self):
        evidence = EvidencePacket(
            hash_matches=["abc"],
            matched_excerpts=["one excerpt text", "two excerpt text"],
            screenshots=["/evidence/1.jpg"],
            url_chain=["https://a.test", "https://b.test", "https://c.test"],
        )
        assert calculate_match_confidence(evidence) == 1.0

    def test_excerpts_are_capped(self):
        evidence = EvidencePacket(matched_excerpts=[f"excerpt number {i}" for i in range(10)])
        assert calculate_match_confidence(evidence) == 0.5

    def test_excerpts_screenshot_and_chain(self):
        evidence = EvidencePacket(
            matched_excerpts=["first excerpt here", "second excerpt here"],
            screenshots=["/evidence/1.jpg"],
            url_chain=["https://a.test", "https://b.test"],
        )
        assert calculate_match_confidence(evidence) == pytest.approx(0.6)

    def test_single_hop_chain_adds_nothing(self):
        evidence = EvidencePacket(url_chain=["https://a.test"])
        assert calculate_match_confidence(evidence) == 0.0

    @pytest.mark.parametrize("excerpts,screens,hops,hashed", [
        (0, 0, 1, False),
        (1, 1, 2, False),
        (5, 1, 5, False),
        (0, 1, 1, True),
        (3, 0, 4, True),
    ])
    def test_score_always_in_unit_interval(self, excerpts, screens, hops, hashed):
        evidence = EvidencePacket(
            matched_excerpts=[f"excerpt {i} text" for i in range(excerpts)],
            screenshots=["s"] * screens,
            url_chain=[f"https://hop{i}.test" for i in range(hops)],
            hash_matches=["h"] if hashed else [],
        )
        score = calculate_match_confidence(evidence)
        assert 0.0 <= score <= 1.0
        if hashed:
            assert score >= 0.95


class TestExcerpts:
    """Tests for search term building and excerpt extraction."""

    def test_search_terms_drop_generic_keywords(self):
        context = EvidenceCollectionContext(
            product_name="Alpha Trend Indicator",
            keywords=["Alpha Trend", "download", "free"],
        )
        terms = build_search_terms(context)
        assert terms[0] == "alpha trend indicator"
        assert "alpha trend" in terms
        assert "download" not in terms
        assert "free" not in terms

    def test_extract_excerpts_ignores_scripts(self):
        excerpts = extract_excerpts(PAGE_HTML, ["alpha trend indicator"])
        assert len(excerpts) == 1
        assert "Download Alpha Trend Indicator v3 cracked" in excerpts[0]
        assert "var alpha" not in excerpts[0]

    def test_extract_excerpts_deduplicates_and_limits(self):
        html = "<body>" + " ".join(["<p>alpha trend copy number %d here</p>" % i for i in range(20)]) + "</body>"
        excerpts = extract_excerpts(html, ["alpha trend", "alpha trend"])
        assert 0 < len(excerpts) <= 5
        assert len(set(excerpts)) == len(excerpts)

    def test_no_match_returns_empty(self):
        assert extract_excerpts("<body><p>nothing relevant</p></body>", ["alpha trend"]) == []


class TestEvidenceCollector:
    """Tests for the network-backed collection steps."""

    @pytest.fixture
    def collector(self, tmp_path):
        return EvidenceCollector(
            screenshot_api_url="https://shots.test",
            screenshot_api_key="sk-secret",
            storage_path=tmp_path,
            max_hops=5,
            wayback_save_url="https://archive.test/save",
        )

    @pytest.fixture
    def context(self):
        return EvidenceCollectionContext(product_name="Alpha Trend Indicator", keywords=["alpha trend"])

    @pytest.mark.asyncio
    async def test_trace_url_chain_follows_redirects(self, collector):
        with respx.mock:
            respx.get("https://short.test/x").mock(
                return_value=httpx.Response(301, headers={"location": "https://mid.test/y"})
            )
            respx.get("https://mid.test/y").mock(
                return_value=httpx.Response(302, headers={"location": "/final"})
            )
            respx.get("https://mid.test/final").mock(return_value=httpx.Response(200, text="ok"))

            chain = await collector.trace_url_chain("https://short.test/x")

        assert chain == ["https://short.test/x", "https://mid.test/y", "https://mid.test/final"]

    @pytest.mark.asyncio
    async def test_trace_url_chain_stops_on_loop(self, collector):
        with respx.mock:
            respx.get("https://a.test/").mock(
                return_value=httpx.Response(302, headers={"location": "https://b.test/"})
            )
            respx.get("https://b.test/").mock(
                return_value=httpx.Response(302, headers={"location": "https://a.test/"})
            )

            chain = await collector.trace_url_chain("https://a.test/")

        assert chain == ["https://a.test/", "https://b.test/"]

    @pytest.mark.asyncio
    async def test_screenshot_is_stored_locally(self, collector, tmp_path):
        with respx.mock:
            respx.route(host="shots.test").mock(return_value=httpx.Response(200, content=b"\xff\xd8jpeg"))
            paths = await collector.capture_screenshots("https://leak.test/page")

        assert len(paths) == 1
        assert paths[0].startswith(str(tmp_path))
        with open(paths[0], "rb") as f:
            assert f.read() == b"\xff\xd8jpeg"

    @pytest.mark.asyncio
    async def test_screenshot_render_failure_yields_nothing(self, collector):
        with respx.mock:
            respx.route(host="shots.test").mock(return_value=httpx.Response(500))
            paths = await collector.capture_screenshots("https://leak.test/page")

        assert paths == []
        assert calculate_match_confidence(EvidencePacket(screenshots=paths)) == 0.0

    @pytest.mark.asyncio
    async def test_screenshot_storage_failure_keeps_external_url_without_key(self, tmp_path):
        blocked = tmp_path / "blocked"
        blocked.write_text("not a directory")
        collector = EvidenceCollector(
            screenshot_api_url="https://shots.test", screenshot_api_key="sk-secret", storage_path=blocked
        )
        with respx.mock:
            respx.route(host="shots.test").mock(return_value=httpx.Response(200, content=b"img"))
            paths = await collector.capture_screenshots("https://leak.test/page")

        assert len(paths) == 1
        assert paths[0].startswith("https://shots.test/?")
        assert "leak.test" in paths[0]
        assert "sk-secret" not in paths[0]
        assert "key=" not in paths[0]

    @pytest.mark.asyncio
    async def test_collect_evidence_assembles_packet(self, collector, context):
        detection = InfringementDetection(
            url="https://leak.test/page",
            platform="unknown",
            detection_method="hash",
            matched_terms=["alpha trend"],
            matched_hash="deadbeef",
        )
        with respx.mock:
            respx.route(host="shots.test").mock(return_value=httpx.Response(200, content=b"img"))
            respx.get("https://leak.test/page").mock(return_value=httpx.Response(200, text=PAGE_HTML))

            evidence = await collector.collect_evidence(detection, context)

        assert evidence.hash_matches == ["deadbeef"]
        assert evidence.matched_excerpts
        assert len(evidence.screenshots) == 1
        assert evidence.url_chain == ["https://leak.test/page"]
        assert evidence.detection_metadata.detection_method == "hash"
        assert evidence.detection_metadata.product_name == "Alpha Trend Indicator"
        assert evidence.page_title == "Free indicators"
        assert evidence.detection_metadata.partial_collection is False

    @pytest.mark.asyncio
    async def test_collect_evidence_marks_partial_failure(self, tmp_path, context):
        class BrokenChainCollector(EvidenceCollector):
            async def capture_screenshots(self, url):
                return []

            async def inspect_page(self, url, context):
                return ["alpha trend leaked copy"], None

            async def trace_url_chain(self, url):
                raise RuntimeError("resolver exploded")

        collector = BrokenChainCollector(storage_path=tmp_path)
        detection = InfringementDetection(url="https://leak.test/page", platform="unknown")

        evidence = await collector.collect_evidence(detection, context)

        assert evidence.url_chain == ["https://leak.test/page"]
        assert evidence.matched_excerpts == ["alpha trend leaked copy"]
        assert evidence.detection_metadata.partial_collection is True
        assert "url_chain" in evidence.detection_metadata.collection_error

    @pytest.mark.asyncio
    async def test_excerpt_fetch_error_returns_empty(self, collector, context):
        with respx.mock:
            respx.get("https://leak.test/page").mock(side_effect=httpx.ConnectError("down"))
            excerpts = await collector.extract_matched_excerpts("https://leak.test/page", context)
        assert excerpts == []

    @pytest.mark.asyncio
    async def test_capture_page_preserves_and_archives(self, collector, tmp_path):
        with respx.mock:
            respx.get("https://leak.test/page").mock(return_value=httpx.Response(200, text=LINKED_PAGE_HTML))
            respx.get("https://archive.test/save/https://leak.test/page").mock(
                return_value=httpx.Response(
                    302, headers={"location": "/web/20240101000000/https://leak.test/page"}
                )
            )
            capture = await collector.capture_page("https://leak.test/page", "snap-1")

        assert capture.html_storage_path == str(tmp_path / "html" / "snap-1.html")
        with open(capture.html_storage_path, encoding="utf-8") as f:
            assert "Alpha Trend Indicator" in f.read()
        assert capture.page_title == "Alpha Trend Indicator free"
        assert "var tracker" not in capture.page_text
        assert capture.page_links == [
            {"href": "https://leak.test/files/alpha.zip", "text": "Mirror 1"},
            {"href": "https://files.test/alpha.zip", "text": "Mirror 2"},
        ]
        assert len(capture.page_html_hash) == 64
        assert capture.wayback_url == "https://archive.test/web/20240101000000/https://leak.test/page"

    @pytest.mark.asyncio
    async def test_capture_page_degrades_on_failures(self, collector):
        with respx.mock:
            respx.get("https://leak.test/page").mock(return_value=httpx.Response(404))
            respx.get("https://archive.test/save/https://leak.test/page").mock(
                side_effect=httpx.ConnectError("refused")
            )
            capture = await collector.capture_page("https://leak.test/page", "snap-1")

        assert capture.html_storage_path is None
        assert capture.page_title == ""
        assert capture.page_links == []
        assert capture.wayback_url is None

    @pytest.mark.asyncio
    async def test_wayback_success_without_location(self, collector):
        with respx.mock:
            respx.get("https://archive.test/save/https://leak.test/page").mock(
                return_value=httpx.Response(200, text="saved")
            )
            wayback_url = await collector.submit_to_wayback("https://leak.test/page")

        assert wayback_url.startswith("https://web.archive.org/web/")
        assert wayback_url.endswith("/https://leak.test/page")


class TestParsePage:
    """Tests for page content extraction."""

    def test_og_title_fallback_and_link_filtering(self):
        html = """
        <html><head><meta property="og:title" content=" Leaked Alpha "></head>
        <body><a href="#top">Top</a><a href="javascript:void(0)">Menu</a><a href="/dl">Get</a></body></html>
        """
        content = parse_page(html, "https://leak.test/page")
        assert content.title == "Leaked Alpha"
        assert content.links == [{"href": "https://leak.test/dl", "text": "Get"}]

    def test_text_is_capped(self):
        content = parse_page("<body>" + "word " * 20000 + "</body>", "https://leak.test")
        assert len(content.text) == PAGE_TEXT_LIMIT
