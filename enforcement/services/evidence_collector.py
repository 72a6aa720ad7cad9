"""
Evidence Collector

Collects evidence for a detected infringement:
- Screenshot of the infringing page (via screenshot API, stored locally)
- Matched text excerpts (via HTML scraping)
- URL redirect chain
- File hash matches (if applicable)
- Detection metadata

At verification time the page is also captured for preservation: raw HTML
stored locally, title, visible text and links extracted, and the URL
submitted to the Wayback Machine for independent archival.

Collection never raises. A failing sub-task degrades to an empty result and
the packet is marked as partial.
"""

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from urllib.parse import urljoin
from uuid import uuid4

import aiofiles
import httpx
from bs4 import BeautifulSoup

from enforcement.config import get_settings
from enforcement.models.records import DetectionMetadata, EvidencePacket
from enforcement.services.keyword_quality import filter_generic_keywords

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

EXCERPT_CONTEXT_CHARS = 100
MAX_EXCERPTS = 5

PAGE_TEXT_LIMIT = 50_000
PAGE_LINK_LIMIT = 500
LINK_TEXT_LIMIT = 200
WAYBACK_USER_AGENT = "Enforcement Evidence Archiver"

# Confidence weights: hash is authoritative, excerpts corroborate,
# screenshots and redirect chains add context.
HASH_MATCH_FLOOR = 0.95
EXCERPT_WEIGHT = 0.15
EXCERPT_CAP = 0.5
SCREENSHOT_BONUS = 0.2
URL_CHAIN_BONUS = 0.1


@dataclass
class InfringementDetection:
    """A candidate infringement produced by a scan."""
    url: str
    platform: str
    detection_method: str = "keyword"  # keyword | hash | manual
    matched_terms: list[str] = field(default_factory=list)
    matched_hash: str | None = None


@dataclass
class EvidenceCollectionContext:
    """Product data used to look for matches on the infringing page."""
    product_name: str
    product_url: str | None = None
    keywords: list[str] = field(default_factory=list)
    file_hash: str | None = None


@dataclass
class PageContent:
    """Title, visible text and outbound links parsed from a page."""
    title: str = ""
    text: str = ""
    links: list[dict[str, str]] = field(default_factory=list)


@dataclass
class PageCapture:
    """Preserved copy of an infringing page. Every field degrades to empty."""
    page_title: str = ""
    page_text: str = ""
    page_links: list[dict[str, str]] = field(default_factory=list)
    page_html_hash: str = ""
    html_storage_path: str | None = None
    wayback_url: str | None = None
    captured_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())


class EvidenceCollector:
    """Builds an ``EvidencePacket`` for a detection."""

    def __init__(
        self,
        screenshot_api_url: str | None = None,
        screenshot_api_key: str | None = None,
        storage_path: Path | None = None,
        excerpt_timeout: float | None = None,
        hop_timeout: float | None = None,
        max_hops: int | None = None,
        screenshot_timeout: float | None = None,
        wayback_save_url: str | None = None,
        wayback_timeout: float | None = None,
    ):
        settings = get_settings()
        self.screenshot_api_url = screenshot_api_url or settings.screenshot_api_url
        self.screenshot_api_key = screenshot_api_key or settings.screenshot_api_key
        self.storage_path = Path(storage_path or settings.evidence_storage_path)
        self.excerpt_timeout = excerpt_timeout or settings.excerpt_fetch_timeout
        self.hop_timeout = hop_timeout or settings.redirect_hop_timeout
        self.max_hops = max_hops or settings.redirect_max_hops
        self.screenshot_timeout = screenshot_timeout or settings.screenshot_timeout
        self.wayback_save_url = (wayback_save_url or settings.wayback_save_url).rstrip("/")
        self.wayback_timeout = wayback_timeout or settings.wayback_timeout

    async def collect_evidence(
        self,
        detection: InfringementDetection,
        context: EvidenceCollectionContext,
    ) -> EvidencePacket:
        """Collect an evidence packet for a detection.

        The three sub-tasks run concurrently and fail independently.
        """
        evidence = EvidencePacket()
        if detection.matched_hash:
            evidence.hash_matches = [detection.matched_hash]

        metadata = DetectionMetadata(
            detection_method=detection.detection_method,
            matched_terms=list(detection.matched_terms),
            platform=detection.platform,
            collected_at=datetime.utcnow().isoformat(),
            product_name=context.product_name,
        )

        screenshots, excerpts, url_chain = await asyncio.gather(
            self.capture_screenshots(detection.url),
            self.inspect_page(detection.url, context),
            self.trace_url_chain(detection.url),
            return_exceptions=True,
        )

        errors = []
        if isinstance(screenshots, BaseException):
            errors.append(f"screenshot: {screenshots}")
            screenshots = []
        page_title = None
        if isinstance(excerpts, BaseException):
            errors.append(f"excerpts: {excerpts}")
            excerpts = []
        else:
            excerpts, page_title = excerpts
        if isinstance(url_chain, BaseException):
            errors.append(f"url_chain: {url_chain}")
            url_chain = [detection.url]

        evidence.screenshots = screenshots
        evidence.matched_excerpts = excerpts
        evidence.page_title = page_title
        evidence.url_chain = url_chain

        if errors:
            logger.error(f"Evidence collection partially failed for {detection.url}: {errors}")
            metadata.collection_error = "; ".join(errors)
            metadata.partial_collection = True

        evidence.detection_metadata = metadata
        return evidence

    def _screenshot_source_url(self, url: str, include_key: bool = True) -> str:
        params = {
            "url": url,
            "device": "desktop",
            "dimension": "1920x1080",
            "format": "jpg",
            "cacheLimit": "0",
            "delay": "2000",
        }
        if include_key:
            params = {"key": self.screenshot_api_key or "demo", **params}
        return f"{self.screenshot_api_url.rstrip('/')}/?{httpx.QueryParams(params)}"

    async def capture_screenshots(self, url: str) -> list[str]:
        """Render the page and store the image.

        Returns the stored file path. When the image renders but cannot be
        stored, the external screenshot URL is kept without the API key.
        A failed render yields no screenshot.
        """
        try:
            async with httpx.AsyncClient(timeout=self.screenshot_timeout) as client:
                response = await client.get(self._screenshot_source_url(url))
                response.raise_for_status()
                image = response.content
        except httpx.TimeoutException:
            logger.warning(f"Screenshot capture timeout for {url}")
            return []
        except httpx.HTTPError as e:
            # The request URL carries the API key
            logger.warning(f"Screenshot capture failed for {url}: {type(e).__name__}")
            return []

        try:
            self.storage_path.mkdir(parents=True, exist_ok=True)
            filepath = self.storage_path / f"{uuid4()}.jpg"
            async with aiofiles.open(filepath, "wb") as f:
                await f.write(image)
            return [str(filepath)]
        except OSError as e:
            logger.warning(f"Screenshot storage failed for {url}, keeping external URL: {e}")
            return [self._screenshot_source_url(url, include_key=False)]

    async def inspect_page(
        self,
        url: str,
        context: EvidenceCollectionContext,
    ) -> tuple[list[str], str | None]:
        """Fetch the page once for its matched excerpts and title."""
        html = await self._fetch_html(url)
        if html is None:
            return [], None
        return extract_excerpts(html, build_search_terms(context)), parse_page(html, url).title or None

    async def extract_matched_excerpts(
        self,
        url: str,
        context: EvidenceCollectionContext,
    ) -> list[str]:
        """Fetch the page and extract text around product term matches."""
        excerpts, _ = await self.inspect_page(url, context)
        return excerpts

    async def _fetch_html(self, url: str) -> str | None:
        try:
            async with httpx.AsyncClient(
                timeout=self.excerpt_timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.text
        except httpx.HTTPError as e:
            logger.warning(f"Page fetch failed for {url}: {e}")
            return None

    async def capture_page(self, url: str, snapshot_id: str) -> PageCapture:
        """Preserve the page: stored HTML, parsed content and a Wayback archive.

        Each step fails independently; a failed fetch still submits the URL
        to the Wayback Machine.
        """
        capture = PageCapture()
        html = await self._fetch_html(url)

        if html is not None:
            capture.page_html_hash = hashlib.sha256(html.encode()).hexdigest()
            content = parse_page(html, url)
            capture.page_title = content.title
            capture.page_text = content.text
            capture.page_links = content.links
            capture.html_storage_path = await self._store_html(html, url, snapshot_id)
            logger.info(
                f"Captured {url}: {len(capture.page_text)} chars of text, {len(capture.page_links)} links"
            )

        capture.wayback_url = await self.submit_to_wayback(url)
        return capture

    async def _store_html(self, html: str, url: str, snapshot_id: str) -> str | None:
        try:
            archive_dir = self.storage_path / "html"
            archive_dir.mkdir(parents=True, exist_ok=True)
            filepath = archive_dir / f"{snapshot_id}.html"
            async with aiofiles.open(filepath, "w", encoding="utf-8") as f:
                await f.write(html)
            return str(filepath)
        except OSError as e:
            logger.warning(f"HTML archive storage failed for {url}: {e}")
            return None

    async def submit_to_wayback(self, url: str) -> str | None:
        """Ask the Wayback Machine to archive ``url`` and return the archive URL.

        The archive location comes from the redirect's ``Location`` header;
        a 200 without one gets a URL built from the current time.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.wayback_timeout,
                follow_redirects=False,
                headers={"User-Agent": WAYBACK_USER_AGENT},
            ) as client:
                response = await client.get(f"{self.wayback_save_url}/{url}")
        except httpx.HTTPError as e:
            logger.warning(f"Wayback Machine submission failed for {url}: {e}")
            return None

        location = response.headers.get("location") or response.headers.get("content-location")
        if location:
            return urljoin(self.wayback_save_url, location)
        if response.is_success:
            return f"https://web.archive.org/web/{datetime.utcnow():%Y%m%d%H%M%S}/{url}"

        logger.warning(f"Wayback Machine returned {response.status_code} for {url}")
        return None

    async def trace_url_chain(self, url: str) -> list[str]:
        """Follow ``Location`` headers manually and record each hop."""
        chain = [url]
        current = url

        async with httpx.AsyncClient(
            timeout=self.hop_timeout,
            follow_redirects=False,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            for hop in range(self.max_hops):
                try:
                    response = await client.get(current)
                except httpx.HTTPError as e:
                    logger.warning(f"Redirect trace error at hop {hop} for {url}: {e}")
                    break

                if not response.is_redirect:
                    break
                location = response.headers.get("location")
                if not location:
                    break

                next_url = urljoin(current, location)
                if next_url in chain:
                    # Circular redirect
                    break
                chain.append(next_url)
                current = next_url

        return chain


def build_search_terms(context: EvidenceCollectionContext) -> list[str]:
    """Product name plus product-specific keywords, lowercased."""
    terms = []
    if context.product_name:
        terms.append(context.product_name.lower())
    terms.extend(keyword.lower() for keyword in filter_generic_keywords(context.keywords or []))
    return terms


def parse_page(html: str, base_url: str) -> PageContent:
    """Title, visible text (capped) and resolved outbound links of a page."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "iframe", "svg"]):
        tag.decompose()

    title = soup.title.get_text(strip=True) if soup.title else ""
    if not title:
        og_title = soup.find("meta", attrs={"property": "og:title"})
        title = (og_title.get("content") or "").strip() if og_title else ""

    body = soup.body or soup
    text = " ".join(body.get_text(" ").split())[:PAGE_TEXT_LIMIT]

    links = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("#", "javascript:")):
            continue
        links.append({
            "href": urljoin(base_url, href),
            "text": anchor.get_text(strip=True)[:LINK_TEXT_LIMIT],
        })
        if len(links) >= PAGE_LINK_LIMIT:
            break

    return PageContent(title=title, text=text, links=links)


def extract_excerpts(html: str, terms: list[str]) -> list[str]:
    """Extract up to five unique excerpts surrounding each term."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    body = soup.body or soup
    page_text = body.get_text(" ")

    excerpts: list[str] = []
    for term in terms:
        pattern = re.compile(
            rf".{{0,{EXCERPT_CONTEXT_CHARS}}}{re.escape(term)}.{{0,{EXCERPT_CONTEXT_CHARS}}}",
            re.IGNORECASE,
        )
        for match in pattern.findall(page_text):
            cleaned = " ".join(match.split())
            if len(cleaned) > 10 and cleaned not in excerpts:
                excerpts.append(cleaned)

    return excerpts[:MAX_EXCERPTS]


def calculate_match_confidence(evidence: EvidencePacket) -> float:
    """Score evidence quality from 0.0 to 1.0.

    Hash matches set a floor of 0.95, excerpts contribute up to 0.5,
    a screenshot adds 0.2 and a multi-hop redirect chain adds 0.1.
    """
    score = 0.0

    if evidence.hash_matches:
        score = max(score, HASH_MATCH_FLOOR)

    if evidence.matched_excerpts:
        score = max(score, min(len(evidence.matched_excerpts) * EXCERPT_WEIGHT, EXCERPT_CAP))

    if evidence.screenshots:
        score += SCREENSHOT_BONUS

    if len(evidence.url_chain) > 1:
        score += URL_CHAIN_BONUS

    return round(min(max(score, 0.0), 1.0), 4)
