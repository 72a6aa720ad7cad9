"""
Comparison Item Builder

Generates "Original -> Infringing" comparison pairs from evidence matches,
captured page text and product metadata. Returns at most ten
de-duplicated items, strongest sources first.
"""

from dataclasses import asdict, dataclass

from enforcement.models.records import AIExtractedData, EvidencePacket

MAX_ITEMS = 10
EXCERPT_CHARS = 150
MATCH_CHARS = 200

MATCH_TYPE_LABELS = {
    "exact_reproduction": "copyrighted content",
    "brand_usage": "brand identifier",
    "unique_phrase": "unique phrase",
    "content_structure": "content structure",
    "pricing_copy": "pricing information",
    "keyword_cluster": "keyword pattern",
    "text_match": "text",
    "brand_mention": "brand mention",
    "copyrighted_content": "copyrighted content",
    "download_link": "download link",
}

PRODUCT_TYPE_LABELS = {
    "video_course": "Video course",
    "ebook": "E-book",
    "pdf": "PDF document",
    "software": "Software application",
    "images": "Image collection",
    "audio": "Audio content",
    "slides": "Presentation slides",
    "trading_indicator": "Trading indicator",
    "template": "Digital template",
    "digital_asset": "Digital asset",
    "course": "Online course",
}


@dataclass
class ComparisonItem:
    original: str
    infringing: str

    def to_dict(self) -> dict:
        return asdict(self)


def format_match_type(match_type: str | None) -> str:
    return MATCH_TYPE_LABELS.get(match_type or "", "content")


def format_product_type(product_type: str | None) -> str:
    return PRODUCT_TYPE_LABELS.get(product_type or "", "Digital product")


class _ItemCollector:
    def __init__(self):
        self.items: list[ComparisonItem] = []
        self._seen: set[str] = set()

    def add(self, original: str, infringing: str) -> None:
        key = f"{original}|||{infringing}".lower()
        if key in self._seen or len(self.items) >= MAX_ITEMS:
            return
        self._seen.add(key)
        self.items.append(ComparisonItem(original=original, infringing=infringing))


def build_comparison_items(
    product_name: str,
    source_url: str,
    product_url: str | None = None,
    product_type: str | None = None,
    evidence: EvidencePacket | None = None,
    snapshot_matches: list[dict] | None = None,
    page_title: str | None = None,
    captured_text: str | None = None,
    ai_data: AIExtractedData | None = None,
) -> list[ComparisonItem]:
    """Build comparison pairs from every available source.

    Snapshot matches carrying AI-enriched ``original_text`` and
    ``dmca_language`` are preferred over basic text matches. Raw evidence
    excerpts follow, then page title and product type context, then
    AI-extracted phrases, brands and terms found in the captured text.
    """
    collector = _ItemCollector()

    if product_url:
        collector.add(
            f"Original product page: {product_url}",
            f"Unauthorized copy found at: {source_url}",
        )

    if snapshot_matches:
        enriched = [m for m in snapshot_matches if m.get("original_text") and m.get("dmca_language")]
        if enriched:
            for match in enriched[:6]:
                collector.add(
                    f"Original {format_match_type(match.get('type'))} from \"{product_name}\": "
                    f"\"{match['original_text'][:MATCH_CHARS]}\"",
                    match["dmca_language"],
                )
        else:
            for match in snapshot_matches[:5]:
                text = (match.get("matched_text") or "")
                if len(text) > 10:
                    text = text[:EXCERPT_CHARS]
                    collector.add(
                        f"Original {match.get('type') or 'content'} from \"{product_name}\": \"{text}\"",
                        f"Reproduced at {source_url}: \"{text}\"",
                    )

    if evidence is not None:
        for excerpt in evidence.matched_excerpts[:5]:
            trimmed = excerpt.strip()[:EXCERPT_CHARS]
            if len(trimmed) > 10:
                collector.add(
                    f"Original text from \"{product_name}\": \"{trimmed}\"",
                    f"Same text found at {source_url}: \"{trimmed}\"",
                )

    title = page_title or (evidence.page_title if evidence is not None else None)
    if title and product_name and product_name.lower() in title.lower():
        collector.add(
            f"Original product name: \"{product_name}\"",
            f"Product name used without authorization in page title: \"{title}\"",
        )

    if product_type and product_url:
        label = format_product_type(product_type)
        collector.add(
            f"{label} legitimately sold at {product_url}",
            f"{label} made available without authorization at {source_url}",
        )

    text = (captured_text or "").lower()
    if ai_data is not None and text:
        for phrase in ai_data.unique_phrases[:3]:
            if phrase.lower() in text:
                collector.add(
                    f"Original copyrighted phrase from \"{product_name}\": \"{phrase}\"",
                    f"Identical phrase reproduced without authorization at {source_url}",
                )
        for brand in ai_data.brand_identifiers[:2]:
            if brand.lower() in text:
                collector.add(
                    f"Trademarked brand identifier: \"{brand}\"",
                    f"Brand used without authorization at {source_url}",
                )
        for term in ai_data.copyrighted_terms[:2]:
            bare = term.lower().translate(str.maketrans("", "", "®™©")).strip()
            if bare and bare in text:
                collector.add(
                    f"Copyrighted term: \"{term}\"",
                    f"Protected term reproduced at {source_url}",
                )

    return collector.items
