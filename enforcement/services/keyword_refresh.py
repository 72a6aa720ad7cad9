"""
Keyword Refresh Service

Re-runs piracy keyword generation for a product once enough user feedback
has accumulated, enriching the prompt with learned intelligence. Results
are merged into ``products.ai_extracted_data``; nothing stored earlier is
discarded.

Rate limited per product: at most once per ``keyword_refresh_cooldown_hours``
and only after ``keyword_refresh_min_feedback`` verify/reject decisions.
"""

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enforcement.config import get_settings
from enforcement.models.database import Infringement, Product
from enforcement.models.records import AIExtractedData
from enforcement.services.intelligence_engine import IntelligenceData, fetch_intelligence_for_scan
from enforcement.services.keyword_quality import filter_piracy_search_terms
from enforcement.services.llm_client import LLMClient, LLMProviderError

logger = logging.getLogger(__name__)

FEEDBACK_STATUSES = ("false_positive",)

TYPE_INSTRUCTIONS = {
    "trading_indicator": """PRODUCT TYPE: Trading Indicator
- Pirates share indicator files as .ex4, .ex5, .mq4, .mq5, .pine, .zip archives
- Common piracy terms: "decompiled", "cracked", "unlocked", "source code", "free indicator"
- Platforms: forex-station.com, mql5.com forums, Telegram indicator channels, TradingView public scripts
- Alternative names often include version numbers, platform suffixes (MT4/MT5/TV), abbreviated forms""",
    "course": """PRODUCT TYPE: Online Course
- Pirates share courses via Google Drive, Mega.nz, Telegram groups, torrent sites
- Common piracy terms: "free download", "leaked", "full course free", "mega link", "drive link"
- Alternative names: abbreviated course names, instructor name + topic combos
- File identifiers: module names, lesson titles, course platform references""",
    "software": """PRODUCT TYPE: Software
- Pirates distribute via crack sites, keygens, serial key generators, portable versions
- Common piracy terms: "crack", "keygen", "serial key", "license key", "activator", "portable", "patch"
- Alternative names: version numbers, build numbers, abbreviated names
- File identifiers: installer names, .exe/.msi/.dmg file names, version strings""",
    "ebook": """PRODUCT TYPE: Ebook/Book
- Pirates distribute via shadow libraries, PDF download sites, Telegram
- Common piracy terms: "free pdf", "epub free", "free download"
- Alternative names: author name + title combos, shortened titles, subtitle variations
- File identifiers: ISBN numbers, "pdf", "epub", "mobi", edition numbers""",
    "template": """PRODUCT TYPE: Template/Theme
- Pirates distribute "nulled" versions via GPL sites and nulled theme forums
- Common piracy terms: "nulled", "free download", "GPL", "cracked", "unlicensed"
- File identifiers: .zip file names, theme slugs, version strings""",
    "other": """PRODUCT TYPE: Digital Product (General)
- Common piracy terms: "free download", "leaked", "cracked", "nulled", "torrent"
- Alternative names: shortened forms, abbreviations, common misspellings
- File identifiers: any referenced file names, version strings, download links""",
}

PRODUCT_TYPE_GROUPS = {
    "trading_indicator": "trading_indicator",
    "video_course": "course",
    "course": "course",
    "software": "software",
    "ebook": "ebook",
    "pdf": "ebook",
    "template": "template",
}

SYSTEM_PROMPT = """You are an expert in online piracy patterns and copyright infringement detection. Think like a pirate: how would someone searching for a pirated copy of this product phrase their search queries?

Generate:
1. piracy_search_terms (6-10 items): complete search queries a pirate would type. Each term MUST include the product name or a recognizable part of it.
2. alternative_names (3-8 items): abbreviations, slug forms, misspellings, version or platform suffixes. Do not repeat the exact original name.
3. unique_identifiers (2-6 items): file names, version strings or other technical identifiers inferable from the product.
4. platform_terms: search terms keyed by platform (google, telegram, torrent, forum, cyberlocker).

{type_instructions}

CRITICAL RULES:
- Every piracy_search_term MUST contain at least part of the product name or brand name
- Do NOT include the product's official URL or legitimate marketplace terms
- Generate varied terms

Respond with valid JSON only."""


@dataclass
class RefreshResult:
    product_id: UUID
    refreshed: bool
    reason: str | None = None
    piracy_terms_added: int = 0
    alternative_names_added: int = 0
    unique_identifiers_added: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def build_refresh_prompt(product: Product, ai_data: AIExtractedData, intelligence: IntelligenceData) -> str:
    lines = [
        "Analyze this product and generate piracy search intelligence:",
        "",
        f"Product Name: {product.name}",
        f"Product Type: {product.type or 'other'}",
        f"Brand/Creator: {product.brand_name or 'Unknown'}",
        f"URL: {product.url or 'Unknown'}",
        "",
        f"Brand Identifiers: {', '.join(ai_data.brand_identifiers) or 'None'}",
        f"Copyrighted Terms: {', '.join(ai_data.copyrighted_terms) or 'None'}",
        f"Unique Phrases: {', '.join(ai_data.unique_phrases[:3]) or 'None'}",
        f"Keywords: {', '.join(ai_data.keywords[:5]) or 'None'}",
        f"Existing Piracy Terms: {', '.join(ai_data.piracy_search_terms[:10]) or 'None'}",
    ]

    if intelligence.has_learning_data:
        lines.extend(["", "LEARNED FROM USER FEEDBACK:"])
        if intelligence.verified_keywords:
            lines.append(f"- Keywords found on confirmed infringements: {', '.join(intelligence.verified_keywords)}")
        if intelligence.verified_platforms:
            lines.append(f"- Platforms with confirmed infringements: {', '.join(intelligence.verified_platforms)}")
        if intelligence.false_positive_domains:
            lines.append(
                f"- Domains that produced false positives (avoid terms that lead there): "
                f"{', '.join(intelligence.false_positive_domains)}"
            )

    lines.extend([
        "",
        "Respond as JSON:",
        '{"piracy_search_terms": [], "alternative_names": [], "unique_identifiers": [], '
        '"platform_terms": {"google": [], "telegram": [], "torrent": [], "forum": [], "cyberlocker": []}}',
    ])
    return "\n".join(lines)


def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class KeywordRefreshService:
    """Refreshes a product's piracy keywords from accumulated feedback."""

    def __init__(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        llm: LLMClient | None = None,
        cooldown_hours: int | None = None,
        min_feedback: int | None = None,
    ):
        settings = get_settings()
        self.db = db
        self.session_factory = session_factory
        self.llm = llm or LLMClient()
        self.cooldown_hours = cooldown_hours if cooldown_hours is not None else settings.keyword_refresh_cooldown_hours
        self.min_feedback = min_feedback if min_feedback is not None else settings.keyword_refresh_min_feedback

    async def count_feedback(self, product_id: UUID) -> int:
        """Verified plus rejected infringements for the product."""
        result = await self.db.execute(
            select(func.count(Infringement.id)).where(
                Infringement.product_id == product_id,
                (Infringement.status.in_(FEEDBACK_STATUSES)) | (Infringement.verified_by_user_at.is_not(None)),
            )
        )
        return int(result.scalar() or 0)

    async def refresh(self, product_id: UUID, now: datetime | None = None) -> RefreshResult:
        product = await self.db.get(Product, product_id)
        if product is None:
            return RefreshResult(product_id=product_id, refreshed=False, reason="Product not found")

        now = now or datetime.utcnow()
        if product.last_keyword_refresh_at and now - product.last_keyword_refresh_at < timedelta(
            hours=self.cooldown_hours
        ):
            return RefreshResult(
                product_id=product_id,
                refreshed=False,
                reason=f"Refreshed less than {self.cooldown_hours}h ago",
            )

        feedback = await self.count_feedback(product_id)
        if feedback < self.min_feedback:
            return RefreshResult(
                product_id=product_id,
                refreshed=False,
                reason=f"Only {feedback} feedback items (need {self.min_feedback})",
            )

        ai_data = AIExtractedData.from_stored(product.ai_extracted_data)
        intelligence = await fetch_intelligence_for_scan(self.session_factory, product_id)
        type_group = PRODUCT_TYPE_GROUPS.get(product.type or "", "other")
        system_prompt = SYSTEM_PROMPT.format(type_instructions=TYPE_INSTRUCTIONS[type_group])

        started = time.monotonic()
        try:
            data = await self.llm.complete_json(
                system_prompt,
                build_refresh_prompt(product, ai_data, intelligence),
                temperature=0.4,
                max_tokens=1500,
            )
        except LLMProviderError as e:
            logger.error(f"Keyword refresh failed for product {product_id}: {e}")
            return RefreshResult(product_id=product_id, refreshed=False, reason=f"LLM error: {e}")

        update = self._parse_refresh(product, ai_data, data, int((time.monotonic() - started) * 1000), now)
        merged = ai_data.merged_with(update)

        product.ai_extracted_data = merged.to_stored()
        product.last_keyword_refresh_at = now
        await self.db.commit()

        result = RefreshResult(
            product_id=product_id,
            refreshed=True,
            piracy_terms_added=len(merged.piracy_search_terms) - len(ai_data.piracy_search_terms),
            alternative_names_added=len(merged.alternative_names) - len(ai_data.alternative_names),
            unique_identifiers_added=len(merged.unique_identifiers) - len(ai_data.unique_identifiers),
        )
        logger.info(
            f"Refreshed keywords for product {product_id}: +{result.piracy_terms_added} piracy terms, "
            f"+{result.alternative_names_added} alternative names, "
            f"+{result.unique_identifiers_added} identifiers"
        )
        return result

    def _parse_refresh(
        self,
        product: Product,
        ai_data: AIExtractedData,
        data: dict,
        processing_time_ms: int,
        now: datetime,
    ) -> AIExtractedData:
        raw_terms = _string_list(data.get("piracy_search_terms"))
        piracy_terms = filter_piracy_search_terms(
            raw_terms, product.name, product.brand_name, ai_data.brand_identifiers
        )
        if len(raw_terms) != len(piracy_terms):
            logger.debug(f"Dropped {len(raw_terms) - len(piracy_terms)} non-anchored piracy terms")

        platform_terms = {}
        raw_platform_terms = data.get("platform_terms")
        if isinstance(raw_platform_terms, dict):
            for platform, terms in raw_platform_terms.items():
                anchored = filter_piracy_search_terms(
                    _string_list(terms), product.name, product.brand_name, ai_data.brand_identifiers
                )
                if anchored:
                    platform_terms[platform] = anchored

        alternative_names = [
            name for name in _string_list(data.get("alternative_names"))
            if name.lower() != product.name.lower()
        ]

        return AIExtractedData(
            piracy_search_terms=piracy_terms,
            alternative_names=alternative_names,
            unique_identifiers=_string_list(data.get("unique_identifiers")),
            platform_search_terms=platform_terms,
            extraction_metadata={
                "model": self.llm.model,
                "refreshed_at": now.isoformat(),
                "processing_time_ms": processing_time_ms,
            },
        )
