"""
AI Infringement Filter

Classifies scan results with a low-temperature JSON-mode LLM call before
they reach the human review queue. Results that pass are NOT actioned
automatically, so the filter leans permissive:

- pass: is_infringement with confidence >= min_confidence
- uncertain: confidence in [uncertain_floor, min_confidence), deferred to a human
- filtered: everything else

Any LLM failure or malformed answer yields the conservative default
(is_infringement=True, confidence=0.5) instead of dropping the result.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field

from enforcement.config import get_settings
from enforcement.models.database import Product
from enforcement.models.records import AIExtractedData
from enforcement.services.intelligence_engine import IntelligenceData
from enforcement.services.llm_client import LLMClient, LLMProviderError, LLMResponseFormatError

logger = logging.getLogger(__name__)

COST_PER_RESULT = 0.0002
INVALID_RESPONSE_REASON = "AI filter returned invalid response"
ERROR_REASON = "AI filter error, requires manual verification"
INFRINGEMENT_TYPES = ("piracy", "unauthorized_sale", "counterfeit", "unknown")

TAXONOMY_PROMPT = """You are an expert at identifying copyright infringement, piracy, and unauthorized distribution of digital products.

Your task is to analyze search results and determine if they COULD represent infringements. Results you approve will go to a human review queue and are NOT automatically actioned. When in doubt, lean toward flagging the result as a potential infringement and let the human decide.

LIKELY INFRINGEMENTS (flag these):
- Free downloads of paid content (torrents, direct downloads, file sharing)
- Cracked, nulled, or pirated versions
- Unauthorized redistribution on piracy sites
- Counterfeit copies or clones
- Unauthorized sales on unofficial platforms
- Leaked premium content
- Sites that aggregate or list the product alongside pirated content
- URLs on known piracy domains even if context is unclear

CLEAR FALSE POSITIVES (only filter these out):
- The product's own official website or authorized sales pages
- Major review sites (e.g., Trustpilot, G2, Capterra)
- News articles from established publications
- The product creator's own social media accounts
- Official documentation or help pages"""

RESPONSE_CONTRACT = """Respond ONLY with valid JSON in this exact format:
{
  "is_infringement": true or false,
  "confidence": 0.0 to 1.0,
  "reasoning": "brief explanation of your decision",
  "infringement_type": "piracy" | "unauthorized_sale" | "counterfeit" | "unknown" (only if is_infringement is true)
}"""


@dataclass
class SearchResult:
    source_url: str
    platform: str
    risk_level: str = "medium"
    audience_size: str | None = None
    title: str | None = None
    snippet: str | None = None


@dataclass
class FilterResult:
    is_infringement: bool
    confidence: float
    reasoning: str
    infringement_type: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ClassifiedResult:
    result: SearchResult
    analysis: FilterResult
    band: str  # pass | uncertain | filtered

    @property
    def passed(self) -> bool:
        return self.band != "filtered"

    def to_dict(self) -> dict:
        return {
            "result": asdict(self.result),
            "analysis": self.analysis.to_dict(),
            "band": self.band,
        }


@dataclass
class FilterReport:
    classified: list[ClassifiedResult] = field(default_factory=list)

    @property
    def passed(self) -> list[SearchResult]:
        return [item.result for item in self.classified if item.passed]

    def count(self, band: str) -> int:
        return sum(1 for item in self.classified if item.band == band)

    def to_dict(self) -> dict:
        return {
            "total": len(self.classified),
            "passed": self.count("pass"),
            "uncertain": self.count("uncertain"),
            "filtered": self.count("filtered"),
            "results": [item.to_dict() for item in self.classified],
        }


def classify_filter_result(
    analysis: FilterResult,
    min_confidence: float = 0.75,
    uncertain_floor: float = 0.50,
) -> str:
    """Place an analysis in the pass, uncertain or filtered band."""
    if analysis.is_infringement and analysis.confidence >= min_confidence:
        return "pass"
    if uncertain_floor <= analysis.confidence < min_confidence:
        return "uncertain"
    return "filtered"


def estimate_filtering_cost(result_count: int) -> float:
    """Approximate USD cost of filtering ``result_count`` results."""
    return round(result_count * COST_PER_RESULT, 6)


def conservative_default(reasoning: str) -> FilterResult:
    return FilterResult(is_infringement=True, confidence=0.5, reasoning=reasoning)


def parse_filter_response(data: dict) -> FilterResult | None:
    """Validate the LLM's JSON answer; None when it breaks the contract."""
    is_infringement = data.get("is_infringement")
    confidence = data.get("confidence")
    reasoning = data.get("reasoning")
    if not isinstance(is_infringement, bool):
        return None
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return None
    if not isinstance(reasoning, str):
        return None

    infringement_type = data.get("infringement_type")
    if infringement_type not in INFRINGEMENT_TYPES:
        infringement_type = None
    return FilterResult(
        is_infringement=is_infringement,
        confidence=min(max(float(confidence), 0.0), 1.0),
        reasoning=reasoning,
        infringement_type=infringement_type if is_infringement else None,
    )


def build_system_prompt(
    intelligence: IntelligenceData | None = None,
    examples: dict[str, list[str]] | None = None,
) -> str:
    prompt = TAXONOMY_PROMPT

    if intelligence is not None and intelligence.has_learning_data:
        lines = ["LEARNED INTELLIGENCE FROM USER FEEDBACK:"]
        learned = (
            ("Platforms with confirmed infringements", intelligence.verified_platforms),
            ("Hosting providers linked to infringements", intelligence.verified_hosting),
            ("Countries frequently hosting infringements", intelligence.verified_countries),
            ("Most reliable detection methods", intelligence.reliable_match_types),
            ("Domains frequently flagged as false positives", intelligence.false_positive_domains),
            ("Hosting providers frequently associated with false positives", intelligence.false_positive_hosting),
        )
        lines.extend(f"- {label}: {', '.join(values)}" for label, values in learned if values)
        prompt += "\n\n" + "\n".join(lines)

    examples = examples or {}
    verified = examples.get("verified_examples", [])[:5]
    false_positives = examples.get("false_positive_examples", [])[:5]
    if verified:
        prompt += "\n\nLEARNED EXAMPLES OF REAL INFRINGEMENTS (verified by user):"
        prompt += "".join(f"\n{i}. {example}" for i, example in enumerate(verified, start=1))
    if false_positives:
        prompt += "\n\nLEARNED EXAMPLES OF FALSE POSITIVES (rejected by user):"
        prompt += "".join(f"\n{i}. {example}" for i, example in enumerate(false_positives, start=1))

    return f"{prompt}\n\n{RESPONSE_CONTRACT}"


def build_product_context(product: Product) -> str:
    lines = ["PRODUCT INFORMATION:", f"- Name: {product.name}", f"- Type: {product.type or 'unknown'}"]
    if product.brand_name:
        lines.append(f"- Brand: {product.brand_name}")
    if product.description:
        lines.append(f"- Description: {product.description[:200]}...")
    if product.price:
        lines.append(f"- Price: ${product.price:g} (this is a PAID product, free downloads are infringements)")
    if product.url:
        lines.append(f"- Official URL: {product.url} (this is the ONLY authorized source)")

    ai_data = AIExtractedData.from_stored(product.ai_extracted_data)
    if ai_data.brand_identifiers:
        lines.append(f"- Brand Identifiers: {', '.join(ai_data.brand_identifiers)}")
    if ai_data.unique_phrases:
        quoted = '", "'.join(ai_data.unique_phrases[:3])
        lines.append(f'- Unique Marketing Phrases: "{quoted}"')
    if ai_data.copyrighted_terms:
        lines.append(f"- Copyrighted Terms: {', '.join(ai_data.copyrighted_terms)}")
    if product.keywords:
        lines.append(f"- Keywords: {', '.join(str(k) for k in product.keywords[:5])}")
    return "\n".join(lines)


def build_result_context(result: SearchResult) -> str:
    lines = [
        "SEARCH RESULT TO ANALYZE:",
        f"- Platform: {result.platform}",
        f"- URL: {result.source_url}",
        f"- Risk Level: {result.risk_level}",
        f"- Audience Size: {result.audience_size or 'unknown'}",
    ]
    if result.title:
        lines.append(f"- Page Title: {result.title}")
    if result.snippet:
        lines.append(f"- Search Snippet: {result.snippet}")
    lines.extend([
        "",
        "TASK: Determine if this URL represents an actual infringement of the product or a false positive.",
        "Consider the URL domain, page title, search snippet, the platform type, and the context clues.",
        "When in doubt, lean toward marking it as a potential infringement; the user will verify it manually.",
        "",
        "Respond with JSON only.",
    ])
    return "\n".join(lines)


class AIFilter:
    """Batch classifier for scan results."""

    def __init__(
        self,
        llm: LLMClient | None = None,
        min_confidence: float | None = None,
        uncertain_floor: float | None = None,
        batch_size: int | None = None,
        batch_delay_ms: int | None = None,
    ):
        settings = get_settings()
        self.llm = llm or LLMClient()
        self.min_confidence = min_confidence if min_confidence is not None else settings.ai_filter_min_confidence
        self.uncertain_floor = uncertain_floor if uncertain_floor is not None else settings.ai_filter_uncertain_floor
        self.batch_size = batch_size or settings.ai_filter_batch_size
        self.batch_delay_ms = batch_delay_ms if batch_delay_ms is not None else settings.ai_filter_batch_delay_ms

    async def filter_search_result(
        self,
        result: SearchResult,
        product: Product,
        intelligence: IntelligenceData | None = None,
        examples: dict[str, list[str]] | None = None,
    ) -> FilterResult:
        """Analyze one result. Never raises."""
        system_prompt = build_system_prompt(intelligence, examples)
        user_prompt = f"{build_product_context(product)}\n\n{build_result_context(result)}"

        try:
            data = await self.llm.complete_json(system_prompt, user_prompt, temperature=0.2, max_tokens=200)
        except LLMResponseFormatError as e:
            logger.warning(f"Malformed AI filter response for {result.source_url}: {e}")
            return conservative_default(INVALID_RESPONSE_REASON)
        except LLMProviderError as e:
            logger.error(f"AI filtering error for {result.source_url}: {e}")
            return conservative_default(ERROR_REASON)

        analysis = parse_filter_response(data)
        if analysis is None:
            logger.warning(f"Invalid AI filter response for {result.source_url}, defaulting: {data}")
            return conservative_default(INVALID_RESPONSE_REASON)
        return analysis

    async def filter_search_results(
        self,
        results: list[SearchResult],
        product: Product,
        intelligence: IntelligenceData | None = None,
        examples: dict[str, list[str]] | None = None,
    ) -> FilterReport:
        """Classify results in fixed-size chunks with a pause between chunks."""
        logger.info(f"AI filter analyzing {len(results)} results for product: {product.name}")
        report = FilterReport()

        for start in range(0, len(results), self.batch_size):
            batch = results[start:start + self.batch_size]
            analyses = await asyncio.gather(
                *(self.filter_search_result(result, product, intelligence, examples) for result in batch)
            )
            for result, analysis in zip(batch, analyses):
                band = classify_filter_result(analysis, self.min_confidence, self.uncertain_floor)
                report.classified.append(ClassifiedResult(result=result, analysis=analysis, band=band))
                logger.debug(
                    f"AI filter {band.upper()} ({analysis.confidence * 100:.0f}%): "
                    f"{result.source_url} - {analysis.reasoning}"
                )

            if start + self.batch_size < len(results) and self.batch_delay_ms:
                await asyncio.sleep(self.batch_delay_ms / 1000)

        if results:
            logger.info(
                f"AI filter results: {report.count('pass')} passed, {report.count('uncertain')} uncertain, "
                f"{report.count('filtered')} filtered"
            )
        return report
