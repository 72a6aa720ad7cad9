"""
Intelligence Engine

Learns from user verify/reject feedback to:
- Improve search queries (verified keywords, false positive domain exclusions)
- Enrich AI filter prompts (learned platforms, hosting, countries, match types)
- Track precision metrics per product
- Suggest tuning changes

Patterns are keyed by (product_id, pattern_type, pattern_value) and updated
with SQL-side increments, so concurrent feedback events merge their counts.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import Float, and_, case, cast, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enforcement.models.database import (
    AIPerformanceMetric,
    Infringement,
    LearningPattern,
    OptimizedQuery,
    Product,
)
from enforcement.models.records import EvidencePacket, InfrastructureSnapshot
from enforcement.services.keyword_quality import is_evidence_worthy
from enforcement.services.target_resolver import extract_host

logger = logging.getLogger(__name__)

PATTERN_TYPES = (
    "verified_keyword",
    "false_positive_domain",
    "verified_platform",
    "verified_hosting",
    "verified_country",
    "verified_match_type",
    "false_positive_hosting",
)

# (pattern_type, minimum confidence, max values kept)
SCAN_THRESHOLDS: dict[str, tuple[float, int | None]] = {
    "verified_keyword": (0.7, 5),
    "false_positive_domain": (0.6, None),
    "verified_platform": (0.6, None),
    "verified_hosting": (0.6, None),
    "verified_country": (0.6, None),
    "verified_match_type": (0.7, None),
    "false_positive_hosting": (0.6, None),
}

TOP_PATTERN_FLOOR = 0.5
TOP_PATTERN_LIMIT = 10
QUERY_KEYWORD_LIMIT = 2
QUERY_EXCLUDE_LIMIT = 3
SEARCH_ENGINE_PLATFORMS = ("google",)


@dataclass
class IntelligenceData:
    """Learned patterns handed to scanners and the AI filter."""
    verified_keywords: list[str] = field(default_factory=list)
    false_positive_domains: list[str] = field(default_factory=list)
    verified_platforms: list[str] = field(default_factory=list)
    verified_hosting: list[str] = field(default_factory=list)
    verified_countries: list[str] = field(default_factory=list)
    reliable_match_types: list[str] = field(default_factory=list)
    false_positive_hosting: list[str] = field(default_factory=list)

    @property
    def has_learning_data(self) -> bool:
        return bool(
            self.verified_keywords
            or self.false_positive_domains
            or self.verified_platforms
            or self.verified_hosting
        )

    def to_dict(self) -> dict:
        return {**asdict(self), "has_learning_data": self.has_learning_data}


@dataclass
class PerformanceMetrics:
    precision_rate: float = 0.0  # verified / (verified + false positives)
    total_detections: int = 0
    verified_infringements: int = 0
    false_positives: int = 0
    ai_pass_rate: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PatternHit:
    pattern_type: str
    pattern_value: str


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    return pg_insert if dialect == "postgresql" else sqlite_insert


def _feedback_keywords(infringement: Infringement, product: Product, evidence: EvidencePacket) -> list[str]:
    """Evidence-worthy terms that actually appear in the matched excerpts."""
    excerpt_text = " ".join(evidence.matched_excerpts).lower()
    if not excerpt_text:
        return []

    candidates = [product.name, *evidence.detection_metadata.matched_terms, *(product.keywords or [])]
    keywords = []
    seen = set()
    for term in candidates:
        if not isinstance(term, str):
            continue
        normalized = term.strip().lower()
        if not normalized or normalized in seen or normalized not in excerpt_text:
            continue
        if is_evidence_worthy(term, product.name, product.brand_name):
            keywords.append(normalized)
            seen.add(normalized)
    return keywords


def extract_feedback_patterns(
    infringement: Infringement,
    product: Product,
    action: str,
) -> tuple[list[PatternHit], list[PatternHit]]:
    """Split feedback into direct hits and opposite-polarity occurrences.

    Returns ``(hits, counter_hits)``. Hits are upserted with their hit
    counter incremented; counter hits only add an occurrence to an existing
    pattern of the opposite polarity, lowering its confidence.
    """
    evidence = EvidencePacket.from_stored(infringement.evidence)
    infrastructure = InfrastructureSnapshot.from_stored(infringement.infrastructure)
    domain = infringement.url_normalized or extract_host(infringement.source_url)
    hosting = infrastructure.hosting_provider
    country = infrastructure.country

    verified: list[PatternHit] = [
        PatternHit("verified_keyword", keyword)
        for keyword in _feedback_keywords(infringement, product, evidence)
    ]
    if infringement.platform:
        verified.append(PatternHit("verified_platform", infringement.platform))
    if hosting:
        verified.append(PatternHit("verified_hosting", hosting))
    if country:
        verified.append(PatternHit("verified_country", country))
    if infringement.match_type:
        verified.append(PatternHit("verified_match_type", infringement.match_type))

    rejected: list[PatternHit] = []
    if domain:
        rejected.append(PatternHit("false_positive_domain", domain))
    if hosting:
        rejected.append(PatternHit("false_positive_hosting", hosting))

    if action == "verify":
        return verified, rejected
    return rejected, verified


class IntelligenceEngine:
    """Pattern learning, query optimization and metrics for one product."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def learn_from_feedback(self, infringement_id: UUID, action: str) -> int:
        """Record patterns from a verify/reject decision.

        Never raises; returns the number of patterns touched (0 on failure).
        """
        if action not in ("verify", "reject"):
            logger.warning(f"Ignoring feedback with unknown action '{action}'")
            return 0

        try:
            infringement = await self.db.get(Infringement, infringement_id)
            if infringement is None:
                return 0
            product = await self.db.get(Product, infringement.product_id)
            if product is None:
                return 0

            hits, counter_hits = extract_feedback_patterns(infringement, product, action)
            for hit in hits:
                await self._upsert_hit(infringement, hit)
            for hit in counter_hits:
                await self._add_occurrence(infringement.product_id, hit)
            await self.db.commit()
        except Exception as e:
            logger.error(f"Error learning from {action} on infringement {infringement_id}: {e}")
            await self.db.rollback()
            return 0

        logger.info(
            f"Learned from {action} on infringement {infringement_id}: "
            f"{len(hits)} patterns, {len(counter_hits)} counter-patterns"
        )
        return len(hits) + len(counter_hits)

    async def _upsert_hit(self, infringement: Infringement, hit: PatternHit) -> None:
        table = LearningPattern.__table__
        is_verified = hit.pattern_type.startswith("verified_")
        verified_inc = 1 if is_verified else 0
        rejected_inc = 0 if is_verified else 1
        hits_column = table.c.verified_count if is_verified else table.c.rejected_count
        now = datetime.utcnow()

        stmt = _insert_for(self.db)(table).values(
            id=uuid4(),
            product_id=infringement.product_id,
            user_id=infringement.user_id,
            pattern_type=hit.pattern_type,
            pattern_value=hit.pattern_value,
            platform=infringement.platform,
            occurrences=1,
            verified_count=verified_inc,
            rejected_count=rejected_inc,
            confidence_score=1.0,
            first_seen_at=now,
            last_seen_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["product_id", "pattern_type", "pattern_value"],
            set_={
                "occurrences": table.c.occurrences + 1,
                "verified_count": table.c.verified_count + verified_inc,
                "rejected_count": table.c.rejected_count + rejected_inc,
                "confidence_score": cast(hits_column + 1, Float) / (table.c.occurrences + 1),
                "last_seen_at": now,
            },
        )
        await self.db.execute(stmt)

    async def _add_occurrence(self, product_id: UUID, hit: PatternHit) -> None:
        hits_column = (
            LearningPattern.verified_count
            if hit.pattern_type.startswith("verified_")
            else LearningPattern.rejected_count
        )
        await self.db.execute(
            update(LearningPattern)
            .where(
                LearningPattern.product_id == product_id,
                LearningPattern.pattern_type == hit.pattern_type,
                LearningPattern.pattern_value == hit.pattern_value,
            )
            .values(
                occurrences=LearningPattern.occurrences + 1,
                confidence_score=cast(hits_column, Float) / (LearningPattern.occurrences + 1),
                last_seen_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def get_top_patterns(
        self,
        product_id: UUID,
        pattern_type: str,
        limit: int = TOP_PATTERN_LIMIT,
    ) -> list[LearningPattern]:
        """Patterns agreeing with their polarity more than half the time."""
        return await _top_patterns(self.db, product_id, pattern_type, limit)

    async def optimize_search_query(self, product: Product, platform: str, base_query: str) -> str:
        """Add verified keywords and exclude false positive domains."""
        keywords = [
            pattern.pattern_value
            for pattern in await self.get_top_patterns(product.id, "verified_keyword", 5)
            if pattern.confidence_score > 0.7 and pattern.pattern_value.lower() not in base_query.lower()
        ][:QUERY_KEYWORD_LIMIT]

        excluded: list[str] = []
        if platform in SEARCH_ENGINE_PLATFORMS:
            excluded = [
                pattern.pattern_value
                for pattern in await self.get_top_patterns(product.id, "false_positive_domain", 5)
                if pattern.confidence_score > 0.6
            ][:QUERY_EXCLUDE_LIMIT]

        optimized = base_query
        if keywords:
            optimized = f"{optimized} {' '.join(keywords)}"
        if excluded:
            optimized = f"{optimized} {' '.join(f'-site:{domain}' for domain in excluded)}"

        if optimized != base_query:
            self.db.add(OptimizedQuery(
                product_id=product.id,
                platform=platform,
                base_query=base_query,
                optimized_query=optimized,
                optimization_reason=(
                    f"Added {len(keywords)} verified keywords, "
                    f"excluded {len(excluded)} false positive domains"
                ),
            ))
            await self.db.commit()
            logger.info(f"Optimized query for {platform}: '{base_query}' -> '{optimized}'")

        return optimized

    async def get_ai_prompt_examples(self, product_id: UUID) -> dict[str, list[str]]:
        """Few-shot examples from the product's own verified and rejected history."""
        verified = await self.db.execute(
            select(Infringement)
            .where(
                Infringement.product_id == product_id,
                Infringement.status == "active",
                Infringement.verified_by_user_at.is_not(None),
            )
            .order_by(Infringement.severity_score.desc())
            .limit(5)
        )
        false_positives = await self.db.execute(
            select(Infringement)
            .where(Infringement.product_id == product_id, Infringement.status == "false_positive")
            .order_by(Infringement.updated_at.desc())
            .limit(5)
        )
        return {
            "verified_examples": [format_example(i, False) for i in verified.scalars().all()],
            "false_positive_examples": [format_example(i, True) for i in false_positives.scalars().all()],
        }

    async def calculate_performance_metrics(self, product_id: UUID) -> PerformanceMetrics:
        is_verified = and_(Infringement.status == "active", Infringement.verified_by_user_at.is_not(None))
        result = await self.db.execute(
            select(
                func.count(Infringement.id),
                func.sum(case((is_verified, 1), else_=0)),
                func.sum(case((Infringement.status == "false_positive", 1), else_=0)),
            ).where(Infringement.product_id == product_id)
        )
        total, verified, false_positives = result.one()
        total = int(total or 0)
        verified = int(verified or 0)
        false_positives = int(false_positives or 0)
        if total == 0:
            return PerformanceMetrics()

        reviewed = verified + false_positives
        return PerformanceMetrics(
            precision_rate=verified / reviewed if reviewed else 0.0,
            total_detections=total,
            verified_infringements=verified,
            false_positives=false_positives,
            ai_pass_rate=verified / total,
        )

    async def record_daily_metrics(
        self,
        product_id: UUID,
        user_id: UUID,
        metrics: PerformanceMetrics,
        day: date | None = None,
    ) -> None:
        """Upsert the metrics row for ``day`` (today by default)."""
        table = AIPerformanceMetric.__table__
        values = {
            "total_detections": metrics.total_detections,
            "verified_infringements": metrics.verified_infringements,
            "false_positives": metrics.false_positives,
            "precision_rate": metrics.precision_rate,
            "ai_pass_rate": metrics.ai_pass_rate,
        }
        stmt = _insert_for(self.db)(table).values(
            id=uuid4(),
            product_id=product_id,
            user_id=user_id,
            date=day or datetime.utcnow().date(),
            **values,
        )
        stmt = stmt.on_conflict_do_update(index_elements=["product_id", "date"], set_=values)
        await self.db.execute(stmt)
        await self.db.commit()
        logger.info(
            f"Recorded metrics for product {product_id}: precision {metrics.precision_rate * 100:.1f}%"
        )

    async def get_suggested_improvements(self, product_id: UUID) -> list[str]:
        metrics = await self.calculate_performance_metrics(product_id)
        return suggest_improvements(metrics)


def suggest_improvements(metrics: PerformanceMetrics) -> list[str]:
    suggestions = []
    if metrics.precision_rate < 0.5 and metrics.false_positives > 5:
        suggestions.append(
            f"Precision is low ({metrics.precision_rate * 100:.0f}%). Consider increasing the AI "
            "confidence threshold or adding more specific keywords."
        )
    if metrics.precision_rate > 0.8:
        suggestions.append(
            f"Excellent precision ({metrics.precision_rate * 100:.0f}%). Your filters are working well."
        )
    if metrics.total_detections < 10 and metrics.verified_infringements < 3:
        suggestions.append("Low detection count. Consider adding more keywords or enabling more platforms.")
    return suggestions


def format_example(infringement: Infringement, is_false_positive: bool) -> str:
    """One-line description of a past decision for few-shot prompting."""
    parts = [f"URL: {infringement.source_url}"]
    if infringement.platform:
        parts.append(f"Platform: {infringement.platform}")
    if infringement.severity_score:
        parts.append(f"Severity: {infringement.severity_score}/100")
    if infringement.match_type:
        parts.append(f"Match: {infringement.match_type}")
    if infringement.match_confidence:
        parts.append(f"Confidence: {infringement.match_confidence * 100:.0f}%")

    infrastructure = InfrastructureSnapshot.from_stored(infringement.infrastructure)
    if infrastructure.hosting_provider:
        parts.append(f"Hosting: {infrastructure.hosting_provider}")
    if infrastructure.country:
        parts.append(f"Country: {infrastructure.country}")
    if infringement.monetization_detected:
        parts.append("Monetized: yes")

    excerpts = EvidencePacket.from_stored(infringement.evidence).matched_excerpts
    if excerpts:
        parts.append(f"Contains: {', '.join(excerpts)}")
    if is_false_positive:
        parts.append("(NOT an infringement)")
    return " | ".join(parts)


async def _top_patterns(
    session: AsyncSession,
    product_id: UUID,
    pattern_type: str,
    limit: int = TOP_PATTERN_LIMIT,
) -> list[LearningPattern]:
    result = await session.execute(
        select(LearningPattern)
        .where(
            LearningPattern.product_id == product_id,
            LearningPattern.pattern_type == pattern_type,
            LearningPattern.confidence_score > TOP_PATTERN_FLOOR,
        )
        .order_by(LearningPattern.confidence_score.desc(), LearningPattern.occurrences.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def fetch_intelligence_for_scan(
    session_factory: async_sessionmaker[AsyncSession],
    product_id: UUID,
) -> IntelligenceData:
    """Load all pattern types concurrently. Never raises.

    Call once before a scan and pass the result to every platform scanner
    and the AI filter.
    """

    async def load(pattern_type: str) -> list[str]:
        min_confidence, keep = SCAN_THRESHOLDS[pattern_type]
        async with session_factory() as session:
            patterns = await _top_patterns(session, product_id, pattern_type)
        values = [p.pattern_value for p in patterns if p.confidence_score > min_confidence]
        return values[:keep] if keep else values

    try:
        results = await asyncio.gather(*(load(pattern_type) for pattern_type in PATTERN_TYPES))
    except Exception as e:
        logger.warning(f"Failed to fetch intelligence data for product {product_id} (non-blocking): {e}")
        return IntelligenceData()

    loaded = dict(zip(PATTERN_TYPES, results))
    data = IntelligenceData(
        verified_keywords=loaded["verified_keyword"],
        false_positive_domains=loaded["false_positive_domain"],
        verified_platforms=loaded["verified_platform"],
        verified_hosting=loaded["verified_hosting"],
        verified_countries=loaded["verified_country"],
        reliable_match_types=loaded["verified_match_type"],
        false_positive_hosting=loaded["false_positive_hosting"],
    )
    if data.has_learning_data:
        logger.info(
            f"Loaded scan intelligence for product {product_id}: "
            f"{len(data.verified_keywords)} keywords, {len(data.false_positive_domains)} FP domains, "
            f"{len(data.verified_platforms)} platforms, {len(data.verified_hosting)} hosting"
        )
    return data


async def process_feedback(
    session_factory: async_sessionmaker[AsyncSession],
    infringement_id: UUID,
    product_id: UUID,
    user_id: UUID,
    action: str,
) -> PerformanceMetrics:
    """Learn from one decision and refresh today's metrics, in a session of its own."""
    async with session_factory() as session:
        engine = IntelligenceEngine(session)
        await engine.learn_from_feedback(infringement_id, action)
        metrics = await engine.calculate_performance_metrics(product_id)
        await engine.record_daily_metrics(product_id, user_id, metrics)

    logger.info(
        f"Learned from {action} action. Current precision: {metrics.precision_rate * 100:.1f}%"
    )
    return metrics
