"""
Intelligence Router

Learned patterns, performance metrics, query optimization and AI filtering
for a product.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enforcement.database import get_db, get_session_factory
from enforcement.dependencies import get_current_user_id, get_system_log_writer
from enforcement.models.database import Product
from enforcement.models.schemas import FilterRequest, OptimizeQueryRequest, OptimizeQueryResponse
from enforcement.services.ai_filter import AIFilter, SearchResult, estimate_filtering_cost
from enforcement.services.intelligence_engine import IntelligenceEngine, fetch_intelligence_for_scan
from enforcement.services.system_log import SystemLogWriter

logger = logging.getLogger(__name__)

router = APIRouter()


def get_ai_filter() -> AIFilter:
    return AIFilter()


async def _owned_product(db: AsyncSession, product_id: UUID, user_id: UUID) -> Product:
    product = await db.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    if product.user_id != user_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return product


@router.get("/{product_id}")
async def get_intelligence(
    product_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Learned intelligence, current metrics and tuning suggestions."""
    await _owned_product(db, product_id, user_id)
    engine = IntelligenceEngine(db)

    intelligence = await fetch_intelligence_for_scan(session_factory, product_id)
    metrics = await engine.calculate_performance_metrics(product_id)
    return {
        "intelligence": intelligence.to_dict(),
        "metrics": metrics.to_dict(),
        "suggestions": await engine.get_suggested_improvements(product_id),
    }


@router.post("/{product_id}/optimize-query", response_model=OptimizeQueryResponse)
async def optimize_query(
    product_id: UUID,
    request: OptimizeQueryRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Rewrite a search query with learned keywords and exclusions."""
    product = await _owned_product(db, product_id, user_id)
    optimized = await IntelligenceEngine(db).optimize_search_query(product, request.platform, request.base_query)
    return OptimizeQueryResponse(
        platform=request.platform,
        base_query=request.base_query,
        optimized_query=optimized,
    )


@router.post("/{product_id}/filter")
async def filter_results(
    product_id: UUID,
    request: FilterRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ai_filter: AIFilter = Depends(get_ai_filter),
    system_log: SystemLogWriter = Depends(get_system_log_writer),
):
    """Classify candidate scan results into pass, uncertain and filtered."""
    product = await _owned_product(db, product_id, user_id)
    if not ai_filter.llm.configured:
        raise HTTPException(
            status_code=503,
            detail={"error": "AI filter is not configured", "hint": "Set OPENAI_API_KEY"},
        )

    intelligence = await fetch_intelligence_for_scan(session_factory, product_id)
    examples = await IntelligenceEngine(db).get_ai_prompt_examples(product_id)
    results = [SearchResult(**result.model_dump()) for result in request.results]

    report = await system_log.track(
        "ai_filter",
        ai_filter.filter_search_results(results, product, intelligence, examples),
        source="scan",
        user_id=user_id,
        product_id=product_id,
        context={"result_count": len(results)},
    )
    return {**report.to_dict(), "estimated_cost": estimate_filtering_cost(len(results))}
