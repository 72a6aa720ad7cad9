"""Cron-triggered maintenance jobs."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enforcement.database import get_db, get_session_factory
from enforcement.dependencies import get_system_log_writer, verify_cron_secret
from enforcement.services.keyword_refresh import KeywordRefreshService
from enforcement.services.llm_client import LLMClient
from enforcement.services.system_log import SystemLogWriter
from enforcement.services.timestamp_service import TimestampService

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


def get_timestamp_service() -> TimestampService:
    return TimestampService()


def get_llm_client() -> LLMClient:
    return LLMClient()


async def upgrade_timestamps(
    session_factory: async_sessionmaker[AsyncSession],
    timestamp_service: TimestampService | None = None,
) -> dict:
    """Upgrade pending snapshot proofs in a session of their own."""
    service = timestamp_service or TimestampService()
    async with session_factory() as session:
        stats = await service.upgrade_pending_snapshots(session)
        await session.commit()
    return stats


@router.post("/upgrade-timestamps")
async def run_timestamp_upgrade(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    timestamp_service: TimestampService = Depends(get_timestamp_service),
    system_log: SystemLogWriter = Depends(get_system_log_writer),
):
    """Upgrade pending OpenTimestamps proofs to Bitcoin-confirmed proofs."""
    stats = await system_log.track(
        "upgrade_timestamps", upgrade_timestamps(session_factory, timestamp_service), source="cron"
    )
    return {"available": timestamp_service.available, **stats}


@router.post("/refresh-keywords/{product_id}")
async def refresh_keywords(
    product_id: UUID,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    llm: LLMClient = Depends(get_llm_client),
    system_log: SystemLogWriter = Depends(get_system_log_writer),
):
    """Regenerate piracy keywords for a product from accumulated feedback."""
    service = KeywordRefreshService(db, session_factory, llm=llm)
    result = await system_log.track(
        "refresh_keywords", service.refresh(product_id), source="cron", product_id=product_id
    )
    if not result.refreshed and result.reason == "Product not found":
        raise HTTPException(status_code=404, detail="Product not found")
    return result.to_dict()
