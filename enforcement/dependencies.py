"""Shared FastAPI dependencies: caller identity, cron auth and per-request services."""

import hmac
import logging
from collections.abc import AsyncGenerator
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enforcement.config import get_settings
from enforcement.database import get_session_factory
from enforcement.services.crm_tracker import CRMTracker
from enforcement.services.system_log import DatabaseLogSink, SystemLogWriter
from enforcement.services.task_dispatcher import TaskDispatcher

logger = logging.getLogger(__name__)

PLACEHOLDER_CRON_SECRETS = {"", "changeme", "changeme_generate_random_secret"}


async def get_current_user_id(x_user_id: str | None = Header(None)) -> UUID:
    """Identity asserted by the upstream auth layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Unauthorized")


async def verify_cron_secret(x_cron_secret: str | None = Header(None)) -> None:
    """Constant-time check of the shared secret used by internal triggers.

    Triggers are refused outright while no real secret is configured.
    """
    expected = get_settings().cron_secret
    if expected.strip() in PLACEHOLDER_CRON_SECRETS:
        logger.error("CRON_SECRET is not configured, refusing internal trigger")
        raise HTTPException(status_code=503, detail="Cron secret not configured")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_dispatcher(request: Request) -> TaskDispatcher:
    return request.app.state.dispatcher


def get_crm_tracker() -> CRMTracker:
    return CRMTracker()


async def get_system_log_writer(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[SystemLogWriter, None]:
    """One writer per request, flushed when the request ends."""
    writer = SystemLogWriter(DatabaseLogSink(session_factory), get_settings().system_log_buffer_size)
    try:
        yield writer
    finally:
        await writer.flush()
