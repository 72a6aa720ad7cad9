"""Enforcement API - Evidence, notice and takedown dispatch pipeline."""

import logging
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from enforcement.config import get_settings
from enforcement.database import async_session_factory
from enforcement.routers import dmca, health, infringements, intelligence, jobs
from enforcement.services.bulk_queue_service import run_queue_cycle
from enforcement.services.task_dispatcher import TaskDispatcher

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.api_log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_dispatcher() -> TaskDispatcher:
    """Register the background jobs and their polling intervals."""
    dispatcher = TaskDispatcher()
    dispatcher.register(dmca.PROCESS_QUEUE_JOB, partial(run_queue_cycle, async_session_factory))
    dispatcher.register("upgrade_timestamps", partial(jobs.upgrade_timestamps, async_session_factory))
    dispatcher.schedule_every(dmca.PROCESS_QUEUE_JOB, settings.queue_poll_interval_seconds)
    dispatcher.schedule_every("upgrade_timestamps", settings.timestamp_upgrade_interval_seconds)
    return dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Enforcement API...")
    app.state.dispatcher = build_dispatcher()
    await app.state.dispatcher.start()
    yield
    logger.info("Shutting down Enforcement API...")
    await app.state.dispatcher.stop()


app = FastAPI(
    title="Enforcement",
    description="Evidence collection, DMCA notice generation and takedown dispatch",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(dmca.router, prefix="/api/dmca", tags=["DMCA"])
app.include_router(infringements.router, prefix="/api/infringements", tags=["Infringements"])
app.include_router(intelligence.router, prefix="/api/intelligence", tags=["Intelligence"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Enforcement",
        "version": "0.1.0",
        "description": "Evidence collection, DMCA notice generation and takedown dispatch",
    }
