"""Health check router."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from enforcement.database import get_db

router = APIRouter()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Check API and database health."""
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database": db_status,
        "version": "0.1.0",
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """Check if the API is ready to receive traffic."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return {
        "ready": dispatcher is not None,
        "jobs": dispatcher.job_names if dispatcher is not None else [],
    }
