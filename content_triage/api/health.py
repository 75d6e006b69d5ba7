"""
Health check endpoints.
/health always returns 200 so platform healthchecks pass while the
database is down; /health/ready reports whether requests can be served.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from content_triage.config import settings
from content_triage.dependencies import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(session: AsyncSession = Depends(get_db)):
    """
    Health check: verifies API is running and tests DB connectivity.
    ALWAYS returns 200, even if the DB is unreachable.
    """
    db_ok = False
    db_error = None
    try:
        result = await session.execute(text("SELECT 1"))
        db_ok = result.scalar() == 1
    except Exception as e:
        db_error = str(e)[:200]

    response = {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "llm_provider": settings.LLM_PROVIDER,
        "enrichment_execution": settings.ENRICHMENT_EXECUTION,
        "database": "connected" if db_ok else "unreachable",
    }
    if db_error:
        response["database_error"] = db_error

    return response


@router.get("/health/ready")
async def readiness_check(session: AsyncSession = Depends(get_db)):
    """Readiness probe: ready only when the database answers."""
    try:
        await session.execute(text("SELECT 1"))
        return {"ready": True}
    except Exception:
        return {"ready": False}
