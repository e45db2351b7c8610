import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.services.cache_service import dashboard_cache

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

_VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": _VERSION,
        "cache_stats": dashboard_cache.stats(),
    }


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Readiness check: verifies DB connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "ready", "database": "connected"}
    except Exception:
        logger.exception("Readiness check failed: database unreachable")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "database": "unavailable"},
        )
