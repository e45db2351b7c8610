"""Scheduled job endpoints, called by the platform scheduler."""

import hmac
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.exceptions import UnauthorizedError, UpstreamError
from storefront.database import get_db
from storefront.services import escrow_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    secret = settings.cron_secret
    if not secret:
        if settings.is_production:
            logger.error("CRON_SECRET is not configured; refusing to run scheduled job")
            raise UpstreamError("Server misconfiguration")
        logger.warning("CRON_SECRET is not configured; skipping scheduler authentication")
        return
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise UnauthorizedError("Unauthorized")


@router.get("/release-escrow", dependencies=[Depends(verify_cron_secret)])
async def release_escrow(db: AsyncSession = Depends(get_db)):
    try:
        result = await escrow_service.release_matured_escrow(db)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Escrow release failed")
        raise UpstreamError("Failed to release escrow funds")

    logger.info(
        "Escrow release: %d records, $%.2f released",
        result["records_processed"], result["total_amount_released"],
    )
    return {
        "success": True,
        "records_processed": result["records_processed"],
        "total_amount_released": result["total_amount_released"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
