"""Email verification endpoints."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.auth import get_current_user_id
from storefront.database import get_db
from storefront.services import verification_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/send-verification")
async def send_verification(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await verification_service.send_verification(db, user_id)


@router.get("/verify-email")
async def verify_email(
    token: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    error = await verification_service.verify_email(db, token)
    if error:
        return RedirectResponse(f"{settings.site_url}/auth/verify-email?error={error}", status_code=302)
    return RedirectResponse(f"{settings.site_url}/auth/verify-email?success=true", status_code=302)
