from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.auth import get_current_user_id
from storefront.database import get_db
from storefront.schemas.receipt import ReceiptResendRequest, ReceiptVerifyRequest
from storefront.services import receipt_service

router = APIRouter(prefix="/receipt", tags=["receipts"])


@router.post("/verify")
async def verify_receipt(req: ReceiptVerifyRequest, db: AsyncSession = Depends(get_db)):
    """Exchange a receipt token plus buyer email for a short receipt session."""
    token = await receipt_service.verify_receipt(db, req.token, req.email)
    response = JSONResponse(content={"success": True})
    response.set_cookie(
        key=receipt_service.RECEIPT_COOKIE,
        value=token,
        max_age=settings.receipt_session_minutes * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    return response


@router.post("/resend")
async def resend_receipt(
    req: ReceiptResendRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await receipt_service.resend_receipt(db, user_id, req.order_id)
