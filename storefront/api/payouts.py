"""Seller payout requests and the PayPal Payouts webhook."""

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.auth import get_current_user_id
from storefront.core.exceptions import InvalidRequestError
from storefront.database import get_db
from storefront.schemas.payout import PayoutRequestCreate
from storefront.services import payout_service

router = APIRouter(prefix="/payouts", tags=["payouts"])


@router.post("/request")
async def request_payout(
    req: PayoutRequestCreate,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await payout_service.request_payout(db, user_id, req.amount)


@router.get("")
async def list_my_payouts(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return {"payouts": await payout_service.list_payouts(db, user_id)}


@router.post("/paypal-webhook")
async def paypal_payout_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    try:
        event = await request.json()
    except json.JSONDecodeError:
        raise InvalidRequestError("Invalid JSON payload")
    if not isinstance(event, dict):
        raise InvalidRequestError("Invalid JSON payload")

    headers = {k.lower(): v for k, v in request.headers.items()}
    status_code, body = await payout_service.handle_payout_webhook(db, event, headers)
    return JSONResponse(status_code=status_code, content=body)
