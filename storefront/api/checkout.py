"""PayPal checkout: order creation, capture, and the checkout webhook."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.auth import get_current_user_id
from storefront.core.exceptions import InvalidRequestError
from storefront.database import get_db
from storefront.schemas.checkout import CaptureOrderRequest, CreateOrderRequest
from storefront.services import order_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/paypal", tags=["checkout"])


@router.post("/create-order")
async def create_order(req: CreateOrderRequest, db: AsyncSession = Depends(get_db)):
    return await order_service.create_checkout(db, [item.as_line_item() for item in req.items])


@router.post("/capture-order")
async def capture_order(
    req: CaptureOrderRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await order_service.capture_order(
        db, user_id, req.order_id, [item.as_line_item() for item in req.items],
    )


@router.post("/checkout-webhook")
async def checkout_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    try:
        event = await request.json()
    except json.JSONDecodeError:
        raise InvalidRequestError("Invalid JSON payload")
    if not isinstance(event, dict):
        raise InvalidRequestError("Invalid JSON payload")

    headers = {k.lower(): v for k, v in request.headers.items()}
    status_code, body = await order_service.handle_checkout_webhook(db, event, headers)
    return JSONResponse(status_code=status_code, content=body)
