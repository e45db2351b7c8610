"""Guest receipt access, receipt resends, and download authorization."""
import logging
import math

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.exceptions import (
    InvalidRequestError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
)
from storefront.core.timeutil import as_utc, utcnow
from storefront.models.order import Order, OrderItem
from storefront.models.product import Product
from storefront.services import email_service
from storefront.services.storage_service import create_signed_download_url

logger = logging.getLogger(__name__)

RECEIPT_COOKIE = "receipt_session"
_INVALID = "Invalid verification"


def _normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def _token_live(order: Order) -> bool:
    expires_at = as_utc(order.receipt_token_expires_at)
    return expires_at is None or expires_at > utcnow()


async def verify_receipt(db: AsyncSession, token: str | None, email: str | None) -> str:
    """Check a guest's receipt token against the buyer email. Returns the token.

    Unknown token, wrong email and expired token share one message.
    """
    if not token or not email:
        raise InvalidRequestError("Token and email are required")

    order = (await db.execute(
        select(Order).where(Order.receipt_token == token)
    )).scalar_one_or_none()
    if order is None:
        raise UnauthorizedError(_INVALID)
    if _normalize_email(email) != _normalize_email(order.buyer_email):
        raise UnauthorizedError(_INVALID)
    if not _token_live(order):
        raise UnauthorizedError(_INVALID)
    return token


async def resend_receipt(db: AsyncSession, user_id: str, order_id: str | None) -> dict:
    if not order_id:
        raise InvalidRequestError("Order ID is required")

    order = (await db.execute(
        select(Order).where(Order.id == order_id, Order.user_id == user_id)
    )).scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order not found")

    now = utcnow()
    last_sent = as_utc(order.last_receipt_sent_at)
    cooldown = settings.receipt_resend_cooldown_seconds
    if last_sent is not None:
        elapsed = (now - last_sent).total_seconds()
        if elapsed < cooldown:
            wait_seconds = math.ceil(cooldown - elapsed)
            raise RateLimitedError("Please wait before resending receipt", wait_seconds)

    # Conditional on the stamp we read so concurrent resends send once
    stamped = await db.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.last_receipt_sent_at.is_(None)
            if order.last_receipt_sent_at is None
            else Order.last_receipt_sent_at == order.last_receipt_sent_at,
        )
        .values(last_receipt_sent_at=now, receipt_send_count=Order.receipt_send_count + 1)
        .execution_options(synchronize_session=False)
    )
    if stamped.rowcount != 1:
        await db.rollback()
        raise RateLimitedError("Please wait before resending receipt", cooldown)
    await db.commit()

    if order.buyer_email and order.receipt_token:
        rows = (await db.execute(
            select(OrderItem, Product.title)
            .join(Product, Product.id == OrderItem.product_id)
            .where(OrderItem.order_id == order.id)
        )).all()
        email_service.send_in_background(
            f"receipt_resend_{order.id}",
            email_service.send_receipt_email,
            order_id=order.id,
            to=order.buyer_email,
            buyer_name=order.buyer_name or order.buyer_email,
            items=[{"title": title, "price": item.line_total} for item, title in rows],
            total=order.total_amount,
            receipt_token=order.receipt_token,
        )
    logger.info("Receipt resend queued for order %s", order.id)
    return {"success": True}


async def resolve_download(
    db: AsyncSession,
    order_id: str,
    product_id: str | None,
    *,
    user_id: str | None = None,
    receipt_token: str | None = None,
) -> str:
    """Authorize a download and return a signed URL for the product file.

    A signed-in buyer must own the order. Otherwise a live receipt token
    (query parameter or receipt_session cookie) must match the order.
    """
    if not product_id:
        raise InvalidRequestError("Missing required parameters")

    query = select(Order).where(Order.id == order_id, Order.payment_status == "completed")
    if user_id:
        query = query.where(Order.user_id == user_id)
    elif receipt_token:
        query = query.where(Order.receipt_token == receipt_token)
    else:
        raise UnauthorizedError("Unauthorized")

    order = (await db.execute(query)).scalar_one_or_none()
    if order is None or (not user_id and not _token_live(order)):
        raise NotFoundError("Order not found or access denied")

    row = (await db.execute(
        select(OrderItem, Product)
        .join(Product, Product.id == OrderItem.product_id)
        .where(OrderItem.order_id == order.id, OrderItem.product_id == product_id)
    )).first()
    if row is None:
        raise NotFoundError("Product not found in order")
    _, product = row
    if not product.file_path:
        raise NotFoundError("No downloadable file available")

    logger.info("Download authorized: order=%s product=%s", order.id, product.id)
    return create_signed_download_url(product.file_path)
