"""Order capture: checkout creation, PayPal capture, and escrow fulfillment.

The capture path never writes before PayPal confirms the payment, and the
order, its items and the escrow credit commit together. Receipt and sale
notifications run after the commit and never fail the request.
"""
import json
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.exceptions import (
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    PaymentNotCompletedError,
    UpstreamError,
)
from storefront.core.timeutil import utcnow
from storefront.models.escrow import EscrowEntry
from storefront.models.logs import WebhookLog
from storefront.models.order import Order, OrderItem
from storefront.models.product import LICENSE_TYPES, Product
from storefront.models.seller import Seller
from storefront.models.user import User
from storefront.services import email_service
from storefront.services.audit_service import log_admin_action
from storefront.services.cache_service import dashboard_cache, invalidate_buyer_dashboard
from storefront.services.escrow_service import reverse_order_escrow
from storefront.services.paypal_service import PayPalError, get_paypal_client

logger = logging.getLogger(__name__)

_is_sqlite = settings.database_url.startswith("sqlite")
_CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass
class PricedItem:
    product: Product
    license_type: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class FulfillResult:
    ok: bool
    idempotent: bool = False
    reason: str | None = None  # order_not_found | missing_capture | capture_mismatch
    entries_created: int = 0


def new_receipt_token() -> str:
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Price validation
# ---------------------------------------------------------------------------

async def resolve_line_items(db: AsyncSession, items: list[dict]) -> list[PricedItem]:
    """Re-derive every unit price from the product catalog.

    Client-supplied prices are ignored; a mismatch is only logged.
    """
    if not items:
        raise InvalidRequestError("No items in cart")

    product_ids = {item.get("product_id") for item in items}
    result = await db.execute(select(Product).where(Product.id.in_(product_ids)))
    products = {p.id: p for p in result.scalars().all()}

    priced: list[PricedItem] = []
    for item in items:
        license_type = item.get("license_type") or "personal"
        if license_type not in LICENSE_TYPES:
            raise InvalidRequestError(f"Invalid license type: {license_type}")
        quantity = item.get("quantity")
        if quantity is None:
            quantity = 1
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise InvalidRequestError("Quantity must be at least 1")

        product = products.get(item.get("product_id"))
        if product is None or product.status != "published":
            raise InvalidRequestError("Product not available")

        unit_price = _money(product.price_for(license_type))
        client_price = item.get("price")
        if client_price is not None and _money(client_price) != unit_price:
            logger.warning(
                "Client price mismatch: product=%s license=%s client=%s server=%s",
                product.id, license_type, client_price, unit_price,
            )
        priced.append(PricedItem(product, license_type, quantity, unit_price))
    return priced


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

async def create_checkout(db: AsyncSession, items: list[dict]) -> dict:
    """Create a PayPal order for the server-computed cart total."""
    priced = await resolve_line_items(db, items)
    total = sum((p.line_total for p in priced), Decimal("0"))

    try:
        paypal_order_id = await get_paypal_client().create_order(
            total,
            [
                {
                    "name": p.product.title,
                    "quantity": p.quantity,
                    "unit_price": p.unit_price,
                    "license_type": p.license_type,
                }
                for p in priced
            ],
        )
    except PayPalError as exc:
        logger.error("PayPal order creation failed: %s", exc)
        raise UpstreamError("Failed to create PayPal order")

    logger.info("Checkout created: paypal_order=%s total=%s items=%d", paypal_order_id, total, len(priced))
    return {"orderId": paypal_order_id}


async def capture_order(
    db: AsyncSession,
    user_id: str,
    external_order_id: str | None,
    line_items: list[dict] | None,
) -> dict:
    """Capture an approved PayPal order and record it with its escrow credit."""
    if not external_order_id or not line_items:
        raise InvalidRequestError("Missing required fields")

    buyer = await db.get(User, user_id)
    if buyer is None:
        raise NotFoundError("User profile not found")

    priced = await resolve_line_items(db, line_items)

    try:
        capture = await get_paypal_client().capture_order(external_order_id)
    except PayPalError as exc:
        logger.error("PayPal capture failed: order=%s error=%s", external_order_id, exc)
        raise PaymentNotCompletedError()
    if not capture.completed:
        logger.error("Payment not completed: order=%s status=%s", external_order_id, capture.status)
        raise PaymentNotCompletedError()

    capture_id = capture.capture_id or external_order_id
    total = sum((p.line_total for p in priced), Decimal("0"))
    if capture.amount is not None and capture.amount != total:
        logger.warning("Captured amount differs from cart: order=%s captured=%s cart=%s",
                       external_order_id, capture.amount, total)

    now = utcnow()
    order = Order(
        id=str(uuid.uuid4()),
        user_id=buyer.id,
        buyer_email=buyer.email,
        buyer_name=buyer.full_name,
        total_amount=total,
        payment_status="completed",
        paypal_order_id=external_order_id,
        receipt_token=new_receipt_token(),
        receipt_token_expires_at=now + timedelta(days=settings.receipt_token_ttl_days),
        last_receipt_sent_at=now,
        receipt_send_count=1,
        created_at=now,
    )
    db.add(order)
    for p in priced:
        db.add(OrderItem(
            id=str(uuid.uuid4()),
            order_id=order.id,
            product_id=p.product.id,
            seller_id=p.product.seller_id,
            license_type=p.license_type,
            quantity=p.quantity,
            price=p.unit_price,
        ))
    await db.flush()

    fulfillment = await fulfill_order(db, order.id, capture_id)
    if not fulfillment.ok:
        await db.rollback()
        logger.error("Fulfillment failed after capture: order=%s capture=%s reason=%s",
                     order.id, capture_id, fulfillment.reason)
        raise UpstreamError("Failed to record order")
    await db.commit()

    logger.info("Order captured: order=%s capture=%s total=%s buyer=%s", order.id, capture_id, total, buyer.id)
    invalidate_buyer_dashboard(buyer.id)
    _notify_purchase(order, priced)

    return {
        "success": True,
        "orderId": order.id,
        "captureId": capture_id,
        "message": "Payment successful",
    }


def _notify_purchase(order: Order, priced: list[PricedItem]) -> None:
    buyer_name = order.buyer_name or order.buyer_email or "Buyer"
    if order.buyer_email:
        email_service.send_in_background(
            f"receipt_email_{order.id}",
            email_service.send_receipt_email,
            order_id=order.id,
            to=order.buyer_email,
            buyer_name=buyer_name,
            items=[{"title": p.product.title, "price": p.line_total} for p in priced],
            total=order.total_amount,
            receipt_token=order.receipt_token,
        )
    for p in priced:
        if p.product.seller_id:
            email_service.send_in_background(
                f"new_sale_email_{order.id}_{p.product.id}",
                _send_new_sale,
                seller_id=p.product.seller_id,
                product_title=p.product.title,
                sale_amount=p.line_total,
                buyer_name=buyer_name,
            )


async def _send_new_sale(db: AsyncSession, *, seller_id: str, product_title: str, sale_amount, buyer_name: str):
    result = await db.execute(
        select(Seller, User).join(User, User.id == Seller.id).where(Seller.id == seller_id)
    )
    row = result.first()
    if row is None:
        return email_service.EmailResult(success=False, error="Seller not found")
    seller, user = row
    earnings = _money(Decimal(str(sale_amount)) * (1 - Decimal(str(seller.commission_rate))))
    return await email_service.send_new_sale_email(
        db,
        seller_id=seller.id,
        to=user.email,
        seller_name=seller.display_name or user.full_name or "Seller",
        product_title=product_title,
        sale_amount=sale_amount,
        earnings=earnings,
        buyer_name=buyer_name,
    )


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------

async def _lock_order(db: AsyncSession, order_id: str) -> Order | None:
    stmt = select(Order).where(Order.id == order_id)
    if not _is_sqlite:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _lock_seller(db: AsyncSession, seller_id: str) -> Seller | None:
    stmt = select(Seller).where(Seller.id == seller_id)
    if not _is_sqlite:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def fulfill_order(
    db: AsyncSession,
    order_id: str,
    capture_id: str | None,
    escrow_days: int | None = None,
) -> FulfillResult:
    """Record escrowed seller earnings for a paid order.

    Idempotent: an order that already has fulfilled_at set is reported as
    such and nothing is credited twice. Runs inside the caller's
    transaction; the caller commits.
    """
    if not capture_id:
        return FulfillResult(ok=False, reason="missing_capture")

    order = await _lock_order(db, order_id)
    if order is None:
        return FulfillResult(ok=False, reason="order_not_found")
    if order.fulfilled_at is not None:
        return FulfillResult(ok=True, idempotent=True)
    if order.paypal_capture_id and order.paypal_capture_id != capture_id:
        return FulfillResult(ok=False, reason="capture_mismatch")

    now = utcnow()
    release_at = now + timedelta(days=escrow_days if escrow_days is not None else settings.escrow_days)

    items = (await db.execute(select(OrderItem).where(OrderItem.order_id == order.id))).scalars().all()
    created = 0
    for item in items:
        seller_id = item.seller_id
        if seller_id is None:
            product = await db.get(Product, item.product_id)
            seller_id = product.seller_id if product else None
        if seller_id is None:
            continue
        seller = await _lock_seller(db, seller_id)
        if seller is None:
            logger.warning("Order item %s references missing seller %s", item.id, seller_id)
            continue

        rate = Decimal(str(seller.commission_rate))
        amount = _money(Decimal(str(item.price)) * item.quantity * (1 - rate))
        db.add(EscrowEntry(
            id=str(uuid.uuid4()),
            seller_id=seller.id,
            order_id=order.id,
            order_item_id=item.id,
            amount=amount,
            capture_id=capture_id,
            status="held",
            release_at=release_at,
            created_at=now,
        ))
        seller.pending_balance = Decimal(str(seller.pending_balance or 0)) + amount
        created += 1

    order.paypal_capture_id = capture_id
    order.payment_status = "completed"
    order.fulfilled_at = now
    await db.flush()

    logger.info("Order fulfilled: order=%s capture=%s escrow_entries=%d", order.id, capture_id, created)
    return FulfillResult(ok=True, entries_created=created)


async def _verify_capture(order: Order, capture_id: str) -> None:
    try:
        capture = await get_paypal_client().get_capture(capture_id)
    except PayPalError as exc:
        logger.error("Capture lookup failed: order=%s capture=%s error=%s", order.id, capture_id, exc)
        raise UpstreamError("Could not verify the capture with PayPal", status_code=502)
    if not capture.completed:
        logger.warning("Manual fulfillment refused: order=%s capture=%s status=%s",
                       order.id, capture_id, capture.status)
        raise InvalidRequestError("PayPal does not report this capture as completed")
    if capture.amount is not None and capture.amount != _money(order.total_amount):
        logger.warning("Manual fulfillment refused: order=%s capture=%s captured=%s total=%s",
                       order.id, capture_id, capture.amount, order.total_amount)
        raise ConflictError("Captured amount does not match the order total")


async def admin_fulfill_order(db: AsyncSession, admin_id: str, order_id: str, capture_id: str | None = None) -> dict:
    """Manually run fulfillment for a paid order that missed it.

    Requires a processor capture id, either already on the order or
    supplied by the admin, that PayPal reports as COMPLETED for the order
    total.
    """
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    capture_id = capture_id or order.paypal_capture_id
    if not capture_id:
        raise InvalidRequestError("A PayPal capture id is required to fulfill this order")
    if order.payment_status not in ("completed", "pending"):
        raise ConflictError(f"Cannot fulfill an order with payment status '{order.payment_status}'")
    if order.fulfilled_at is None:
        await _verify_capture(order, capture_id)

    before = {
        "payment_status": order.payment_status,
        "paypal_capture_id": order.paypal_capture_id,
        "fulfilled_at": order.fulfilled_at.isoformat() if order.fulfilled_at else None,
    }
    result = await fulfill_order(db, order.id, capture_id)
    if not result.ok:
        await db.rollback()
        if result.reason == "capture_mismatch":
            raise ConflictError("Capture id does not match the order")
        raise UpstreamError("Fulfillment failed")

    if not result.idempotent:
        await log_admin_action(
            db, admin_id, "fulfill_order", "order", order.id,
            before=before,
            after={
                "payment_status": order.payment_status,
                "paypal_capture_id": order.paypal_capture_id,
                "fulfilled_at": order.fulfilled_at.isoformat() if order.fulfilled_at else None,
                "escrow_entries": result.entries_created,
            },
        )
    await db.commit()
    invalidate_buyer_dashboard(order.user_id)

    return {
        "success": True,
        "idempotent": result.idempotent,
        "orderId": order.id,
        "captureId": capture_id,
        "message": "Order already fulfilled" if result.idempotent else "Order fulfilled",
    }


# ---------------------------------------------------------------------------
# Checkout webhook
# ---------------------------------------------------------------------------

async def _log_webhook(db: AsyncSession, event: dict, *, processed: bool, error: str | None = None) -> None:
    resource = event.get("resource") or {}
    db.add(WebhookLog(
        webhook_type="paypal_checkout",
        event_type=event.get("event_type") or "UNKNOWN",
        resource_id=resource.get("id") or event.get("id"),
        payload=json.dumps(event, default=str)[:20000],
        processed=processed,
        error_message=error,
    ))
    await db.commit()


async def handle_checkout_webhook(db: AsyncSession, event: dict, headers: dict[str, str]) -> tuple[int, dict]:
    """Process a PayPal checkout event. Returns (status_code, body)."""
    event_type = event.get("event_type")
    if not await get_paypal_client().verify_webhook_signature(headers, event):
        logger.error("Checkout webhook signature verification failed: event=%s", event_type)
        await _log_webhook(db, event, processed=False, error="Signature verification failed")
        return 401, {"error": "Invalid signature"}

    resource = event.get("resource") or {}

    if event_type == "PAYMENT.CAPTURE.COMPLETED":
        result = await _fulfill_from_capture(db, resource)
        await _log_webhook(db, event, processed=True, error=result.get("error"))
        return 200, result

    if event_type in ("PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.REFUNDED"):
        capture_id = resource.get("id")
        new_status = "refunded" if event_type == "PAYMENT.CAPTURE.REFUNDED" else "failed"
        if capture_id:
            order = (await db.execute(
                select(Order).where(Order.paypal_capture_id == capture_id)
            )).scalar_one_or_none()
            if order is not None:
                order.payment_status = new_status
                reversed_total = await reverse_order_escrow(db, order.id)
                await db.commit()
                invalidate_buyer_dashboard(order.user_id)
                logger.info("Order %s marked %s by webhook, escrow reversed %s",
                            order.id, new_status, reversed_total)
        await _log_webhook(db, event, processed=True)
        return 200, {"received": True, "event": event_type}

    if event_type == "CHECKOUT.ORDER.APPROVED":
        await _log_webhook(db, event, processed=True)
        return 200, {"received": True, "event": event_type}

    logger.info("Unhandled checkout webhook event: %s", event_type)
    await _log_webhook(db, event, processed=False, error="Unhandled event type")
    return 200, {"received": True, "event": event_type}


async def _fulfill_from_capture(db: AsyncSession, capture: dict) -> dict:
    capture_id = capture.get("id")
    if not capture_id:
        return {"success": False, "error": "Missing capture ID"}

    existing = (await db.execute(
        select(Order).where(Order.paypal_capture_id == capture_id)
    )).scalar_one_or_none()
    if existing is not None and existing.fulfilled_at is not None:
        return {"success": True, "message": "Already processed", "idempotent": True}

    order = existing
    if order is None and capture.get("custom_id"):
        order = await db.get(Order, capture["custom_id"])
    if order is None:
        related = (capture.get("supplementary_data") or {}).get("related_ids") or {}
        if related.get("order_id"):
            order = (await db.execute(
                select(Order).where(Order.paypal_order_id == related["order_id"])
            )).scalars().first()
    if order is None:
        logger.warning("Checkout webhook: no order for capture %s", capture_id)
        return {"success": False, "error": "Order not found"}

    result = await fulfill_order(db, order.id, capture_id)
    if not result.ok:
        await db.rollback()
        return {"success": False, "error": result.reason}
    await db.commit()
    invalidate_buyer_dashboard(order.user_id)
    return {"success": True, "orderId": order.id, "idempotent": result.idempotent}


# ---------------------------------------------------------------------------
# Buyer views
# ---------------------------------------------------------------------------

def order_to_dict(order: Order, items: list[OrderItem]) -> dict:
    return {
        "id": order.id,
        "total_amount": float(order.total_amount),
        "payment_status": order.payment_status,
        "paypal_order_id": order.paypal_order_id,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "items": [
            {
                "id": i.id,
                "product_id": i.product_id,
                "license_type": i.license_type,
                "quantity": i.quantity,
                "price": float(i.price),
            }
            for i in items
        ],
    }


async def list_buyer_orders(db: AsyncSession, user_id: str) -> list[dict]:
    """Buyer's orders, newest first, served from the dashboard cache."""
    cache_key = f"{user_id}:orders"
    cached = dashboard_cache.get(cache_key)
    if cached is not None:
        return cached

    orders = (await db.execute(
        select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc())
    )).scalars().all()
    order_ids = [o.id for o in orders]
    items_by_order: dict[str, list[OrderItem]] = {oid: [] for oid in order_ids}
    if order_ids:
        items = (await db.execute(
            select(OrderItem).where(OrderItem.order_id.in_(order_ids))
        )).scalars().all()
        for item in items:
            items_by_order[item.order_id].append(item)

    payload = [order_to_dict(o, items_by_order[o.id]) for o in orders]
    dashboard_cache.put(cache_key, payload)
    return payload
