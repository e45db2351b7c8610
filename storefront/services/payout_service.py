"""Seller payouts: request, admin status changes, PayPal Payouts, refunds.

PayoutRequest lifecycle:

    pending    -> processing | held | failed
    processing -> completed | held | failed
    held       -> pending | processing | failed
    completed, failed: terminal

Requesting a payout debits available_balance up front. Failing a payout
refunds that amount, exactly once, so available_balance plus in-flight
payouts is conserved.
"""
import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    UpstreamError,
)
from storefront.core.timeutil import utcnow
from storefront.models.logs import WebhookLog
from storefront.models.payout import PAYOUT_STATUSES, PayoutRequest
from storefront.models.seller import Seller
from storefront.models.user import User
from storefront.services import email_service
from storefront.services.audit_service import log_admin_action
from storefront.services.paypal_service import PayPalError, get_paypal_client

logger = logging.getLogger(__name__)

_is_sqlite = settings.database_url.startswith("sqlite")

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "held", "failed"}),
    "processing": frozenset({"completed", "held", "failed"}),
    "held": frozenset({"pending", "processing", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}
_FAILABLE = ("pending", "processing", "held")

_ITEM_FAILURE_EVENTS = (
    "PAYMENT.PAYOUTS-ITEM.FAILED",
    "PAYMENT.PAYOUTS-ITEM.BLOCKED",
    "PAYMENT.PAYOUTS-ITEM.RETURNED",
    "PAYMENT.PAYOUTS-ITEM.REFUNDED",
    "PAYMENT.PAYOUTS-ITEM.CANCELED",
    "PAYMENT.PAYOUTS-ITEM.UNCLAIMED",
)


@dataclass
class PayoutFailResult:
    ok: bool
    reason: str | None = None  # not_found | invalid_state
    payout: PayoutRequest | None = None


def can_transition(current: str, target: str) -> bool:
    return target in VALID_TRANSITIONS.get(current, frozenset())


async def _get_payout(db: AsyncSession, payout_id: str, *, lock: bool = False) -> PayoutRequest | None:
    stmt = (
        select(PayoutRequest)
        .where(PayoutRequest.id == payout_id)
        .execution_options(populate_existing=True)
    )
    if lock and not _is_sqlite:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _get_seller(db: AsyncSession, seller_id: str, *, lock: bool = False) -> Seller | None:
    stmt = (
        select(Seller)
        .where(Seller.id == seller_id)
        .execution_options(populate_existing=True)
    )
    if lock and not _is_sqlite:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def payout_to_dict(payout: PayoutRequest) -> dict:
    return {
        "id": payout.id,
        "seller_id": payout.seller_id,
        "amount": float(payout.amount),
        "payout_email": payout.payout_email,
        "status": payout.status,
        "note": payout.note,
        "failure_reason": payout.failure_reason,
        "paypal_batch_id": payout.paypal_batch_id,
        "paypal_transaction_id": payout.paypal_transaction_id,
        "processed_by": payout.processed_by,
        "processed_at": payout.processed_at.isoformat() if payout.processed_at else None,
        "created_at": payout.created_at.isoformat() if payout.created_at else None,
        "updated_at": payout.updated_at.isoformat() if payout.updated_at else None,
    }


# ---------------------------------------------------------------------------
# Seller side
# ---------------------------------------------------------------------------

async def request_payout(db: AsyncSession, seller_id: str, amount) -> dict:
    """Validate a payout request, then debit and record it atomically.

    The pre-checks give friendly errors; create_payout_request re-checks
    everything under the seller lock since the balance may have moved.
    """
    try:
        amount_d = Decimal(str(amount)) if amount is not None else None
    except ArithmeticError:
        amount_d = None
    if amount_d is None or not amount_d.is_finite() or amount_d < Decimal(str(settings.payout_min_usd)):
        raise InvalidRequestError(f"Minimum payout amount is ${settings.payout_min_usd:g}")

    seller = await _get_seller(db, seller_id)
    if seller is None:
        raise NotFoundError("Seller account not found")
    if not seller.payout_destination:
        raise InvalidRequestError("Please configure your payout email first")
    if amount_d > Decimal(str(seller.available_balance)):
        raise InvalidRequestError("Insufficient available balance")

    payout = await create_payout_request(db, seller_id, amount_d)
    return {
        "success": True,
        "requestId": payout.id,
        "message": "Payout request submitted successfully",
    }


async def create_payout_request(db: AsyncSession, seller_id: str, amount: Decimal) -> PayoutRequest:
    """Debit available_balance and create a pending request in one commit."""
    amount = amount.quantize(Decimal("0.01"))
    seller = await _get_seller(db, seller_id, lock=True)
    if seller is None:
        raise NotFoundError("Seller account not found")
    if seller.seller_status != "active":
        raise ForbiddenError("Payouts are locked for this seller account")
    destination = seller.payout_destination
    if not destination:
        raise InvalidRequestError("Please configure your payout email first")

    now = utcnow()
    debited = await db.execute(
        update(Seller)
        .where(
            Seller.id == seller_id,
            Seller.seller_status == "active",
            Seller.available_balance >= amount,
        )
        .values(available_balance=Seller.available_balance - amount, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if debited.rowcount != 1:
        await db.rollback()
        raise InvalidRequestError("Insufficient available balance")

    payout = PayoutRequest(
        seller_id=seller_id,
        amount=amount,
        payout_email=destination,
        status="pending",
        created_at=now,
        updated_at=now,
    )
    db.add(payout)
    await db.commit()
    await db.refresh(payout)

    logger.info("Payout requested: %s $%s seller=%s", payout.id, amount, seller_id)
    return payout


async def list_payouts(db: AsyncSession, seller_id: str) -> list[dict]:
    result = await db.execute(
        select(PayoutRequest)
        .where(PayoutRequest.seller_id == seller_id)
        .order_by(PayoutRequest.created_at.desc())
    )
    return [payout_to_dict(p) for p in result.scalars().all()]


async def list_all_payouts(db: AsyncSession, status: str | None = None, page: int = 1, page_size: int = 50) -> dict:
    query = select(PayoutRequest)
    if status:
        if status not in PAYOUT_STATUSES:
            raise InvalidRequestError("Invalid payout status")
        query = query.where(PayoutRequest.status == status)
    result = await db.execute(
        query.order_by(PayoutRequest.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "payouts": [payout_to_dict(p) for p in result.scalars().all()],
        "page": page,
        "page_size": page_size,
    }


# ---------------------------------------------------------------------------
# Failure and refund
# ---------------------------------------------------------------------------

async def fail_payout(db: AsyncSession, payout_id: str, reason: str) -> PayoutFailResult:
    """Mark a payout failed and refund its amount to the seller.

    The status flip is conditional on a non-terminal state, so the refund
    happens at most once. Runs in the caller's transaction; the caller
    commits.
    """
    payout = await _get_payout(db, payout_id, lock=True)
    if payout is None:
        return PayoutFailResult(ok=False, reason="not_found")
    if payout.status not in _FAILABLE:
        return PayoutFailResult(ok=False, reason="invalid_state", payout=payout)

    now = utcnow()
    flipped = await db.execute(
        update(PayoutRequest)
        .where(PayoutRequest.id == payout_id, PayoutRequest.status.in_(_FAILABLE))
        .values(status="failed", failure_reason=reason, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount != 1:
        return PayoutFailResult(ok=False, reason="invalid_state", payout=payout)

    amount = Decimal(str(payout.amount))
    await db.execute(
        update(Seller)
        .where(Seller.id == payout.seller_id)
        .values(available_balance=Seller.available_balance + amount, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    payout = await _get_payout(db, payout_id)
    logger.info("Payout failed and refunded: %s $%s reason=%s", payout_id, amount, reason)
    return PayoutFailResult(ok=True, payout=payout)


async def admin_fail_payout(db: AsyncSession, admin_id: str, payout_id: str, reason: str | None) -> dict:
    if not reason or not reason.strip():
        raise InvalidRequestError("Failure reason is required")
    reason = reason.strip()

    existing = await _get_payout(db, payout_id)
    before = {"status": existing.status, "note": existing.note} if existing else None

    result = await fail_payout(db, payout_id, reason)
    if not result.ok:
        await db.rollback()
        if result.reason == "not_found":
            raise NotFoundError("Payout not found")
        raise ConflictError("Payout cannot be failed from its current status")

    await log_admin_action(
        db, admin_id, "update_payout_status", "payout", payout_id,
        before=before,
        after={"status": "failed", "reason": reason},
    )
    await db.commit()
    return {"message": "Payout marked as failed and refunded successfully"}


# ---------------------------------------------------------------------------
# Admin status changes
# ---------------------------------------------------------------------------

async def update_payout_status(
    db: AsyncSession,
    admin_id: str,
    payout_id: str,
    status: str | None,
    note: str | None = None,
) -> dict:
    """Move a payout along its lifecycle. Failing routes through fail_payout."""
    if not status or status not in PAYOUT_STATUSES:
        raise InvalidRequestError("Invalid payout status")

    payout = await _get_payout(db, payout_id)
    if payout is None:
        raise NotFoundError("Payout not found")
    before = {"status": payout.status, "note": payout.note}

    if status == "failed":
        if not note or not note.strip():
            raise InvalidRequestError("A note is required when failing a payout")
        result = await fail_payout(db, payout_id, note.strip())
        if not result.ok:
            await db.rollback()
            if result.reason == "not_found":
                raise NotFoundError("Payout not found")
            raise ConflictError(f"Cannot change payout status from '{before['status']}' to 'failed'")
        payout = result.payout
    else:
        if not can_transition(payout.status, status):
            raise ConflictError(f"Cannot change payout status from '{payout.status}' to '{status}'")
        now = utcnow()
        values = {"status": status, "updated_at": now}
        if note:
            values["note"] = note
        if status == "completed":
            values["processed_by"] = admin_id
            values["processed_at"] = now
        moved = await db.execute(
            update(PayoutRequest)
            .where(PayoutRequest.id == payout_id, PayoutRequest.status == before["status"])
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            await db.rollback()
            raise ConflictError("Payout status changed concurrently; reload and retry")
        payout = await _get_payout(db, payout_id)

    await log_admin_action(
        db, admin_id, "update_payout_status", "payout", payout_id,
        before=before,
        after={"status": payout.status, "note": payout.note if status != "failed" else note},
    )
    await db.commit()
    logger.info("Payout %s status %s -> %s by admin %s", payout_id, before["status"], payout.status, admin_id)
    return {"message": "Payout status updated successfully", "payout": payout_to_dict(payout)}


# ---------------------------------------------------------------------------
# PayPal Payouts
# ---------------------------------------------------------------------------

async def process_payout(db: AsyncSession, admin_id: str, payout_id: str) -> dict:
    """Send an approved payout to PayPal.

    The request is moved to processing and committed before PayPal is
    called, so a second click cannot send it twice. A PayPal failure fails
    and refunds the request.
    """
    payout = await _get_payout(db, payout_id, lock=True)
    if payout is None:
        raise NotFoundError("Payout request not found")
    if not can_transition(payout.status, "processing"):
        raise ConflictError("Payout request already processed")
    before_status = payout.status

    claimed = await db.execute(
        update(PayoutRequest)
        .where(PayoutRequest.id == payout_id, PayoutRequest.status == before_status)
        .values(status="processing", failure_reason=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await db.rollback()
        raise ConflictError("Payout request already processed")
    await db.commit()

    batch_id = f"PAYOUT_{payout_id[:8]}_{int(time.time() * 1000)}"
    try:
        batch = await get_paypal_client().create_payout(
            payout_id, Decimal(str(payout.amount)), payout.payout_email, batch_id,
        )
    except PayPalError as exc:
        logger.error("PayPal payout failed: payout=%s error=%s", payout_id, exc)
        await fail_payout(db, payout_id, str(exc))
        await log_admin_action(
            db, admin_id, "process_payout", "payout", payout_id,
            before={"status": before_status},
            after={"status": "failed", "reason": str(exc)},
        )
        await db.commit()
        raise UpstreamError("PayPal payout failed", status_code=502)

    now = utcnow()
    await db.execute(
        update(PayoutRequest)
        .where(PayoutRequest.id == payout_id)
        .values(paypal_batch_id=batch.batch_id, processed_by=admin_id, processed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await log_admin_action(
        db, admin_id, "process_payout", "payout", payout_id,
        before={"status": before_status},
        after={"status": "processing", "paypal_batch_id": batch.batch_id},
    )
    await db.commit()
    logger.info("Payout %s sent to PayPal: batch=%s", payout_id, batch.batch_id)

    return {
        "success": True,
        "batchId": batch.batch_id,
        "status": "processing",
        "message": "Payout sent to PayPal. Awaiting confirmation.",
    }


async def _complete_payout(db: AsyncSession, payout_id: str, **values) -> PayoutRequest | None:
    now = utcnow()
    moved = await db.execute(
        update(PayoutRequest)
        .where(PayoutRequest.id == payout_id, PayoutRequest.status == "processing")
        .values(status="completed", updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if moved.rowcount != 1:
        return None
    return await _get_payout(db, payout_id)


async def handle_payout_webhook(db: AsyncSession, event: dict, headers: dict[str, str]) -> tuple[int, dict]:
    """Apply a PayPal Payouts event. Processing errors are logged, never retried."""
    event_type = event.get("event_type") or "UNKNOWN"
    resource = event.get("resource") or {}

    paypal = get_paypal_client(webhook_id=settings.paypal_payouts_webhook_id)
    if not await paypal.verify_webhook_signature(headers, event):
        await _log_webhook(db, event, processed=False, error="Signature verification failed")
        return 401, {"error": "Invalid signature"}

    try:
        completed = await _apply_payout_event(db, event_type, resource)
        await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.exception("Payout webhook processing failed: event=%s", event_type)
        await _log_webhook(db, event, processed=False, error=str(exc)[:1000])
        return 200, {"received": True, "error": "Processing error logged"}

    await _log_webhook(db, event, processed=True)
    for payout in completed:
        email_service.send_in_background(
            f"payout_sent_email_{payout.id}",
            _send_payout_sent,
            payout_id=payout.id,
        )
    return 200, {"received": True, "event": event_type}


async def _apply_payout_event(db: AsyncSession, event_type: str, resource: dict) -> list[PayoutRequest]:
    """Returns payouts that moved to completed by this event."""
    batch_id = (resource.get("batch_header") or {}).get("payout_batch_id")
    sender_item_id = (resource.get("payout_item") or {}).get("sender_item_id")
    completed: list[PayoutRequest] = []

    if event_type == "PAYMENT.PAYOUTSBATCH.SUCCESS" and batch_id:
        ids = (await db.execute(
            select(PayoutRequest.id).where(PayoutRequest.paypal_batch_id == batch_id)
        )).scalars().all()
        for payout_id in ids:
            payout = await _complete_payout(db, payout_id)
            if payout is not None:
                completed.append(payout)

    elif event_type == "PAYMENT.PAYOUTS-ITEM.SUCCEEDED" and sender_item_id:
        payout = await _complete_payout(
            db, sender_item_id,
            paypal_transaction_id=resource.get("transaction_id"),
            paypal_payout_item_id=resource.get("payout_item_id"),
        )
        if payout is not None:
            completed.append(payout)
        else:
            logger.info("Payout item success for %s ignored (not processing)", sender_item_id)

    elif event_type in _ITEM_FAILURE_EVENTS and sender_item_id:
        errors = resource.get("errors") or {}
        reason = (
            errors.get("message")
            or errors.get("name")
            or resource.get("transaction_status")
            or event_type.replace("PAYMENT.PAYOUTS-ITEM.", "")
        )
        result = await fail_payout(db, sender_item_id, reason)
        if not result.ok:
            logger.warning("Payout item failure for %s not applied: %s", sender_item_id, result.reason)

    elif event_type == "PAYMENT.PAYOUTSBATCH.DENIED" and batch_id:
        ids = (await db.execute(
            select(PayoutRequest.id).where(
                PayoutRequest.paypal_batch_id == batch_id,
                PayoutRequest.status == "processing",
            )
        )).scalars().all()
        for payout_id in ids:
            await fail_payout(db, payout_id, "PayPal batch denied")

    else:
        logger.info("Payout webhook event %s: no action", event_type)

    return completed


async def _log_webhook(db: AsyncSession, event: dict, *, processed: bool, error: str | None = None) -> None:
    resource = event.get("resource") or {}
    batch_id = (resource.get("batch_header") or {}).get("payout_batch_id")
    db.add(WebhookLog(
        webhook_type="paypal_payouts",
        event_type=event.get("event_type") or "UNKNOWN",
        resource_id=batch_id or resource.get("payout_item_id") or event.get("id"),
        payload=json.dumps(event, default=str)[:20000],
        processed=processed,
        error_message=error,
    ))
    await db.commit()


async def _send_payout_sent(db: AsyncSession, *, payout_id: str):
    row = (await db.execute(
        select(PayoutRequest, Seller, User)
        .join(Seller, Seller.id == PayoutRequest.seller_id)
        .join(User, User.id == Seller.id)
        .where(PayoutRequest.id == payout_id)
    )).first()
    if row is None:
        return email_service.EmailResult(success=False, error="Payout not found")
    payout, seller, user = row
    return await email_service.send_payout_sent_email(
        db,
        payout_id=payout.id,
        to=user.email or payout.payout_email,
        seller_name=seller.display_name or user.full_name or "Seller",
        amount=payout.amount,
        paypal_email=payout.payout_email,
    )
