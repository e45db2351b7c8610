"""Escrow maturity release and reversal.

Held entries either mature into the seller's available balance or, when the
payment is refunded or denied inside the window, are reversed out of the
seller's pending balance. Both moves are conditional on the entry still
being held, so an entry is settled exactly once.
"""
import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.timeutil import utcnow
from storefront.models.escrow import EscrowEntry
from storefront.models.order import Order
from storefront.models.seller import Seller

logger = logging.getLogger(__name__)


async def release_matured_escrow(db: AsyncSession, now: datetime | None = None) -> dict:
    """Release every held escrow entry whose release_at has passed.

    Only entries of completed orders are released; a refunded or failed
    order's entries wait for reverse_order_escrow. Each entry is flipped
    held -> released with a conditional UPDATE; the seller is credited only
    when that UPDATE matched a row, so overlapping or repeated runs never
    credit an entry twice.
    """
    now = now or utcnow()
    result = await db.execute(
        select(EscrowEntry.id, EscrowEntry.seller_id, EscrowEntry.amount)
        .join(Order, Order.id == EscrowEntry.order_id)
        .where(
            EscrowEntry.status == "held",
            EscrowEntry.release_at <= now,
            Order.payment_status == "completed",
        )
        .order_by(EscrowEntry.release_at)
    )
    candidates = result.all()

    released = 0
    total = Decimal("0")
    for entry_id, seller_id, amount in candidates:
        flipped = await db.execute(
            update(EscrowEntry)
            .where(EscrowEntry.id == entry_id, EscrowEntry.status == "held")
            .values(status="released", released_at=now)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            continue
        amount = Decimal(str(amount))
        await db.execute(
            update(Seller)
            .where(Seller.id == seller_id)
            .values(
                available_balance=Seller.available_balance + amount,
                pending_balance=Seller.pending_balance - amount,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        released += 1
        total += amount

    await db.commit()
    if released:
        logger.info("Released %d escrow entries totalling %s", released, total)
    return {"records_processed": released, "total_amount_released": float(total)}


async def reverse_order_escrow(db: AsyncSession, order_id: str, now: datetime | None = None) -> Decimal:
    """Reverse an order's held entries and debit the sellers' pending balance.

    Runs in the caller's transaction; the caller commits. Entries already
    released are left alone. Returns the total reversed.
    """
    now = now or utcnow()
    result = await db.execute(
        select(EscrowEntry.id, EscrowEntry.seller_id, EscrowEntry.amount)
        .where(EscrowEntry.order_id == order_id, EscrowEntry.status == "held")
    )

    total = Decimal("0")
    for entry_id, seller_id, amount in result.all():
        flipped = await db.execute(
            update(EscrowEntry)
            .where(EscrowEntry.id == entry_id, EscrowEntry.status == "held")
            .values(status="reversed", reversed_at=now)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            continue
        amount = Decimal(str(amount))
        await db.execute(
            update(Seller)
            .where(Seller.id == seller_id)
            .values(pending_balance=Seller.pending_balance - amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        total += amount

    if total:
        logger.info("Reversed escrow for order %s totalling %s", order_id, total)
    return total
