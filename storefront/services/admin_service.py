"""Admin moderation: admin membership, seller status, product status.

Every mutation writes its audit row in the same transaction as the change.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import ConflictError, InvalidRequestError, NotFoundError
from storefront.core.timeutil import utcnow
from storefront.models.admin import AdminUser
from storefront.models.product import PRODUCT_STATUSES, Product
from storefront.models.seller import SELLER_STATUSES, Seller
from storefront.models.user import User
from storefront.services.audit_service import log_admin_action

logger = logging.getLogger(__name__)


@dataclass
class SuspendResult:
    ok: bool
    reason: str | None = None  # not_found
    seller: Seller | None = None


def _iso(value):
    return value.isoformat() if value else None


def seller_to_dict(seller: Seller) -> dict:
    return {
        "id": seller.id,
        "username": seller.username,
        "display_name": seller.display_name,
        "seller_status": seller.seller_status,
        "available_balance": float(seller.available_balance or 0),
        "pending_balance": float(seller.pending_balance or 0),
        "commission_rate": float(seller.commission_rate or 0),
        "payout_email": seller.payout_destination,
        "suspended_at": _iso(seller.suspended_at),
        "suspended_by": seller.suspended_by,
        "suspension_reason": seller.suspension_reason,
        "created_at": _iso(seller.created_at),
        "updated_at": _iso(seller.updated_at),
    }


def product_to_dict(product: Product) -> dict:
    return {
        "id": product.id,
        "seller_id": product.seller_id,
        "title": product.title,
        "slug": product.slug,
        "price_b2c": float(product.price_b2c),
        "price_b2b": float(product.price_b2b),
        "category": product.category,
        "status": product.status,
    }


# ---------------------------------------------------------------------------
# Admin membership
# ---------------------------------------------------------------------------

async def list_admins(db: AsyncSession) -> list[dict]:
    result = await db.execute(
        select(AdminUser, User.email)
        .outerjoin(User, User.id == AdminUser.user_id)
        .order_by(AdminUser.created_at.desc())
    )
    return [
        {"user_id": admin.user_id, "email": email or "Unknown", "created_at": _iso(admin.created_at)}
        for admin, email in result.all()
    ]


async def add_admin(db: AsyncSession, admin_id: str, email: str | None) -> dict:
    normalized = (email or "").strip().lower()
    if not normalized:
        raise InvalidRequestError("Email is required")

    target = (await db.execute(
        select(User).where(func.lower(User.email) == normalized)
    )).scalar_one_or_none()
    if target is None:
        raise NotFoundError("User not found")

    existing = await db.get(AdminUser, target.id)
    if existing is not None:
        raise ConflictError("User is already an admin")

    db.add(AdminUser(user_id=target.id, created_at=utcnow()))
    await log_admin_action(
        db, admin_id, "add_admin", "admin", target.id,
        after={"user_id": target.id, "email": target.email},
    )
    await db.commit()
    logger.info("Admin %s granted admin to %s", admin_id, target.id)
    return {
        "message": "Admin added successfully",
        "admin": {"user_id": target.id, "email": target.email},
    }


async def remove_admin(db: AsyncSession, admin_id: str, user_id: str) -> dict:
    existing = await db.get(AdminUser, user_id)
    if existing is None:
        raise NotFoundError("Admin not found")
    before = {"user_id": existing.user_id, "created_at": _iso(existing.created_at)}

    # The count guard lives in the DELETE itself so two concurrent
    # removals cannot empty the admin set.
    others = (
        select(func.count())
        .select_from(AdminUser)
        .where(AdminUser.user_id != user_id)
        .scalar_subquery()
    )
    removed = await db.execute(
        delete(AdminUser)
        .where(AdminUser.user_id == user_id, others > 0)
        .execution_options(synchronize_session=False)
    )
    if removed.rowcount != 1:
        await db.rollback()
        raise ConflictError("Cannot remove the last admin")

    db.expunge(existing)
    await log_admin_action(db, admin_id, "remove_admin", "admin", user_id, before=before)
    await db.commit()
    logger.info("Admin %s removed admin %s", admin_id, user_id)
    return {"message": "Admin removed successfully"}


# ---------------------------------------------------------------------------
# Sellers
# ---------------------------------------------------------------------------

async def list_sellers(db: AsyncSession, status: str | None = None) -> list[dict]:
    query = select(Seller).order_by(Seller.created_at.desc())
    if status:
        if status not in SELLER_STATUSES:
            raise InvalidRequestError("Invalid seller status")
        query = query.where(Seller.seller_status == status)
    result = await db.execute(query)
    return [seller_to_dict(s) for s in result.scalars().all()]


async def update_seller_status(db: AsyncSession, admin_id: str, seller_id: str, seller_status: str | None) -> dict:
    if not seller_status or seller_status not in SELLER_STATUSES:
        raise InvalidRequestError("Invalid seller status")

    seller = await db.get(Seller, seller_id)
    if seller is None:
        raise NotFoundError("Seller not found")

    before = {"seller_status": seller.seller_status}
    seller.seller_status = seller_status
    seller.updated_at = utcnow()
    await log_admin_action(
        db, admin_id, "update_seller_status", "seller", seller_id,
        before=before,
        after={"seller_status": seller_status},
    )
    await db.commit()
    await db.refresh(seller)
    return {"message": "Seller status updated successfully", "seller": seller_to_dict(seller)}


async def suspend_seller(
    db: AsyncSession,
    seller_id: str,
    admin_id: str,
    suspend: bool,
    reason: str | None = None,
) -> SuspendResult:
    """Suspend or reinstate a seller and audit it. Caller commits."""
    seller = await db.get(Seller, seller_id)
    if seller is None:
        return SuspendResult(ok=False, reason="not_found")

    before = {
        "seller_status": seller.seller_status,
        "suspended_at": _iso(seller.suspended_at),
        "suspension_reason": seller.suspension_reason,
    }
    now = utcnow()
    if suspend:
        seller.seller_status = "suspended"
        seller.suspended_at = now
        seller.suspended_by = admin_id
        seller.suspension_reason = reason
    else:
        seller.seller_status = "active"
        seller.suspended_at = None
        seller.suspended_by = None
        seller.suspension_reason = None
    seller.updated_at = now

    await log_admin_action(
        db, admin_id, "suspend_seller" if suspend else "unsuspend_seller", "seller", seller_id,
        before=before,
        after={
            "seller_status": seller.seller_status,
            "suspended_at": _iso(seller.suspended_at),
            "suspension_reason": seller.suspension_reason,
        },
    )
    return SuspendResult(ok=True, seller=seller)


async def set_seller_suspension(db: AsyncSession, admin_id: str, seller_id: str, suspend, reason: str | None) -> dict:
    if not isinstance(suspend, bool):
        raise InvalidRequestError("'suspend' must be a boolean")

    result = await suspend_seller(db, seller_id, admin_id, suspend, reason)
    if not result.ok:
        await db.rollback()
        raise NotFoundError("Seller not found")
    await db.commit()
    logger.info("Seller %s %s by admin %s", seller_id, "suspended" if suspend else "reinstated", admin_id)
    return {
        "success": True,
        "message": "Seller suspended" if suspend else "Seller unsuspended",
        "seller_id": seller_id,
        "is_suspended": suspend,
    }


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

async def update_product_status(db: AsyncSession, admin_id: str, product_id: str, status: str | None) -> dict:
    if not status or status not in PRODUCT_STATUSES:
        raise InvalidRequestError("Invalid product status")

    product = await db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")

    before = {"status": product.status}
    product.status = status
    await log_admin_action(
        db, admin_id, "update_product_status", "product", product_id,
        before=before,
        after={"status": status},
    )
    await db.commit()
    return {"message": "Product status updated successfully", "product": product_to_dict(product)}
