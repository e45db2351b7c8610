"""Admin moderation endpoints. Every route requires admin membership."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.auth import get_current_admin_id
from storefront.database import get_db
from storefront.schemas.admin import (
    AddAdminRequest,
    AdminFulfillRequest,
    ProductStatusUpdate,
    SellerStatusUpdate,
    SuspendRequest,
)
from storefront.schemas.payout import PayoutFailRequest, PayoutStatusUpdate
from storefront.services import admin_service, audit_service, order_service, payout_service

router = APIRouter(prefix="/admin", tags=["admin"])


# -- Admin membership --

@router.get("/admin-users")
async def list_admin_users(
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return {"admins": await admin_service.list_admins(db)}


@router.post("/admin-users")
async def add_admin_user(
    req: AddAdminRequest,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return await admin_service.add_admin(db, admin_id, req.email)


@router.delete("/admin-users/{user_id}")
async def remove_admin_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return await admin_service.remove_admin(db, admin_id, user_id)


# -- Sellers --

@router.get("/sellers")
async def list_sellers(
    status: str | None = None,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return {"sellers": await admin_service.list_sellers(db, status)}


@router.patch("/sellers/{seller_id}/status")
async def update_seller_status(
    seller_id: str,
    req: SellerStatusUpdate,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return await admin_service.update_seller_status(db, admin_id, seller_id, req.seller_status)


@router.post("/sellers/{seller_id}/suspend")
async def suspend_seller(
    seller_id: str,
    req: SuspendRequest,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return await admin_service.set_seller_suspension(db, admin_id, seller_id, req.suspend, req.reason)


# -- Payouts --

@router.get("/payouts")
async def list_payouts(
    status: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return await payout_service.list_all_payouts(db, status, page, page_size)


@router.patch("/payouts/{payout_id}/status")
async def update_payout_status(
    payout_id: str,
    req: PayoutStatusUpdate,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return await payout_service.update_payout_status(db, admin_id, payout_id, req.status, req.note)


@router.post("/payouts/{payout_id}/fail")
async def fail_payout(
    payout_id: str,
    req: PayoutFailRequest,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return await payout_service.admin_fail_payout(db, admin_id, payout_id, req.reason)


@router.post("/payouts/{payout_id}/process")
async def process_payout(
    payout_id: str,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return await payout_service.process_payout(db, admin_id, payout_id)


# -- Products and orders --

@router.patch("/products/{product_id}/status")
async def update_product_status(
    product_id: str,
    req: ProductStatusUpdate,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return await admin_service.update_product_status(db, admin_id, product_id, req.status)


@router.post("/orders/{order_id}/fulfill")
async def fulfill_order(
    order_id: str,
    req: AdminFulfillRequest | None = None,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    capture_id = req.capture_id if req else None
    return await order_service.admin_fulfill_order(db, admin_id, order_id, capture_id)


# -- Audit trail --

@router.get("/audit-logs")
async def list_audit_logs(
    entity_type: str | None = None,
    entity_id: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(get_current_admin_id),
):
    return await audit_service.list_audit_logs(
        db, entity_type=entity_type, entity_id=entity_id, page=page, page_size=page_size,
    )
