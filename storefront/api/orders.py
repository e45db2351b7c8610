from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.auth import get_current_user_id
from storefront.database import get_db
from storefront.services import order_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("")
async def list_my_orders(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return {"orders": await order_service.list_buyer_orders(db, user_id)}
