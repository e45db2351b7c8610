from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.auth import get_current_user_id
from storefront.database import get_db
from storefront.services import product_service

router = APIRouter(prefix="/seller", tags=["seller"])


@router.delete("/products/{product_id}")
async def delete_product(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await product_service.delete_product(db, user_id, product_id)
