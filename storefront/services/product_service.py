"""Seller product removal. Products that were ever sold are archived, never deleted."""
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import ForbiddenError, NotFoundError
from storefront.models.order import OrderItem
from storefront.models.product import Product
from storefront.models.seller import Seller
from storefront.services.storage_service import get_storage

logger = logging.getLogger(__name__)


async def delete_product(db: AsyncSession, user_id: str, product_id: str) -> dict:
    seller = await db.get(Seller, user_id)
    if seller is None or seller.seller_status == "suspended":
        raise ForbiddenError("Seller account not found or suspended")

    product = await db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if product.seller_id != seller.id:
        raise ForbiddenError("You don't have permission to delete this product")

    order_count = (await db.execute(
        select(func.count(OrderItem.id)).where(OrderItem.product_id == product_id)
    )).scalar() or 0

    if order_count > 0:
        product.status = "archived"
        await db.commit()
        logger.info("Product %s archived by seller %s (%d order items)", product_id, seller.id, order_count)
        return {
            "success": True,
            "archived": True,
            "message": "Product has been archived because it has existing orders",
        }

    file_path = product.file_path
    await db.delete(product)
    await db.commit()
    if file_path:
        get_storage().remove([file_path])
    logger.info("Product %s deleted by seller %s", product_id, seller.id)
    return {"success": True, "archived": False, "message": "Product deleted successfully"}
