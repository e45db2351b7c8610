from fastapi import APIRouter, Cookie, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.auth import optional_user_id
from storefront.database import get_db
from storefront.services import receipt_service

router = APIRouter(prefix="/downloads", tags=["downloads"])


@router.get("/{order_id}")
async def download_product(
    order_id: str,
    product_id: str | None = Query(default=None, alias="productId"),
    token: str | None = Query(default=None),
    receipt_session: str | None = Cookie(default=None),
    db: AsyncSession = Depends(get_db),
    user_id: str | None = Depends(optional_user_id),
):
    """Redirect an authorized buyer to a short-lived signed file URL.

    A signed-in owner needs nothing else. Guests present their receipt
    token, either as ?token= or through the receipt_session cookie.
    """
    url = await receipt_service.resolve_download(
        db,
        order_id,
        product_id,
        user_id=user_id,
        receipt_token=token or receipt_session,
    )
    return RedirectResponse(url=url, status_code=302)
