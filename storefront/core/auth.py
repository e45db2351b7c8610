"""Session identity gate: resolves the caller and their role for every route."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Header
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from storefront.database import get_db
from storefront.models.admin import AdminUser
from storefront.models.seller import Seller


def create_session_token(user_id: str, email: str) -> str:
    """Create a JWT session for a signed-in account (type=session)."""
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.jwt_expire_hours)
    payload = {
        "sub": user_id,
        "email": email,
        "type": "session",
        "jti": str(uuid.uuid4()),
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> dict:
    """Decode and validate a session JWT. Returns the payload."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise UnauthorizedError("Invalid or expired session")
    if payload.get("type") != "session":
        raise UnauthorizedError("Not a session token")
    if not payload.get("sub"):
        raise UnauthorizedError("Token missing subject")
    return payload


def get_current_user_id(authorization: str | None = Header(default=None)) -> str:
    """FastAPI dependency that extracts the user_id from the Authorization header."""
    if not authorization:
        raise UnauthorizedError("Unauthorized")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthorizedError("Authorization header must be: Bearer <token>")
    return decode_session_token(parts[1])["sub"]


def optional_user_id(authorization: str | None = Header(default=None)) -> str | None:
    """Best-effort identity for routes that also accept guest credentials."""
    if not authorization:
        return None
    try:
        return get_current_user_id(authorization)
    except UnauthorizedError:
        return None


async def is_admin(db: AsyncSession, user_id: str) -> bool:
    result = await db.execute(select(AdminUser.user_id).where(AdminUser.user_id == user_id))
    return result.scalar_one_or_none() is not None


async def require_admin(db: AsyncSession, user_id: str) -> str:
    if not await is_admin(db, user_id):
        raise ForbiddenError("Forbidden")
    return user_id


async def get_current_admin_id(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> str:
    """FastAPI dependency: authenticated caller who is a member of admin_users."""
    return await require_admin(db, user_id)


async def get_current_seller(db: AsyncSession, user_id: str) -> Seller:
    result = await db.execute(select(Seller).where(Seller.id == user_id))
    seller = result.scalar_one_or_none()
    if seller is None:
        raise NotFoundError("Seller account not found")
    return seller
