"""Email verification: issue one-time tokens and consume them."""
import logging
import math
import secrets
import uuid
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.exceptions import InvalidRequestError, NotFoundError, RateLimitedError
from storefront.core.timeutil import as_utc, utcnow
from storefront.models.user import User
from storefront.models.verification import EmailVerificationToken
from storefront.services import email_service

logger = logging.getLogger(__name__)

# Outcome codes, in the order they are checked
MISSING_TOKEN = "missing_token"
INVALID_TOKEN = "invalid_token"
ALREADY_USED = "already_used"
EXPIRED = "expired"


def new_verification_token() -> str:
    return f"{uuid.uuid4()}-{secrets.token_hex(32)}"


def verification_url_for(token: str) -> str:
    return f"{settings.site_url}/api/auth/verify-email?token={token}"


async def send_verification(db: AsyncSession, user_id: str) -> dict:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("Profile not found")
    if user.email_confirmed:
        raise InvalidRequestError("Email already confirmed")

    now = utcnow()
    last_sent = as_utc(user.last_verification_sent_at)
    if last_sent is not None:
        elapsed = (now - last_sent).total_seconds()
        cooldown = settings.email_verification_cooldown_seconds
        if elapsed < cooldown:
            wait_seconds = math.ceil(cooldown - elapsed)
            raise RateLimitedError(
                f"Please wait {wait_seconds} seconds before requesting another email",
                wait_seconds,
            )

    token = new_verification_token()
    db.add(EmailVerificationToken(
        user_id=user.id,
        token=token,
        expires_at=now + timedelta(hours=settings.email_verification_ttl_hours),
        created_at=now,
    ))
    user.last_verification_sent_at = now
    await db.commit()

    url = verification_url_for(token)
    email_service.send_in_background(
        f"verification_email_{user.id}",
        email_service.send_verification_email,
        user_id=user.id,
        to=user.email,
        user_name=user.full_name or user.email.split("@")[0],
        verification_url=url,
    )
    logger.info("Verification email queued for user %s", user.id)

    response = {"success": True, "message": "Verification email sent! Check your inbox."}
    if settings.environment == "development":
        response["verificationUrl"] = url
    return response


async def verify_email(db: AsyncSession, token: str | None) -> str | None:
    """Consume a verification token. Returns None on success, else an outcome code."""
    if not token:
        return MISSING_TOKEN

    record = (await db.execute(
        select(EmailVerificationToken).where(EmailVerificationToken.token == token)
    )).scalar_one_or_none()
    if record is None:
        return INVALID_TOKEN
    if record.used_at is not None:
        return ALREADY_USED
    now = utcnow()
    if as_utc(record.expires_at) < now:
        return EXPIRED

    consumed = await db.execute(
        update(EmailVerificationToken)
        .where(EmailVerificationToken.id == record.id, EmailVerificationToken.used_at.is_(None))
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    if consumed.rowcount != 1:
        await db.rollback()
        return ALREADY_USED

    await db.execute(
        update(User)
        .where(User.id == record.user_id)
        .values(email_confirmed=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Email verified for user %s", record.user_id)
    return None
