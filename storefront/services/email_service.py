"""Transactional email through the Resend HTTP API.

Every send is recorded in email_logs (pending, then sent or failed). Without
a RESEND_API_KEY the service runs in simulated mode: the log row is written
and marked sent, nothing leaves the process.
"""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.async_tasks import fire_and_forget
from storefront.database import async_session
from storefront.models.logs import EmailLog

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass
class EmailResult:
    success: bool
    error: str | None = None
    log_id: str | None = None
    message_id: str | None = None


async def send_email(
    db: AsyncSession,
    *,
    to: str,
    subject: str,
    html_body: str,
    template: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> EmailResult:
    """Send one email and record the attempt. Never raises on delivery failure."""
    simulated = not settings.resend_api_key
    log = EmailLog(
        recipient=to,
        subject=subject,
        template=template,
        reference_type=reference_type,
        reference_id=reference_id,
        provider="simulated" if simulated else "resend",
        status="pending",
    )
    db.add(log)
    await db.flush()

    if simulated:
        logger.info("Email not configured - simulated send to=%s template=%s", to, template)
        log.status = "sent"
        log.provider_message_id = f"simulated-{log.id[:8]}"
        log.sent_at = datetime.now(timezone.utc)
        await db.commit()
        return EmailResult(success=True, log_id=log.id, message_id=log.provider_message_id)

    error = None
    message_id = None
    try:
        async with httpx.AsyncClient(timeout=settings.email_timeout_seconds) as client:
            response = await client.post(
                RESEND_API_URL,
                json={"from": settings.email_from, "to": [to], "subject": subject, "html": html_body},
                headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            )
        if response.status_code >= 400:
            try:
                error = response.json().get("message") or f"HTTP {response.status_code}"
            except ValueError:
                error = f"HTTP {response.status_code}"
        else:
            message_id = response.json().get("id")
    except httpx.HTTPError as exc:
        error = f"{exc.__class__.__name__}: {exc}"

    if error:
        logger.error("Email send failed: to=%s template=%s error=%s", to, template, error)
        log.status = "failed"
        log.error = error[:1000]
    else:
        logger.info("Email sent: to=%s template=%s id=%s", to, template, message_id)
        log.status = "sent"
        log.provider_message_id = message_id
        log.sent_at = datetime.now(timezone.utc)
    await db.commit()
    return EmailResult(success=error is None, error=error, log_id=log.id, message_id=message_id)


def send_in_background(task_name: str, sender, **kwargs) -> None:
    """Run an email sender after the response, on its own session."""

    async def _send():
        async with async_session() as bg_db:
            result = await sender(bg_db, **kwargs)
        if not result.success:
            logger.warning("Background email %s failed: %s", task_name, result.error)

    fire_and_forget(_send(), task_name=task_name)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def _layout(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><body style=\"font-family:Segoe UI,Arial,sans-serif;"
        "background:#f4f4f4;padding:20px\">"
        "<div style=\"max-width:600px;margin:0 auto;background:#fff;border-radius:12px;padding:32px\">"
        f"<h1 style=\"margin-top:0\">{html.escape(title)}</h1>{body}"
        "<p style=\"color:#888;font-size:12px\">Digital Store</p>"
        "</div></body></html>"
    )


def _button(url: str, label: str) -> str:
    return f"<p><a href=\"{html.escape(url, quote=True)}\">{html.escape(label)}</a></p>"


def _usd(amount) -> str:
    return f"${Decimal(str(amount)):.2f}"


def verification_template(user_name: str, verification_url: str) -> str:
    return _layout(
        "Verify your email",
        f"<p>Hi {html.escape(user_name)},</p>"
        f"<p>Confirm your email address to finish setting up your account. "
        f"This link expires in {settings.email_verification_ttl_hours} hours.</p>"
        + _button(verification_url, "Verify My Email"),
    )


def receipt_template(buyer_name: str, order_short_id: str, items: list[dict], total, receipt_url: str) -> str:
    rows = "".join(
        f"<tr><td>{html.escape(item['title'])}</td><td align=\"right\">{_usd(item['price'])}</td></tr>"
        for item in items
    )
    return _layout(
        f"Order #{order_short_id} confirmed",
        f"<p>Hi {html.escape(buyer_name)}, thanks for your purchase.</p>"
        f"<table width=\"100%\">{rows}"
        f"<tr><td><strong>Total</strong></td><td align=\"right\"><strong>{_usd(total)}</strong></td></tr></table>"
        + _button(receipt_url, "Download Your Products"),
    )


def new_sale_template(seller_name: str, product_title: str, sale_amount, earnings, buyer_name: str) -> str:
    return _layout(
        "You made a sale",
        f"<p>Hi {html.escape(seller_name)},</p>"
        f"<p>{html.escape(buyer_name)} bought <strong>{html.escape(product_title)}</strong> "
        f"for {_usd(sale_amount)}. Your earnings of {_usd(earnings)} are held in escrow "
        f"for {settings.escrow_days} days before they become available.</p>"
        + _button(f"{settings.site_url}/seller/sales", "View Sales Dashboard"),
    )


def payout_sent_template(seller_name: str, amount, paypal_email: str, payout_id: str) -> str:
    return _layout(
        "Payout sent",
        f"<p>Hi {html.escape(seller_name)},</p>"
        f"<p>{_usd(amount)} has been sent to {html.escape(paypal_email)} "
        f"(request #{html.escape(payout_id[:8])}).</p>"
        + _button(f"{settings.site_url}/seller/payouts", "View Dashboard"),
    )


# ---------------------------------------------------------------------------
# Senders
# ---------------------------------------------------------------------------

async def send_verification_email(db: AsyncSession, *, user_id: str, to: str, user_name: str, verification_url: str) -> EmailResult:
    return await send_email(
        db,
        to=to,
        subject="Verify your email - Digital Store",
        html_body=verification_template(user_name, verification_url),
        template="email_verification",
        reference_type="verification",
        reference_id=user_id,
    )


def receipt_url_for(receipt_token: str) -> str:
    return f"{settings.site_url}/purchases/{receipt_token}/receipt"


async def send_receipt_email(
    db: AsyncSession,
    *,
    order_id: str,
    to: str,
    buyer_name: str,
    items: list[dict],
    total,
    receipt_token: str,
) -> EmailResult:
    short_id = order_id[:8].upper()
    return await send_email(
        db,
        to=to,
        subject=f"Order #{short_id} Confirmed!",
        html_body=receipt_template(buyer_name, short_id, items, total, receipt_url_for(receipt_token)),
        template="order_receipt",
        reference_type="order",
        reference_id=order_id,
    )


async def send_new_sale_email(
    db: AsyncSession,
    *,
    seller_id: str,
    to: str,
    seller_name: str,
    product_title: str,
    sale_amount,
    earnings,
    buyer_name: str,
) -> EmailResult:
    return await send_email(
        db,
        to=to,
        subject=f"New Sale: {product_title}",
        html_body=new_sale_template(seller_name, product_title, sale_amount, earnings, buyer_name),
        template="new_sale",
        reference_type="user",
        reference_id=seller_id,
    )


async def send_payout_sent_email(
    db: AsyncSession,
    *,
    payout_id: str,
    to: str,
    seller_name: str,
    amount,
    paypal_email: str,
) -> EmailResult:
    return await send_email(
        db,
        to=to,
        subject=f"Payout of {_usd(amount)} Sent!",
        html_body=payout_sent_template(seller_name, amount, paypal_email, payout_id),
        template="payout_confirmation",
        reference_type="payout",
        reference_id=payout_id,
    )
