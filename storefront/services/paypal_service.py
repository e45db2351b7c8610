"""PayPal REST integration: checkout orders, captures, payouts, webhook checks.

Operates in simulated mode when no client credentials are configured (never
in production, see config.validate_security_posture), and calls the PayPal
REST API over httpx otherwise. Every outbound call carries an explicit
timeout; callers treat a timeout as "payment not confirmed".

Requires: PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET env vars for live mode.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

import httpx

from storefront.config import settings

logger = logging.getLogger(__name__)


class PayPalError(Exception):
    """Transport failure or non-2xx response from PayPal."""


@dataclass
class CaptureResult:
    status: str
    capture_id: str | None = None
    amount: Decimal | None = None
    raw: dict = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"


@dataclass
class PayoutBatchResult:
    batch_id: str
    batch_status: str
    raw: dict = field(default_factory=dict)


def _money(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


def parse_capture(data: dict) -> CaptureResult:
    """Decode a capture response body into a CaptureResult."""
    capture_id = None
    amount = None
    try:
        capture = data["purchase_units"][0]["payments"]["captures"][0]
        capture_id = capture.get("id")
        if capture.get("amount", {}).get("value") is not None:
            amount = Decimal(str(capture["amount"]["value"]))
    except (KeyError, IndexError, TypeError):
        pass
    return CaptureResult(
        status=str(data.get("status") or data.get("name") or "UNKNOWN"),
        capture_id=capture_id or data.get("id"),
        amount=amount,
        raw=data,
    )


class PayPalClient:
    """PayPal REST operations with OAuth client-credentials auth."""

    def __init__(
        self,
        client_id: str = "",
        client_secret: str = "",
        base_url: str = "https://api-m.sandbox.paypal.com",
        timeout: float = 15.0,
        webhook_id: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url
        self.timeout = timeout
        self.webhook_id = webhook_id
        self._transport = transport
        self._simulated = not (client_id and client_secret)

    @property
    def simulated(self) -> bool:
        return self._simulated

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        try:
            response = await client.post(
                "/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            raise PayPalError(f"PayPal auth request failed: {exc.__class__.__name__}") from exc
        if response.status_code >= 400:
            logger.error("PayPal auth failed: status=%s body=%s", response.status_code, response.text[:500])
            raise PayPalError(f"PayPal auth failed: {response.status_code}")
        try:
            token = response.json().get("access_token")
        except (ValueError, AttributeError) as exc:
            raise PayPalError("PayPal auth response was not valid JSON") from exc
        if not token:
            raise PayPalError("PayPal auth response missing access_token")
        return token

    async def create_order(self, total: Decimal, items: list[dict], custom_id: str | None = None) -> str:
        """Create a CAPTURE-intent checkout order. Returns the PayPal order id."""
        if self._simulated:
            return f"SIM-ORDER-{uuid.uuid4().hex[:16].upper()}"

        purchase_unit = {
            "amount": {
                "currency_code": "USD",
                "value": _money(total),
                "breakdown": {"item_total": {"currency_code": "USD", "value": _money(total)}},
            },
            "items": [
                {
                    "name": item["name"][:127],
                    "quantity": str(item["quantity"]),
                    "unit_amount": {"currency_code": "USD", "value": _money(item["unit_price"])},
                    "description": f"License: {item['license_type']}",
                }
                for item in items
            ],
        }
        if custom_id:
            purchase_unit["custom_id"] = custom_id

        async with self._http() as client:
            token = await self._access_token(client)
            try:
                response = await client.post(
                    "/v2/checkout/orders",
                    json={"intent": "CAPTURE", "purchase_units": [purchase_unit]},
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.HTTPError as exc:
                raise PayPalError(f"PayPal create order failed: {exc.__class__.__name__}") from exc

        if response.status_code >= 400:
            logger.error("PayPal order creation failed: status=%s body=%s", response.status_code, response.text[:500])
            raise PayPalError(f"PayPal create order failed: {response.status_code}")
        try:
            order_id = response.json().get("id")
        except (ValueError, AttributeError) as exc:
            raise PayPalError("PayPal create order response was not valid JSON") from exc
        if not order_id:
            raise PayPalError("PayPal create order response missing id")
        return order_id

    async def capture_order(self, order_id: str) -> CaptureResult:
        """Capture an approved checkout order.

        Raises PayPalError on transport failure or timeout. A declined or
        already-captured order comes back as a CaptureResult whose status is
        not COMPLETED.
        """
        if self._simulated:
            return CaptureResult(
                status="COMPLETED",
                capture_id=f"SIM-CAPTURE-{uuid.uuid4().hex[:16].upper()}",
                raw={"id": order_id, "status": "COMPLETED", "simulated": True},
            )

        async with self._http() as client:
            token = await self._access_token(client)
            try:
                response = await client.post(
                    f"/v2/checkout/orders/{order_id}/capture",
                    headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                )
            except httpx.HTTPError as exc:
                raise PayPalError(f"PayPal capture failed: {exc.__class__.__name__}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 400:
            logger.warning("PayPal capture rejected: order=%s status=%s", order_id, response.status_code)
            data.setdefault("status", data.get("name") or f"HTTP_{response.status_code}")
        return parse_capture(data)

    async def get_capture(self, capture_id: str) -> CaptureResult:
        """Look up a payment capture. An unknown id comes back with a non-COMPLETED status."""
        if self._simulated:
            if capture_id.startswith("SIM-CAPTURE-"):
                return CaptureResult(status="COMPLETED", capture_id=capture_id, raw={"simulated": True})
            return CaptureResult(status="RESOURCE_NOT_FOUND", capture_id=capture_id, raw={"simulated": True})

        async with self._http() as client:
            token = await self._access_token(client)
            try:
                response = await client.get(
                    f"/v2/payments/captures/{capture_id}",
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.HTTPError as exc:
                raise PayPalError(f"PayPal capture lookup failed: {exc.__class__.__name__}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise PayPalError("PayPal capture lookup returned invalid JSON") from exc
        if response.status_code >= 400:
            return CaptureResult(
                status=str(data.get("name") or f"HTTP_{response.status_code}"),
                capture_id=capture_id,
                raw=data,
            )

        amount = (data.get("amount") or {}).get("value")
        return CaptureResult(
            status=str(data.get("status") or "UNKNOWN"),
            capture_id=data.get("id") or capture_id,
            amount=Decimal(str(amount)) if amount is not None else None,
            raw=data,
        )

    async def create_payout(
        self,
        request_id: str,
        amount: Decimal,
        receiver: str,
        batch_id: str,
    ) -> PayoutBatchResult:
        """Send one payout item to a PayPal email via the Payouts API."""
        if self._simulated:
            return PayoutBatchResult(
                batch_id=f"SIM-BATCH-{uuid.uuid4().hex[:12].upper()}",
                batch_status="PENDING",
                raw={"simulated": True},
            )

        payload = {
            "sender_batch_header": {
                "sender_batch_id": batch_id,
                "email_subject": "You have received a payout from Digital Store",
                "email_message": "Your payout has been processed successfully.",
            },
            "items": [
                {
                    "recipient_type": "EMAIL",
                    "amount": {"value": _money(amount), "currency": "USD"},
                    "receiver": receiver,
                    "note": f"Payout for seller earnings - Request #{request_id[:8]}",
                    "sender_item_id": request_id,
                }
            ],
        }
        async with self._http() as client:
            token = await self._access_token(client)
            try:
                response = await client.post(
                    "/v1/payments/payouts",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.HTTPError as exc:
                raise PayPalError(f"PayPal payout failed: {exc.__class__.__name__}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 400:
            details = data.get("details") or [{}]
            message = (
                data.get("message")
                or data.get("error_description")
                or details[0].get("issue")
                or "PayPal payout failed"
            )
            raise PayPalError(message)

        header = data.get("batch_header") or {}
        if not header.get("payout_batch_id"):
            raise PayPalError("PayPal payout response missing batch id")
        return PayoutBatchResult(
            batch_id=header["payout_batch_id"],
            batch_status=header.get("batch_status", "PENDING"),
            raw=data,
        )

    async def verify_webhook_signature(self, headers: dict[str, str], event: dict) -> bool:
        """Ask PayPal to verify a webhook transmission. False on any failure."""
        if not self.webhook_id:
            logger.warning("No PayPal webhook id configured, skipping verification")
            return not settings.is_production
        if self._simulated:
            return not settings.is_production

        required = (
            "paypal-transmission-id",
            "paypal-transmission-time",
            "paypal-transmission-sig",
            "paypal-cert-url",
        )
        if any(not headers.get(h) for h in required):
            logger.error("Missing PayPal signature headers")
            return False

        body = {
            "auth_algo": headers.get("paypal-auth-algo"),
            "cert_url": headers["paypal-cert-url"],
            "transmission_id": headers["paypal-transmission-id"],
            "transmission_sig": headers["paypal-transmission-sig"],
            "transmission_time": headers["paypal-transmission-time"],
            "webhook_id": self.webhook_id,
            "webhook_event": event,
        }
        try:
            async with self._http() as client:
                token = await self._access_token(client)
                response = await client.post(
                    "/v1/notifications/verify-webhook-signature",
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                )
            verified = response.json().get("verification_status") == "SUCCESS"
        except (PayPalError, httpx.HTTPError, ValueError):
            logger.exception("PayPal webhook verification error")
            return False
        if not verified:
            logger.error("PayPal webhook signature rejected")
        return verified


def get_paypal_client(webhook_id: str | None = None) -> PayPalClient:
    """Build a client from current settings. Clients hold no per-request state.

    PayPal issues a separate webhook id per listener URL, so callers that
    verify webhooks pass the id for their listener; the checkout one is the
    default.
    """
    return PayPalClient(
        client_id=settings.paypal_client_id,
        client_secret=settings.paypal_client_secret,
        base_url=settings.paypal_api_base,
        timeout=settings.paypal_timeout_seconds,
        webhook_id=settings.paypal_checkout_webhook_id if webhook_id is None else webhook_id,
    )
