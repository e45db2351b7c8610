"""PayPal REST client against a mocked transport."""

import json
from decimal import Decimal

import httpx
import pytest

from storefront.config import settings
from storefront.services.paypal_service import PayPalClient, PayPalError, get_paypal_client, parse_capture


def _client(handler, **kwargs) -> PayPalClient:
    return PayPalClient(
        client_id="client-id",
        client_secret="client-secret",
        base_url="https://paypal.test",
        webhook_id=kwargs.get("webhook_id", ""),
        transport=httpx.MockTransport(handler),
    )


def _router(routes: dict):
    """Build a MockTransport handler from {path: (status, json)}."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "tok-1"})
        status, body = routes[request.url.path]
        return httpx.Response(status, json=body)

    handler.calls = calls
    return handler


def _capture_body(status="COMPLETED", capture_id="CAP-1", value="40.00"):
    return {
        "id": "ORDER-1",
        "status": status,
        "purchase_units": [{"payments": {"captures": [{"id": capture_id, "amount": {"value": value}}]}}],
    }


class TestCapture:
    async def test_completed_capture(self):
        handler = _router({"/v2/checkout/orders/ORDER-1/capture": (201, _capture_body())})

        result = await _client(handler).capture_order("ORDER-1")

        assert result.completed
        assert result.capture_id == "CAP-1"
        assert result.amount == Decimal("40.00")
        token_call, capture_call = handler.calls
        assert token_call.headers["authorization"].startswith("Basic ")
        assert capture_call.headers["authorization"] == "Bearer tok-1"

    async def test_rejected_capture_is_not_completed(self):
        handler = _router({
            "/v2/checkout/orders/ORDER-1/capture": (422, {"name": "UNPROCESSABLE_ENTITY", "details": []}),
        })

        result = await _client(handler).capture_order("ORDER-1")

        assert not result.completed
        assert result.status == "UNPROCESSABLE_ENTITY"

    async def test_timeout_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(PayPalError):
            await _client(handler).capture_order("ORDER-1")

    async def test_auth_failure_raises(self):
        def handler(request):
            return httpx.Response(401, json={"error": "invalid_client"})

        with pytest.raises(PayPalError):
            await _client(handler).capture_order("ORDER-1")

    async def test_non_json_auth_response_raises(self):
        def handler(request):
            return httpx.Response(200, text="<html>maintenance</html>")

        with pytest.raises(PayPalError, match="not valid JSON"):
            await _client(handler).capture_order("ORDER-1")

    def test_parse_capture_without_purchase_units(self):
        result = parse_capture({"id": "ORDER-2", "status": "PAYER_ACTION_REQUIRED"})
        assert result.status == "PAYER_ACTION_REQUIRED"
        assert result.capture_id == "ORDER-2"
        assert result.amount is None


class TestCreateOrder:
    async def test_sends_server_total(self):
        handler = _router({"/v2/checkout/orders": (201, {"id": "ORDER-9"})})

        order_id = await _client(handler).create_order(
            Decimal("25"), [{"name": "Guide", "quantity": 1, "unit_price": Decimal("25"), "license_type": "personal"}],
        )

        assert order_id == "ORDER-9"
        payload = json.loads(handler.calls[-1].content)
        assert payload["intent"] == "CAPTURE"
        assert payload["purchase_units"][0]["amount"]["value"] == "25.00"

    async def test_simulated_without_credentials(self):
        client = PayPalClient()
        assert client.simulated
        assert (await client.create_order(Decimal("1"), [])).startswith("SIM-ORDER-")


class TestPayouts:
    async def test_payout_batch_id(self):
        handler = _router({
            "/v1/payments/payouts": (201, {"batch_header": {"payout_batch_id": "BATCH-1", "batch_status": "PENDING"}}),
        })

        result = await _client(handler).create_payout("req-123456789", Decimal("20"), "s@example.com", "PAYOUT_1")

        assert result.batch_id == "BATCH-1"
        item = json.loads(handler.calls[-1].content)["items"][0]
        assert item["sender_item_id"] == "req-123456789"
        assert item["amount"] == {"value": "20.00", "currency": "USD"}

    async def test_payout_error_message(self):
        handler = _router({
            "/v1/payments/payouts": (422, {"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "RECEIVER_UNREGISTERED"}]}),
        })

        with pytest.raises(PayPalError, match="RECEIVER_UNREGISTERED"):
            await _client(handler).create_payout("req-1", Decimal("20"), "s@example.com", "PAYOUT_2")


class TestWebhookVerification:
    _headers = {
        "paypal-transmission-id": "t-1",
        "paypal-transmission-time": "2024-01-01T00:00:00Z",
        "paypal-transmission-sig": "sig",
        "paypal-cert-url": "https://api.paypal.com/cert",
        "paypal-auth-algo": "SHA256withRSA",
    }

    async def test_success(self):
        handler = _router({"/v1/notifications/verify-webhook-signature": (200, {"verification_status": "SUCCESS"})})

        assert await _client(handler, webhook_id="WH-1").verify_webhook_signature(self._headers, {"id": "E-1"})
        body = json.loads(handler.calls[-1].content)
        assert body["webhook_id"] == "WH-1"
        assert body["webhook_event"] == {"id": "E-1"}

    async def test_failure_status(self):
        handler = _router({"/v1/notifications/verify-webhook-signature": (200, {"verification_status": "FAILURE"})})

        assert not await _client(handler, webhook_id="WH-1").verify_webhook_signature(self._headers, {})

    async def test_missing_headers(self):
        handler = _router({})

        assert not await _client(handler, webhook_id="WH-1").verify_webhook_signature({}, {})
        assert handler.calls == []


class TestGetCapture:
    async def test_completed_capture_with_amount(self):
        handler = _router({
            "/v2/payments/captures/CAP-1": (200, {"id": "CAP-1", "status": "COMPLETED", "amount": {"value": "20.00"}}),
        })

        result = await _client(handler).get_capture("CAP-1")

        assert result.completed
        assert result.capture_id == "CAP-1"
        assert result.amount == Decimal("20.00")
        assert handler.calls[-1].method == "GET"

    async def test_unknown_capture_is_not_completed(self):
        handler = _router({"/v2/payments/captures/CAP-X": (404, {"name": "RESOURCE_NOT_FOUND"})})

        result = await _client(handler).get_capture("CAP-X")

        assert not result.completed
        assert result.status == "RESOURCE_NOT_FOUND"

    async def test_simulated_accepts_only_simulated_ids(self):
        client = PayPalClient()

        assert (await client.get_capture("SIM-CAPTURE-1")).completed
        assert not (await client.get_capture("CAP-TYPED-BY-HAND")).completed


class TestClientFactory:
    def test_defaults_to_checkout_webhook_id(self, monkeypatch):
        monkeypatch.setattr(settings, "paypal_checkout_webhook_id", "WH-CHECKOUT")

        assert get_paypal_client().webhook_id == "WH-CHECKOUT"
        assert get_paypal_client(webhook_id="WH-PAYOUTS").webhook_id == "WH-PAYOUTS"
