"""Matured escrow release and the scheduler endpoint that triggers it."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select, update

from storefront.config import settings
from storefront.models.escrow import EscrowEntry
from storefront.models.order import Order
from storefront.services import escrow_service, order_service


async def _fulfilled_order(db, make_seller, make_product, make_order, escrow_days=14, price=20.0):
    seller, _ = await make_seller(commission_rate="0.10")
    product = await make_product(seller.id, price_b2c=price)
    order = await make_order(None, [product])
    await order_service.fulfill_order(db, order.id, f"CAP-{order.id[:8]}", escrow_days=escrow_days)
    await db.commit()
    return seller, order


class TestReleaseMaturedEscrow:
    async def test_release_moves_pending_to_available(self, db, make_seller, make_product, make_order):
        seller, _ = await _fulfilled_order(db, make_seller, make_product, make_order)
        later = datetime.now(timezone.utc) + timedelta(days=15)

        result = await escrow_service.release_matured_escrow(db, now=later)

        assert result == {"records_processed": 1, "total_amount_released": 18.0}
        await db.refresh(seller)
        assert seller.available_balance == Decimal("18.00")
        assert seller.pending_balance == Decimal("0")
        entry = (await db.execute(select(EscrowEntry))).scalar_one()
        assert entry.status == "released"
        assert entry.released_at is not None

    async def test_second_run_releases_nothing(self, db, make_seller, make_product, make_order):
        seller, _ = await _fulfilled_order(db, make_seller, make_product, make_order)
        later = datetime.now(timezone.utc) + timedelta(days=15)

        await escrow_service.release_matured_escrow(db, now=later)
        second = await escrow_service.release_matured_escrow(db, now=later)

        assert second == {"records_processed": 0, "total_amount_released": 0.0}
        await db.refresh(seller)
        assert seller.available_balance == Decimal("18.00")

    async def test_unmatured_entries_stay_held(self, db, make_seller, make_product, make_order):
        seller, _ = await _fulfilled_order(db, make_seller, make_product, make_order)

        result = await escrow_service.release_matured_escrow(db)

        assert result["records_processed"] == 0
        await db.refresh(seller)
        assert seller.pending_balance == Decimal("18.00")
        assert seller.available_balance == Decimal("0")

    async def test_entries_of_refunded_orders_are_not_released(
        self, db, make_seller, make_product, make_order,
    ):
        seller, order = await _fulfilled_order(db, make_seller, make_product, make_order)
        await db.execute(update(Order).where(Order.id == order.id).values(payment_status="refunded"))
        await db.commit()
        later = datetime.now(timezone.utc) + timedelta(days=15)

        result = await escrow_service.release_matured_escrow(db, now=later)

        assert result["records_processed"] == 0
        status = (await db.execute(select(EscrowEntry.status))).scalar_one()
        assert status == "held"
        await db.refresh(seller)
        assert seller.available_balance == Decimal("0")

    async def test_reversal_debits_pending_once(self, db, make_seller, make_product, make_order):
        seller, order = await _fulfilled_order(db, make_seller, make_product, make_order)

        first = await escrow_service.reverse_order_escrow(db, order.id)
        second = await escrow_service.reverse_order_escrow(db, order.id)
        await db.commit()

        assert first == Decimal("18.00")
        assert second == Decimal("0")
        await db.refresh(seller)
        assert seller.pending_balance == Decimal("0")

    async def test_released_entries_are_not_reversed(self, db, make_seller, make_product, make_order):
        seller, order = await _fulfilled_order(db, make_seller, make_product, make_order)
        await escrow_service.release_matured_escrow(db, now=datetime.now(timezone.utc) + timedelta(days=15))

        reversed_total = await escrow_service.reverse_order_escrow(db, order.id)
        await db.commit()

        assert reversed_total == Decimal("0")
        await db.refresh(seller)
        assert seller.available_balance == Decimal("18.00")


class TestReleaseEscrowEndpoint:
    async def test_requires_exact_bearer_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")

        missing = await client.get("/api/cron/release-escrow")
        wrong = await client.get("/api/cron/release-escrow", headers={"Authorization": "Bearer nope"})
        bare = await client.get("/api/cron/release-escrow", headers={"Authorization": "s3cret"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert bare.status_code == 401
        assert missing.json() == {"error": "Unauthorized"}

    async def test_releases_with_valid_secret(
        self, client, db, monkeypatch, make_seller, make_product, make_order,
    ):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")
        seller, _ = await _fulfilled_order(db, make_seller, make_product, make_order, escrow_days=-1)

        resp = await client.get("/api/cron/release-escrow", headers={"Authorization": "Bearer s3cret"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["records_processed"] == 1
        assert body["total_amount_released"] == 18.0
        assert "timestamp" in body
        await db.refresh(seller)
        assert seller.available_balance == Decimal("18.00")

    async def test_missing_secret_in_production_refuses(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "")
        monkeypatch.setattr(settings, "environment", "production")

        resp = await client.get("/api/cron/release-escrow")

        assert resp.status_code == 500
        assert resp.json() == {"error": "Server misconfiguration"}

    async def test_missing_secret_outside_production_runs(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "")
        monkeypatch.setattr(settings, "environment", "development")

        resp = await client.get("/api/cron/release-escrow")

        assert resp.status_code == 200
        assert resp.json()["records_processed"] == 0
