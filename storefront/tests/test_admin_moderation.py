"""Admin moderation: authorization, admin membership, seller and product
status changes, suspension, and the audit trail each action leaves."""

import json

import pytest
from sqlalchemy import func, select

from storefront.models.admin import AdminAuditLog, AdminUser
from storefront.models.product import Product
from storefront.models.seller import Seller


async def _audit_rows(db, action: str) -> list[AdminAuditLog]:
    result = await db.execute(select(AdminAuditLog).where(AdminAuditLog.action == action))
    return list(result.scalars().all())


class TestAdminAuthorization:
    @pytest.mark.parametrize("method,path", [
        ("get", "/api/admin/admin-users"),
        ("get", "/api/admin/sellers"),
        ("get", "/api/admin/payouts"),
        ("get", "/api/admin/audit-logs"),
        ("post", "/api/admin/payouts/p1/process"),
    ])
    async def test_requires_session(self, client, method, path):
        resp = await client.request(method.upper(), path)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    async def test_rejects_invalid_token(self, client):
        resp = await client.get("/api/admin/admin-users", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    async def test_non_admin_forbidden(self, client, make_user, auth_header):
        _, token = await make_user()

        resp = await client.get("/api/admin/admin-users", headers=auth_header(token))

        assert resp.status_code == 403
        assert resp.json() == {"error": "Forbidden"}

    async def test_non_admin_cannot_mutate(self, client, db, make_user, make_seller, auth_header):
        _, token = await make_user()
        seller, _ = await make_seller()

        resp = await client.post(
            f"/api/admin/sellers/{seller.id}/suspend", json={"suspend": True}, headers=auth_header(token),
        )

        assert resp.status_code == 403
        await db.refresh(seller)
        assert seller.seller_status == "active"


class TestAdminMembership:
    async def test_list_admins_with_emails(self, client, make_admin, auth_header):
        _, token = await make_admin(email="root@example.com")

        resp = await client.get("/api/admin/admin-users", headers=auth_header(token))

        assert resp.status_code == 200
        assert [a["email"] for a in resp.json()["admins"]] == ["root@example.com"]

    async def test_add_admin_by_normalized_email(self, client, db, make_admin, make_user, auth_header):
        admin, token = await make_admin()
        target, _ = await make_user(email="new.admin@example.com")

        resp = await client.post(
            "/api/admin/admin-users", json={"email": "  New.Admin@Example.com "}, headers=auth_header(token),
        )

        assert resp.status_code == 200
        assert resp.json()["admin"]["user_id"] == target.id
        assert await db.get(AdminUser, target.id) is not None
        audit = (await _audit_rows(db, "add_admin"))[0]
        assert audit.admin_id == admin.id
        assert audit.entity_id == target.id

    async def test_add_admin_errors(self, client, make_admin, make_user, auth_header):
        other_admin, _ = await make_admin(email="second@example.com")
        _, token = await make_admin()

        empty = await client.post("/api/admin/admin-users", json={"email": ""}, headers=auth_header(token))
        unknown = await client.post(
            "/api/admin/admin-users", json={"email": "ghost@example.com"}, headers=auth_header(token),
        )
        duplicate = await client.post(
            "/api/admin/admin-users", json={"email": "second@example.com"}, headers=auth_header(token),
        )

        assert empty.status_code == 400
        assert empty.json() == {"error": "Email is required"}
        assert unknown.status_code == 404
        assert duplicate.status_code == 409
        assert duplicate.json() == {"error": "User is already an admin"}

    async def test_cannot_remove_last_admin(self, client, db, make_admin, auth_header):
        admin, token = await make_admin()

        resp = await client.delete(f"/api/admin/admin-users/{admin.id}", headers=auth_header(token))

        assert resp.status_code == 409
        assert resp.json() == {"error": "Cannot remove the last admin"}
        count = (await db.execute(select(func.count(AdminUser.user_id)))).scalar()
        assert count == 1
        assert await _audit_rows(db, "remove_admin") == []

    async def test_remove_admin_records_prior_state(self, client, db, make_admin, auth_header):
        admin, token = await make_admin()
        other, _ = await make_admin()

        resp = await client.delete(f"/api/admin/admin-users/{other.id}", headers=auth_header(token))

        assert resp.status_code == 200
        count = (await db.execute(select(func.count(AdminUser.user_id)))).scalar()
        assert count == 1
        audit = (await _audit_rows(db, "remove_admin"))[0]
        assert json.loads(audit.before)["user_id"] == other.id
        assert audit.after is None

    async def test_remove_unknown_admin(self, client, make_admin, auth_header):
        _, token = await make_admin()

        resp = await client.delete("/api/admin/admin-users/nobody", headers=auth_header(token))

        assert resp.status_code == 404


class TestSellerModeration:
    async def test_update_seller_status(self, client, db, make_admin, make_seller, auth_header):
        _, token = await make_admin()
        seller, _ = await make_seller()

        resp = await client.patch(
            f"/api/admin/sellers/{seller.id}/status",
            json={"seller_status": "payouts_locked"},
            headers=auth_header(token),
        )

        assert resp.status_code == 200
        assert resp.json()["seller"]["seller_status"] == "payouts_locked"
        audit = (await _audit_rows(db, "update_seller_status"))[0]
        assert json.loads(audit.before) == {"seller_status": "active"}
        assert json.loads(audit.after) == {"seller_status": "payouts_locked"}

    async def test_update_seller_status_validation(self, client, make_admin, make_seller, auth_header):
        _, token = await make_admin()
        seller, _ = await make_seller()

        bad = await client.patch(
            f"/api/admin/sellers/{seller.id}/status", json={"seller_status": "banned"}, headers=auth_header(token),
        )
        missing = await client.patch(
            "/api/admin/sellers/nope/status", json={"seller_status": "active"}, headers=auth_header(token),
        )

        assert bad.status_code == 400
        assert bad.json() == {"error": "Invalid seller status"}
        assert missing.status_code == 404

    async def test_suspend_sets_bookkeeping_and_audit(self, client, db, make_admin, make_seller, auth_header):
        admin, token = await make_admin()
        seller, _ = await make_seller()

        resp = await client.post(
            f"/api/admin/sellers/{seller.id}/suspend",
            json={"suspend": True, "reason": "Chargebacks"},
            headers=auth_header(token),
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "message": "Seller suspended",
            "seller_id": seller.id,
            "is_suspended": True,
        }
        refreshed = (await db.execute(
            select(Seller).where(Seller.id == seller.id).execution_options(populate_existing=True)
        )).scalar_one()
        assert refreshed.seller_status == "suspended"
        assert refreshed.suspended_by == admin.id
        assert refreshed.suspension_reason == "Chargebacks"
        assert refreshed.suspended_at is not None
        assert len(await _audit_rows(db, "suspend_seller")) == 1

    async def test_unsuspend_clears_bookkeeping(self, client, db, make_admin, make_seller, auth_header):
        _, token = await make_admin()
        seller, _ = await make_seller()
        await client.post(
            f"/api/admin/sellers/{seller.id}/suspend", json={"suspend": True}, headers=auth_header(token),
        )

        resp = await client.post(
            f"/api/admin/sellers/{seller.id}/suspend", json={"suspend": False}, headers=auth_header(token),
        )

        assert resp.json()["message"] == "Seller unsuspended"
        await db.refresh(seller)
        assert seller.seller_status == "active"
        assert seller.suspended_at is None
        assert len(await _audit_rows(db, "unsuspend_seller")) == 1

    @pytest.mark.parametrize("value", ["yes", 1, None])
    async def test_suspend_requires_boolean(self, client, make_admin, make_seller, auth_header, value):
        _, token = await make_admin()
        seller, _ = await make_seller()

        resp = await client.post(
            f"/api/admin/sellers/{seller.id}/suspend", json={"suspend": value}, headers=auth_header(token),
        )

        assert resp.status_code == 400
        assert resp.json() == {"error": "'suspend' must be a boolean"}

    async def test_suspend_unknown_seller(self, client, db, make_admin, auth_header):
        _, token = await make_admin()

        resp = await client.post("/api/admin/sellers/ghost/suspend", json={"suspend": True}, headers=auth_header(token))

        assert resp.status_code == 404
        assert await _audit_rows(db, "suspend_seller") == []

    async def test_list_sellers_by_status(self, client, make_admin, make_seller, auth_header):
        _, token = await make_admin()
        await make_seller()
        locked, _ = await make_seller(seller_status="payouts_locked")

        resp = await client.get("/api/admin/sellers?status=payouts_locked", headers=auth_header(token))

        assert [s["id"] for s in resp.json()["sellers"]] == [locked.id]


class TestProductModeration:
    async def test_update_product_status(self, client, db, make_admin, make_seller, make_product, auth_header):
        _, token = await make_admin()
        seller, _ = await make_seller()
        product = await make_product(seller.id)

        resp = await client.patch(
            f"/api/admin/products/{product.id}/status", json={"status": "archived"}, headers=auth_header(token),
        )

        assert resp.status_code == 200
        status = (await db.execute(select(Product.status).where(Product.id == product.id))).scalar_one()
        assert status == "archived"
        assert len(await _audit_rows(db, "update_product_status")) == 1

    async def test_invalid_product_status(self, client, make_admin, make_seller, make_product, auth_header):
        _, token = await make_admin()
        seller, _ = await make_seller()
        product = await make_product(seller.id)

        resp = await client.patch(
            f"/api/admin/products/{product.id}/status", json={"status": "deleted"}, headers=auth_header(token),
        )

        assert resp.status_code == 400


class TestAuditLogListing:
    async def test_filter_by_entity_type(self, client, make_admin, make_seller, make_product, auth_header):
        _, token = await make_admin()
        seller, _ = await make_seller()
        product = await make_product(seller.id)
        await client.post(f"/api/admin/sellers/{seller.id}/suspend", json={"suspend": True}, headers=auth_header(token))
        await client.patch(
            f"/api/admin/products/{product.id}/status", json={"status": "draft"}, headers=auth_header(token),
        )

        resp = await client.get("/api/admin/audit-logs?entity_type=product", headers=auth_header(token))

        body = resp.json()
        assert body["total"] == 1
        assert body["entries"][0]["action"] == "update_product_status"
        assert body["entries"][0]["after"] == {"status": "draft"}
