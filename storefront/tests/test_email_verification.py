"""Email verification tokens: issuing with cooldown, and one-time consumption."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from storefront.config import settings
from storefront.core.async_tasks import drain_background_tasks
from storefront.models.logs import EmailLog
from storefront.models.user import User
from storefront.models.verification import EmailVerificationToken
from storefront.services import verification_service


async def _issue_token(db, user, **kwargs) -> EmailVerificationToken:
    now = datetime.now(timezone.utc)
    record = EmailVerificationToken(
        user_id=user.id,
        token=verification_service.new_verification_token(),
        expires_at=kwargs.get("expires_at", now + timedelta(hours=24)),
        used_at=kwargs.get("used_at"),
    )
    db.add(record)
    await db.commit()
    return record


class TestSendVerification:
    async def test_send_creates_token_and_email(self, client, db, make_user, auth_header, monkeypatch):
        monkeypatch.setattr(settings, "environment", "development")
        user, token = await make_user(email="new@example.com")

        resp = await client.post("/api/auth/send-verification", headers=auth_header(token))
        await drain_background_tasks()

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        record = (await db.execute(select(EmailVerificationToken))).scalar_one()
        assert record.user_id == user.id
        assert body["verificationUrl"].endswith(f"/api/auth/verify-email?token={record.token}")
        email = (await db.execute(select(EmailLog))).scalar_one()
        assert email.template == "email_verification"
        assert email.recipient == "new@example.com"

    async def test_url_hidden_outside_development(self, client, make_user, auth_header, monkeypatch):
        monkeypatch.setattr(settings, "environment", "test")
        _, token = await make_user()

        resp = await client.post("/api/auth/send-verification", headers=auth_header(token))

        assert resp.status_code == 200
        assert "verificationUrl" not in resp.json()

    async def test_token_format(self):
        token = verification_service.new_verification_token()
        prefix, secret = token[:36], token[37:]
        assert token[36] == "-"
        assert len(prefix.split("-")) == 5
        assert len(secret) == 64
        int(secret, 16)

    async def test_cooldown_returns_wait_seconds(self, client, make_user, auth_header):
        _, token = await make_user(
            last_verification_sent_at=datetime.now(timezone.utc) - timedelta(seconds=30),
        )

        resp = await client.post("/api/auth/send-verification", headers=auth_header(token))

        assert resp.status_code == 429
        body = resp.json()
        assert 85 <= body["waitSeconds"] <= 90
        assert body["error"] == f"Please wait {body['waitSeconds']} seconds before requesting another email"
        assert resp.headers["retry-after"] == str(body["waitSeconds"])

    async def test_cooldown_elapsed(self, client, make_user, auth_header):
        _, token = await make_user(
            last_verification_sent_at=datetime.now(timezone.utc) - timedelta(seconds=121),
        )

        resp = await client.post("/api/auth/send-verification", headers=auth_header(token))

        assert resp.status_code == 200

    async def test_already_confirmed(self, client, make_user, auth_header):
        _, token = await make_user(email_confirmed=True)

        resp = await client.post("/api/auth/send-verification", headers=auth_header(token))

        assert resp.status_code == 400
        assert resp.json() == {"error": "Email already confirmed"}

    async def test_requires_session(self, client):
        resp = await client.post("/api/auth/send-verification")
        assert resp.status_code == 401


class TestVerifyEmail:
    async def test_valid_token_confirms_profile(self, client, db, make_user):
        user, _ = await make_user()
        record = await _issue_token(db, user)

        resp = await client.get(f"/api/auth/verify-email?token={record.token}")

        assert resp.status_code == 302
        assert resp.headers["location"] == f"{settings.site_url}/auth/verify-email?success=true"
        confirmed = (await db.execute(select(User.email_confirmed).where(User.id == user.id))).scalar_one()
        assert confirmed is True

    async def test_token_is_single_use(self, client, db, make_user):
        user, _ = await make_user()
        record = await _issue_token(db, user)

        await client.get(f"/api/auth/verify-email?token={record.token}")
        resp = await client.get(f"/api/auth/verify-email?token={record.token}")

        assert resp.headers["location"].endswith("?error=already_used")

    async def test_missing_token(self, client):
        resp = await client.get("/api/auth/verify-email")
        assert resp.headers["location"].endswith("?error=missing_token")

    async def test_unknown_token(self, client):
        resp = await client.get("/api/auth/verify-email?token=nope")
        assert resp.headers["location"].endswith("?error=invalid_token")

    async def test_expired_token(self, client, db, make_user):
        user, _ = await make_user()
        record = await _issue_token(db, user, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))

        resp = await client.get(f"/api/auth/verify-email?token={record.token}")

        assert resp.headers["location"].endswith("?error=expired")
        confirmed = (await db.execute(select(User.email_confirmed).where(User.id == user.id))).scalar_one()
        assert confirmed is False

    async def test_used_is_checked_before_expiry(self, db, make_user):
        user, _ = await make_user()
        now = datetime.now(timezone.utc)
        record = await _issue_token(db, user, expires_at=now - timedelta(hours=1), used_at=now - timedelta(hours=2))

        assert await verification_service.verify_email(db, record.token) == verification_service.ALREADY_USED
