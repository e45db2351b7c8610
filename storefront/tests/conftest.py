"""Shared test fixtures for the storefront test suite.

Each test gets its own file-backed SQLite database under tmp_path. Sessions
open their own connections, so a request session and a background email
session commit and roll back independently, as they do in production.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from storefront.core.async_tasks import drain_background_tasks
from storefront.database import Base, get_db
from storefront.main import app
from storefront.models import *  # noqa: ensure all models are loaded for create_all


def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


# ---------------------------------------------------------------------------
# Per-test SQLite database
# ---------------------------------------------------------------------------

@pytest.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storefront-test.db'}",
        poolclass=NullPool,
        echo=False,
    )
    event.listen(engine.sync_engine, "connect", _set_sqlite_pragma)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Auto-use: create tables for every test and reset global state
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
async def _setup_db(monkeypatch, tmp_path, test_engine, session_factory):
    """Create all tables before each test. Also reset global state."""
    from storefront.services import email_service, storage_service
    from storefront.services.cache_service import dashboard_cache
    from storefront.storage.local_store import LocalFileStore

    dashboard_cache.clear()

    # Background emails open their own session; point it at the test DB
    monkeypatch.setattr(email_service, "async_session", session_factory)

    # Product files live in a per-test directory
    monkeypatch.setattr(
        storage_service,
        "_storage",
        LocalFileStore(root_dir=str(tmp_path / "downloads"), signing_secret="test-signing-secret"),
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await drain_background_tasks()


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def db(session_factory):
    """Yield a fresh AsyncSession for direct service-layer tests."""
    async with session_factory() as session:
        yield session


def _override_get_db(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session
    return _get_db


@pytest.fixture
async def client(session_factory):
    """httpx AsyncClient wired to the FastAPI app with test DB override."""
    import httpx

    app.dependency_overrides[get_db] = _override_get_db(session_factory)

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
async def lenient_client(session_factory):
    """Like `client`, but returns 500 responses instead of re-raising app errors."""
    import httpx

    app.dependency_overrides[get_db] = _override_get_db(session_factory)

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------

def _new_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def auth_header():
    """Return a callable that builds an Authorization header from a JWT."""
    def _build(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}
    return _build


@pytest.fixture
def make_user(db: AsyncSession):
    """Factory fixture: create a User and return (user, session_token)."""
    from storefront.core.auth import create_session_token
    from storefront.models.user import User

    async def _make(email: str = None, full_name: str = "Test Buyer", **kwargs):
        email = email or f"user-{_new_id()[:8]}@test.com"
        user = User(
            id=_new_id(),
            email=email,
            full_name=full_name,
            email_confirmed=kwargs.get("email_confirmed", False),
            last_verification_sent_at=kwargs.get("last_verification_sent_at"),
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user, create_session_token(user.id, user.email)

    return _make


@pytest.fixture
def make_seller(db: AsyncSession, make_user):
    """Factory fixture: create a User with a Seller row. Returns (seller, token)."""
    from storefront.models.seller import Seller

    async def _make(available: float = 0, pending: float = 0, **kwargs):
        user, token = await make_user(
            email=kwargs.get("email"), full_name=kwargs.get("display_name", "Test Seller"),
        )
        seller = Seller(
            id=user.id,
            username=kwargs.get("username", f"seller-{user.id[:8]}"),
            display_name=kwargs.get("display_name", "Test Seller"),
            seller_status=kwargs.get("seller_status", "active"),
            available_balance=Decimal(str(available)),
            pending_balance=Decimal(str(pending)),
            payout_email=kwargs.get("payout_email", f"payout-{user.id[:8]}@test.com"),
            payout_paypal_email=kwargs.get("payout_paypal_email"),
        )
        if "commission_rate" in kwargs:
            seller.commission_rate = Decimal(str(kwargs["commission_rate"]))
        db.add(seller)
        await db.commit()
        await db.refresh(seller)
        return seller, token

    return _make


@pytest.fixture
def make_product(db: AsyncSession):
    """Factory fixture: create a Product, optionally storing its file."""
    from storefront.models.product import Product
    from storefront.services.storage_service import get_storage

    async def _make(seller_id: str, price_b2c: float = 20.0, price_b2b: float = 50.0, **kwargs):
        product_id = _new_id()
        file_path = kwargs.get("file_path", f"{seller_id}/{product_id}/guide.pdf")
        if file_path and kwargs.get("store_file", True):
            get_storage().put(file_path, kwargs.get("content", b"%PDF-1.4 test file"))
        product = Product(
            id=product_id,
            seller_id=seller_id,
            title=kwargs.get("title", f"Test Product {product_id[:6]}"),
            slug=kwargs.get("slug", f"test-product-{product_id[:8]}"),
            price_b2c=Decimal(str(price_b2c)),
            price_b2b=Decimal(str(price_b2b)),
            category=kwargs.get("category", "ebooks"),
            file_path=file_path,
            status=kwargs.get("status", "published"),
        )
        db.add(product)
        await db.commit()
        await db.refresh(product)
        return product

    return _make


@pytest.fixture
def make_admin(db: AsyncSession, make_user):
    """Factory fixture: create a User that is an admin. Returns (user, token)."""
    from storefront.models.admin import AdminUser

    async def _make(email: str = None):
        user, token = await make_user(email=email, full_name="Test Admin")
        db.add(AdminUser(user_id=user.id))
        await db.commit()
        return user, token

    return _make


@pytest.fixture
def make_order(db: AsyncSession):
    """Factory fixture: create a paid Order with one item per product.

    Escrow is not credited; tests that need it call fulfill_order.
    """
    from storefront.models.order import Order, OrderItem

    async def _make(user_id: str | None, products: list, **kwargs):
        now = datetime.now(timezone.utc)
        quantity = kwargs.get("quantity", 1)
        total = sum((Decimal(str(p.price_b2c)) * quantity for p in products), Decimal("0"))
        order = Order(
            id=_new_id(),
            user_id=user_id,
            buyer_email=kwargs.get("buyer_email", "buyer@test.com"),
            buyer_name=kwargs.get("buyer_name", "Test Buyer"),
            total_amount=total,
            payment_status=kwargs.get("payment_status", "completed"),
            paypal_order_id=kwargs.get("paypal_order_id", f"PP-{_new_id()[:8]}"),
            paypal_capture_id=kwargs.get("paypal_capture_id"),
            receipt_token=kwargs.get("receipt_token", f"rt-{_new_id()}"),
            receipt_token_expires_at=kwargs.get("receipt_token_expires_at", now + timedelta(days=30)),
            last_receipt_sent_at=kwargs.get("last_receipt_sent_at"),
            receipt_send_count=kwargs.get("receipt_send_count", 0),
        )
        db.add(order)
        for p in products:
            db.add(OrderItem(
                id=_new_id(),
                order_id=order.id,
                product_id=p.id,
                seller_id=p.seller_id,
                license_type="personal",
                quantity=quantity,
                price=Decimal(str(p.price_b2c)),
            ))
        await db.commit()
        await db.refresh(order)
        return order

    return _make


@pytest.fixture
def make_payout(db: AsyncSession):
    """Factory fixture: create a PayoutRequest directly (no balance debit)."""
    from storefront.models.payout import PayoutRequest

    async def _make(seller_id: str, amount: float = 25.0, status: str = "pending", **kwargs):
        payout = PayoutRequest(
            id=_new_id(),
            seller_id=seller_id,
            amount=Decimal(str(amount)),
            payout_email=kwargs.get("payout_email", "payout@test.com"),
            status=status,
            paypal_batch_id=kwargs.get("paypal_batch_id"),
        )
        db.add(payout)
        await db.commit()
        await db.refresh(payout)
        return payout

    return _make
