"""Seller accounts: identity-linked storefronts that earn from sales."""
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Numeric, String, Text

from storefront.config import settings
from storefront.database import Base

SELLER_STATUSES = ("active", "payouts_locked", "suspended")


def utcnow():
    return datetime.now(timezone.utc)


def default_commission_rate():
    return Decimal(str(settings.platform_fee_pct))


class Seller(Base):
    __tablename__ = "sellers"

    # Shares its primary key with the owning user
    id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    username = Column(String(100), unique=True, nullable=False)
    display_name = Column(String(255), nullable=True)
    seller_status = Column(String(20), nullable=False, default="active")  # active | payouts_locked | suspended

    # Balances (USD)
    available_balance = Column(Numeric(12, 2), nullable=False, default=0)
    pending_balance = Column(Numeric(12, 2), nullable=False, default=0)  # escrowed, not yet withdrawable
    commission_rate = Column(Numeric(5, 4), nullable=False, default=default_commission_rate)

    # Payout destination
    payout_email = Column(String(255), nullable=True)
    payout_paypal_email = Column(String(255), nullable=True)

    # Suspension bookkeeping (written by suspend_seller)
    suspended_at = Column(DateTime(timezone=True), nullable=True)
    suspended_by = Column(String(36), nullable=True)
    suspension_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="ck_seller_available_non_negative"),
        Index("idx_seller_status", "seller_status"),
    )

    @property
    def payout_destination(self) -> str | None:
        return self.payout_paypal_email or self.payout_email
