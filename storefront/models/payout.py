"""Seller payout requests and their status lifecycle."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Numeric, String, Text

from storefront.database import Base

PAYOUT_STATUSES = ("pending", "processing", "completed", "held", "failed")


def utcnow():
    return datetime.now(timezone.utc)


class PayoutRequest(Base):
    __tablename__ = "payout_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    seller_id = Column(String(36), ForeignKey("sellers.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payout_email = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    note = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)

    # PayPal Payouts references
    paypal_batch_id = Column(String(64), nullable=True)
    paypal_payout_item_id = Column(String(64), nullable=True)
    paypal_transaction_id = Column(String(64), nullable=True)

    processed_by = Column(String(36), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payout_amount_positive"),
        Index("idx_payout_seller", "seller_id"),
        Index("idx_payout_status", "status"),
        Index("idx_payout_batch", "paypal_batch_id"),
    )
