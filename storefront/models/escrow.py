"""Seller earnings held in escrow until the refund window closes."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Numeric, String

from storefront.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class EscrowEntry(Base):
    __tablename__ = "escrow_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    seller_id = Column(String(36), ForeignKey("sellers.id"), nullable=False)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False)
    # One entry per order item: fulfillment cannot credit the same item twice
    order_item_id = Column(String(36), ForeignKey("order_items.id"), unique=True, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    capture_id = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default="held")  # held | released | reversed
    release_at = Column(DateTime(timezone=True), nullable=False)
    released_at = Column(DateTime(timezone=True), nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_escrow_amount_non_negative"),
        Index("idx_escrow_seller", "seller_id"),
        Index("idx_escrow_status_release", "status", "release_at"),
    )
