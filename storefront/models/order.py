"""Orders and their line items. Items are written once with the order."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship

from storefront.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)  # NULL for guest checkout
    buyer_email = Column(String(255), nullable=True)
    buyer_name = Column(String(255), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    payment_status = Column(String(20), nullable=False, default="pending")  # pending | completed | failed | refunded

    # PayPal references
    paypal_order_id = Column(String(64), nullable=True)
    paypal_capture_id = Column(String(64), unique=True, nullable=True)

    # Guest receipt access
    receipt_token = Column(String(128), unique=True, nullable=True)
    receipt_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    last_receipt_sent_at = Column(DateTime(timezone=True), nullable=True)
    receipt_send_count = Column(Integer, nullable=False, default=0)

    fulfilled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    items = relationship("OrderItem", back_populates="order", lazy="selectin")

    __table_args__ = (
        Index("idx_order_user", "user_id"),
        Index("idx_order_paypal_order", "paypal_order_id"),
        Index("idx_order_created", "created_at"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    seller_id = Column(String(36), ForeignKey("sellers.id"), nullable=True)
    license_type = Column(String(20), nullable=False, default="personal")  # personal | commercial
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(10, 2), nullable=False)  # unit price snapshot

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
        Index("idx_order_item_order", "order_id"),
        Index("idx_order_item_product", "product_id"),
    )

    @property
    def line_total(self):
        return self.price * self.quantity
