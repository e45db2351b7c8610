"""Seller-owned downloadable product listings with B2C/B2B pricing."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Numeric, String, Text

from storefront.database import Base

PRODUCT_STATUSES = ("draft", "published", "archived")
LICENSE_TYPES = ("personal", "commercial")


def utcnow():
    return datetime.now(timezone.utc)


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    seller_id = Column(String(36), ForeignKey("sellers.id"), nullable=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    description = Column(Text, default="")
    price_b2c = Column(Numeric(10, 2), nullable=False)  # personal license
    price_b2b = Column(Numeric(10, 2), nullable=False)  # commercial license
    category = Column(String(30), default="ebooks")  # ebooks | templates | consulting
    product_type = Column(String(20), default="downloadable")  # virtual | downloadable
    file_path = Column(String(512), nullable=True)
    status = Column(String(20), nullable=False, default="draft")  # draft | published | archived
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_product_seller", "seller_id"),
        Index("idx_product_status", "status"),
    )

    def price_for(self, license_type: str):
        return self.price_b2b if license_type == "commercial" else self.price_b2c
