"""Admin membership and the append-only moderation audit trail."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text

from storefront.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class AdminUser(Base):
    __tablename__ = "admin_users"

    user_id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class AdminAuditLog(Base):
    __tablename__ = "admin_audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    admin_id = Column(String(36), nullable=False)
    action = Column(String(50), nullable=False)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(String(36), nullable=False)
    before = Column(Text, nullable=True)  # JSON snapshot
    after = Column(Text, nullable=True)  # JSON snapshot
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_admin_audit_admin", "admin_id"),
        Index("idx_admin_audit_entity", "entity_type", "entity_id"),
        Index("idx_admin_audit_created", "created_at"),
    )
