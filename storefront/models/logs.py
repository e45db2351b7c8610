"""Delivery logs for outbound email and inbound processor webhooks."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text

from storefront.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class EmailLog(Base):
    __tablename__ = "email_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    recipient = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    template = Column(String(50), nullable=False)
    reference_type = Column(String(20), nullable=True)  # order | user | payout | verification
    reference_id = Column(String(36), nullable=True)
    provider = Column(String(20), nullable=False, default="resend")
    status = Column(String(20), nullable=False, default="pending")  # pending | sent | failed
    provider_message_id = Column(String(128), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_email_log_recipient", "recipient"),
        Index("idx_email_log_status", "status"),
    )


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    webhook_type = Column(String(30), nullable=False)  # paypal_checkout | paypal_payouts
    event_type = Column(String(80), nullable=False)
    resource_id = Column(String(128), nullable=True)
    payload = Column(Text, default="{}")
    processed = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_webhook_log_type", "webhook_type", "event_type"),
    )
