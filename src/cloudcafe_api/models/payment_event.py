from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from cloudcafe_api.db.base import Base


class PaymentEventOutcomeEnum(str, Enum):
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


class PaymentWebhookEvent(Base):
    """Delivery log for gateway webhooks, deduplicated by gateway event id."""

    __tablename__ = "payment_webhook_events"
    __table_args__ = (
        UniqueConstraint("event_id", name="uq_payment_webhook_events_event_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    event_id = Column(String, nullable=False)
    event_type = Column(String, nullable=True)
    transaction_reference = Column(String, nullable=True, index=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    outcome = Column(String(16), nullable=False, default=PaymentEventOutcomeEnum.PROCESSED.value)
    error = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
