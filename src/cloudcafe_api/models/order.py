from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from cloudcafe_api.db.base import Base


def _enum_values(enum: type[Enum]) -> list[str]:
    return [member.value for member in enum]


class OrderStatusEnum(str, Enum):
    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethodEnum(str, Enum):
    ONLINE = "online"
    IN_STORE = "in-store"


class PaymentStatusEnum(str, Enum):
    PENDING = "pending"
    IN_STORE = "in_store"
    AUTHORIZED = "authorized"
    COMPLETED = "completed"
    SETTLED = "settled"
    REFUSED = "refused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    ERROR = "error"


class Order(Base):
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(
        SqlEnum(OrderStatusEnum, name="order_status_enum", values_callable=_enum_values),
        nullable=False,
        default=OrderStatusEnum.PENDING,
        server_default=OrderStatusEnum.PENDING.value,
    )
    total = Column(Numeric(10, 2), nullable=False, server_default="0")
    currency = Column(String(3), nullable=False, server_default="GBP")
    notes = Column(Text, nullable=True)
    payment_method = Column(
        SqlEnum(PaymentMethodEnum, name="payment_method_enum", values_callable=_enum_values),
        nullable=False,
    )
    # Kept as free text: unknown gateway event types are stored verbatim.
    payment_status = Column(String(32), nullable=False, server_default=PaymentStatusEnum.PENDING.value)
    payment_reference = Column(String, nullable=True, unique=True)
    reward_applied = Column(Boolean, nullable=False, default=False, server_default="false")
    rewards_processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )


class OrderItem(Base):
    """Line snapshot taken at submission, decoupled from menu pricing."""

    __tablename__ = "order_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, server_default="0")
    product_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, server_default="1")
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(String, nullable=True)
    reward_applied = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="items")
