"""Stamp-card ledger and its append-only transaction log."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from cloudcafe_api.db.base import Base
from cloudcafe_api.domain.rewards import LedgerState, RewardTransactionType


class RewardLedger(Base):
    """Per-user stamp count and pending-reward flag.

    ``version`` is bumped on every write; writers update conditionally on the
    version they read.
    """

    __tablename__ = "reward_ledgers"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_reward_ledgers_user_id"),
        CheckConstraint("stamps >= 0", name="ck_reward_ledgers_stamps_non_negative"),
        CheckConstraint(
            "pending_reward = false OR stamps = 0",
            name="ck_reward_ledgers_pending_has_no_stamps",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    stamps = Column(Integer, nullable=False, default=0, server_default="0")
    pending_reward = Column(Boolean, nullable=False, default=False, server_default="false")
    version = Column(Integer, nullable=False, default=1, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def state(self) -> LedgerState:
        return LedgerState(stamps=int(self.stamps or 0), pending_reward=bool(self.pending_reward))


class RewardTransaction(Base):
    """Audit entry for every ledger change; never updated or deleted."""

    __tablename__ = "reward_transactions"
    __table_args__ = (
        UniqueConstraint("order_id", "type", name="uq_reward_transactions_order_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(
        SqlEnum(
            RewardTransactionType,
            name="reward_transaction_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    amount = Column(Integer, nullable=False)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    admin_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
