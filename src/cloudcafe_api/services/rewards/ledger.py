"""Persistence for stamp-card ledgers with optimistic concurrency."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.core.settings import settings
from cloudcafe_api.domain.identifiers import format_customer_identifier
from cloudcafe_api.domain.rewards import LedgerState, RewardDecision, RewardStateError
from cloudcafe_api.models.rewards import RewardLedger, RewardTransaction
from cloudcafe_api.observability.rewards import get_rewards_store

LedgerDecider = Callable[[LedgerState], RewardDecision]


class LedgerConflictError(RuntimeError):
    """Raised when concurrent writers keep winning the version race."""

    code = "ledger_conflict"

    def __init__(self, user_id: UUID, attempts: int) -> None:
        super().__init__(f"Reward ledger for {user_id} changed concurrently {attempts} times")
        self.user_id = user_id
        self.attempts = attempts


@dataclass
class LedgerMutation:
    ledger: RewardLedger
    decision: RewardDecision
    transactions: list[RewardTransaction]


@dataclass
class RewardSnapshot:
    """Serializable stamp-card view for members and staff."""

    user_id: UUID
    stamps: int
    pending_reward: bool
    threshold: int
    stamps_to_next_reward: int
    qr_payload: str
    updated_at: datetime | None


class RewardLedgerService:
    """Reads and writes ledgers; every write goes through a pure decision."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        threshold: int | None = None,
        max_retries: int | None = None,
    ) -> None:
        self._db = db_session
        self.threshold = threshold or settings.rewards_stamps_per_reward
        self._max_retries = max(1, max_retries or settings.rewards_ledger_max_retries)

    def _insert(self):
        dialect = self._db.get_bind().dialect.name
        return pg_insert if dialect == "postgresql" else sqlite_insert

    async def get(self, user_id: UUID) -> RewardLedger | None:
        stmt = (
            select(RewardLedger)
            .where(RewardLedger.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: UUID) -> RewardLedger:
        """Fetch the ledger, creating a zeroed one on first lookup."""

        ledger = await self.get(user_id)
        if ledger is not None:
            return ledger

        stmt = (
            self._insert()(RewardLedger)
            .values(user_id=user_id, stamps=0, pending_reward=False, version=1)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        result = await self._db.execute(stmt)
        if result.rowcount:
            logger.info("Created reward ledger", user_id=str(user_id))
        else:
            logger.debug("Reward ledger created concurrently", user_id=str(user_id))

        ledger = await self.get(user_id)
        if ledger is None:  # pragma: no cover - insert and read share the transaction
            raise RuntimeError(f"Reward ledger for {user_id} vanished after insert")
        return ledger

    async def mutate(
        self,
        user_id: UUID,
        decide: LedgerDecider,
        *,
        source: str,
        order_id: UUID | None = None,
        admin_id: UUID | None = None,
    ) -> LedgerMutation:
        """Apply ``decide`` to the current ledger and persist the result.

        The write is conditional on the version that was read; on a lost race
        the ledger is re-read and the decision recomputed. Domain rejections
        propagate unchanged. The caller owns commit/rollback.
        """

        store = get_rewards_store()
        for attempt in range(1, self._max_retries + 1):
            ledger = await self.get_or_create(user_id)
            seen_version = ledger.version
            try:
                decision = decide(ledger.state())
            except RewardStateError as exc:
                store.record_rejection(exc.code)
                logger.info(
                    "Reward transition rejected",
                    user_id=str(user_id),
                    source=source,
                    code=exc.code,
                    order_id=str(order_id) if order_id else None,
                )
                raise

            decision.ledger.validate(self.threshold)
            stmt = (
                update(RewardLedger)
                .where(RewardLedger.id == ledger.id, RewardLedger.version == seen_version)
                .values(
                    stamps=decision.ledger.stamps,
                    pending_reward=decision.ledger.pending_reward,
                    version=RewardLedger.version + 1,
                    updated_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            result = await self._db.execute(stmt)
            if result.rowcount == 1:
                break

            store.record_conflict()
            logger.warning(
                "Reward ledger version conflict",
                user_id=str(user_id),
                attempt=attempt,
                seen_version=seen_version,
                source=source,
            )
        else:
            raise LedgerConflictError(user_id, self._max_retries)

        transactions = [
            RewardTransaction(
                user_id=user_id,
                type=draft.type,
                amount=draft.amount,
                order_id=order_id,
                admin_id=admin_id,
            )
            for draft in decision.transactions
        ]
        self._db.add_all(transactions)
        await self._db.flush()
        await self._db.refresh(ledger)

        store.record_transition(decision.outcome.value, source)
        logger.info(
            "Reward ledger updated",
            user_id=str(user_id),
            source=source,
            outcome=decision.outcome.value,
            stamps=decision.ledger.stamps,
            pending_reward=decision.ledger.pending_reward,
            order_id=str(order_id) if order_id else None,
            admin_id=str(admin_id) if admin_id else None,
        )
        return LedgerMutation(ledger=ledger, decision=decision, transactions=transactions)

    async def list_transactions(self, user_id: UUID, *, limit: int = 50) -> list[RewardTransaction]:
        bounded_limit = max(1, min(limit, 200))
        stmt = (
            select(RewardTransaction)
            .where(RewardTransaction.user_id == user_id)
            .order_by(RewardTransaction.created_at.desc(), RewardTransaction.id.desc())
            .limit(bounded_limit)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    def snapshot(self, ledger: RewardLedger) -> RewardSnapshot:
        state = ledger.state()
        remaining = 0 if state.pending_reward else self.threshold - state.stamps
        return RewardSnapshot(
            user_id=ledger.user_id,
            stamps=state.stamps,
            pending_reward=state.pending_reward,
            threshold=self.threshold,
            stamps_to_next_reward=remaining,
            qr_payload=format_customer_identifier(ledger.user_id, settings.rewards_qr_prefix),
            updated_at=ledger.updated_at,
        )


__all__ = [
    "LedgerConflictError",
    "LedgerMutation",
    "RewardLedgerService",
    "RewardSnapshot",
]
