"""Stamp and redemption side effects of a paid order."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from loguru import logger
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.core.settings import settings
from cloudcafe_api.domain.rewards import LedgerState, RewardDecision, apply_stamps, redeem
from cloudcafe_api.models.order import Order, OrderItem
from cloudcafe_api.services.rewards.ledger import RewardLedgerService


class RewardEffectStatus(str, Enum):
    APPLIED = "applied"
    ALREADY_PROCESSED = "already_processed"
    NOTHING_TO_APPLY = "nothing_to_apply"
    REWARD_ALREADY_CONSUMED = "reward_already_consumed"


@dataclass
class RewardEffect:
    status: RewardEffectStatus
    decision: RewardDecision | None = None

    @property
    def applied(self) -> bool:
        return self.status is RewardEffectStatus.APPLIED


class _SkipLedgerWrite(Exception):
    def __init__(self, status: RewardEffectStatus) -> None:
        super().__init__(status.value)
        self.status = status


def count_eligible_units(items: Iterable[OrderItem], eligible_categories: Iterable[str]) -> int:
    categories = set(eligible_categories)
    return sum(
        int(item.quantity or 0)
        for item in items
        if not item.reward_applied and item.category in categories
    )


class RewardEffectApplier:
    """Runs the reward step for an order at most once.

    The order's ``rewards_processed_at`` marker is claimed with a conditional
    update before the ledger is touched; a second caller sees the marker and
    returns ``ALREADY_PROCESSED``. Nothing is committed here.
    """

    def __init__(self, db_session: AsyncSession, ledger_service: RewardLedgerService | None = None) -> None:
        self._db = db_session
        self._ledgers = ledger_service or RewardLedgerService(db_session)

    async def _claim(self, order: Order) -> bool:
        result = await self._db.execute(
            update(Order)
            .where(Order.id == order.id, Order.rewards_processed_at.is_(None))
            .values(rewards_processed_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def apply_for_order(self, order: Order) -> RewardEffect:
        if order.user_id is None:
            return RewardEffect(RewardEffectStatus.NOTHING_TO_APPLY)

        if not await self._claim(order):
            logger.info("Order rewards already processed", order_id=str(order.id))
            return RewardEffect(RewardEffectStatus.ALREADY_PROCESSED)

        threshold = self._ledgers.threshold
        eligible_units = count_eligible_units(order.items, settings.rewards_eligible_categories)
        reward_applied = bool(order.reward_applied)

        def decide(state: LedgerState) -> RewardDecision:
            if reward_applied:
                if state.pending_reward:
                    return redeem(state)
                raise _SkipLedgerWrite(RewardEffectStatus.REWARD_ALREADY_CONSUMED)
            if state.pending_reward or eligible_units <= 0:
                raise _SkipLedgerWrite(RewardEffectStatus.NOTHING_TO_APPLY)
            return apply_stamps(state, eligible_units, threshold=threshold)

        try:
            mutation = await self._ledgers.mutate(
                order.user_id,
                decide,
                source="order",
                order_id=order.id,
            )
        except _SkipLedgerWrite as skip:
            if skip.status is RewardEffectStatus.REWARD_ALREADY_CONSUMED:
                # Checkout rejects stale free drinks, so only an online order
                # whose reward was redeemed while payment was in flight lands
                # here. No stamps are earned for it.
                logger.warning(
                    "Order carried a free drink but the ledger has no pending reward",
                    order_id=str(order.id),
                    user_id=str(order.user_id),
                )
            return RewardEffect(skip.status)

        return RewardEffect(RewardEffectStatus.APPLIED, mutation.decision)


__all__ = [
    "RewardEffect",
    "RewardEffectApplier",
    "RewardEffectStatus",
    "count_eligible_units",
]
