"""Persisted cart sessions."""

from __future__ import annotations

from typing import Callable
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.core.settings import settings
from cloudcafe_api.domain.cart import CartSession
from cloudcafe_api.models.cart import Cart
from cloudcafe_api.services.rewards.ledger import RewardLedgerService


class CartService:
    """Loads, mutates and stores one cart per user.

    Every read re-applies a pending reward so the free drink shows up as
    soon as the customer unlocks it, and withdraws a free drink whose reward
    was redeemed somewhere else in the meantime.
    """

    def __init__(self, db_session: AsyncSession, ledger_service: RewardLedgerService | None = None) -> None:
        self._db = db_session
        self._ledgers = ledger_service or RewardLedgerService(db_session)

    def _empty(self) -> CartSession:
        return CartSession(eligible_categories=frozenset(settings.rewards_eligible_categories))

    async def _get_row(self, user_id: UUID) -> Cart | None:
        result = await self._db.execute(select(Cart).where(Cart.user_id == user_id))
        return result.scalar_one_or_none()

    async def has_pending_reward(self, user_id: UUID) -> bool:
        ledger = await self._ledgers.get(user_id)
        return bool(ledger is not None and ledger.pending_reward)

    async def load(self, user_id: UUID, *, auto_apply: bool = True) -> CartSession:
        row = await self._get_row(user_id)
        if row is None:
            cart = self._empty()
        else:
            cart = CartSession.from_dict(
                {"items": row.items, "notes": row.notes, "reward_applied": row.reward_applied},
                eligible_categories=settings.rewards_eligible_categories,
            )

        if auto_apply and not cart.is_empty():
            pending = await self.has_pending_reward(user_id)
            if cart.reward_applied and not pending:
                restored = cart.revoke_reward()
                logger.info(
                    "Removed free drink; reward no longer pending",
                    user_id=str(user_id),
                    item=restored.name if restored else None,
                )
                await self.save(user_id, cart)
            elif pending and not cart.reward_applied:
                rewarded = cart.apply_reward(True)
                if rewarded is not None:
                    logger.info("Applied pending reward to cart", user_id=str(user_id), item=rewarded.name)
                    await self.save(user_id, cart)
        return cart

    async def save(self, user_id: UUID, cart: CartSession) -> None:
        row = await self._get_row(user_id)
        payload = cart.to_dict()
        if row is None:
            row = Cart(user_id=user_id)
            self._db.add(row)
        row.items = payload["items"]
        row.notes = payload["notes"] or None
        row.reward_applied = payload["reward_applied"]
        await self._db.flush()

    async def _update(self, user_id: UUID, change: Callable[[CartSession], object]) -> CartSession:
        cart = await self.load(user_id, auto_apply=False)
        change(cart)
        await self.save(user_id, cart)
        cart = await self.load(user_id)
        await self._db.commit()
        return cart

    async def add_item(
        self,
        user_id: UUID,
        *,
        name: str,
        price: str,
        category: str | None = None,
        quantity: int = 1,
    ) -> CartSession:
        return await self._update(user_id, lambda cart: cart.add_item(name, price, category, quantity))

    async def update_quantity(self, user_id: UUID, item_id: str, quantity: int) -> CartSession:
        return await self._update(user_id, lambda cart: cart.update_quantity(item_id, quantity))

    async def remove_item(self, user_id: UUID, item_id: str) -> CartSession:
        return await self._update(user_id, lambda cart: cart.remove_item(item_id))

    async def set_notes(self, user_id: UUID, notes: str | None) -> CartSession:
        # Length is enforced at submission so a long draft is never lost.
        return await self._update(user_id, lambda cart: cart.set_notes(notes))

    async def apply_reward(self, user_id: UUID) -> CartSession:
        pending = await self.has_pending_reward(user_id)
        return await self._update(user_id, lambda cart: cart.apply_reward(pending))

    async def clear(self, user_id: UUID) -> CartSession:
        await self.discard(user_id)
        await self._db.commit()
        return self._empty()

    async def discard(self, user_id: UUID) -> None:
        """Delete the stored cart without committing."""

        await self._db.execute(delete(Cart).where(Cart.user_id == user_id))
        logger.debug("Cleared cart", user_id=str(user_id))


__all__ = ["CartService"]
