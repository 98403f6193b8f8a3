"""Read models for member order history and the staff board."""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cloudcafe_api.models.order import Order, OrderStatusEnum

from .state_machine import OrderNotFoundError


class OrderAccessDeniedError(PermissionError):
    def __init__(self, order_id: UUID) -> None:
        super().__init__("Order does not belong to the current user")
        self.order_id = order_id


class OrderHistoryService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_for_user(self, user_id: UUID, *, limit: int = 50) -> list[Order]:
        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .limit(max(1, min(limit, 200)))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_for_user(self, order_id: UUID, user_id: UUID) -> Order:
        stmt = select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
        order = (await self._session.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.user_id != user_id:
            raise OrderAccessDeniedError(order_id)
        return order

    async def list_for_staff(
        self,
        *,
        statuses: Sequence[OrderStatusEnum] | None = None,
        limit: int = 100,
    ) -> list[Order]:
        stmt = select(Order).options(selectinload(Order.items))
        if statuses:
            stmt = stmt.where(Order.status.in_(list(statuses)))
        stmt = stmt.order_by(Order.created_at.desc()).limit(max(1, min(limit, 500)))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


__all__ = ["OrderAccessDeniedError", "OrderHistoryService"]
