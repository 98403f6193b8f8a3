"""Staff-driven order status transitions."""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cloudcafe_api.models.order import Order, OrderStatusEnum
from cloudcafe_api.models.user import User


class OrderStateError(RuntimeError):
    """Base exception for order status failures."""


class InvalidOrderTransitionError(OrderStateError):
    def __init__(self, current_status: OrderStatusEnum, requested_status: OrderStatusEnum) -> None:
        super().__init__(
            f"Cannot move order from {current_status.value} to {requested_status.value}"
        )
        self.current_status = current_status
        self.requested_status = requested_status


class OrderNotFoundError(OrderStateError, LookupError):
    def __init__(self, order_id: UUID) -> None:
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class OrderStateMachine:
    """Moves orders along the counter workflow.

    Payment-driven changes go through the payment reconciler instead; this
    only covers what staff do at the till.
    """

    _ALLOWED_TRANSITIONS: dict[OrderStatusEnum, set[OrderStatusEnum]] = {
        OrderStatusEnum.PENDING: {
            OrderStatusEnum.CONFIRMED,
            OrderStatusEnum.COMPLETED,
            OrderStatusEnum.CANCELLED,
        },
        OrderStatusEnum.AWAITING_PAYMENT: {
            OrderStatusEnum.CONFIRMED,
            OrderStatusEnum.COMPLETED,
            OrderStatusEnum.CANCELLED,
        },
        OrderStatusEnum.CONFIRMED: {
            OrderStatusEnum.COMPLETED,
            OrderStatusEnum.CANCELLED,
        },
        OrderStatusEnum.COMPLETED: set(),
        OrderStatusEnum.CANCELLED: set(),
    }

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @classmethod
    def allowed_targets(cls, status: OrderStatusEnum) -> set[OrderStatusEnum]:
        return set(cls._ALLOWED_TRANSITIONS.get(status, set()))

    async def transition(self, *, order_id: UUID, target_status: OrderStatusEnum, staff: User) -> Order:
        order = await self._get_order(order_id)
        current_status = order.status
        if target_status not in self._ALLOWED_TRANSITIONS.get(current_status, set()):
            raise InvalidOrderTransitionError(current_status, target_status)

        order.status = target_status
        await self._session.commit()
        await self._session.refresh(order, attribute_names=["status", "updated_at"])
        logger.info(
            "Order status transitioned",
            order_id=str(order.id),
            from_status=current_status.value,
            to_status=target_status.value,
            staff_id=str(staff.id),
        )
        return order

    async def _get_order(self, order_id: UUID) -> Order:
        stmt = select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
        result = await self._session.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order


__all__ = [
    "InvalidOrderTransitionError",
    "OrderNotFoundError",
    "OrderStateError",
    "OrderStateMachine",
]
