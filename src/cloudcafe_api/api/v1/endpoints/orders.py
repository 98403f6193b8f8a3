"""Checkout submission and member order history."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.api.dependencies.payments import get_payment_gateway
from cloudcafe_api.api.dependencies.session import require_member_session
from cloudcafe_api.api.errors import api_error
from cloudcafe_api.db.session import get_session
from cloudcafe_api.models.order import Order
from cloudcafe_api.models.user import User
from cloudcafe_api.services.checkout import CheckoutError, OrderSubmissionOrchestrator
from cloudcafe_api.services.orders import OrderAccessDeniedError, OrderHistoryService, OrderNotFoundError
from cloudcafe_api.services.payments.worldpay import WorldpayClient
from cloudcafe_api.services.rewards.ledger import LedgerConflictError


router = APIRouter(prefix="/orders", tags=["orders"])


class OrderItemResponse(BaseModel):
    id: UUID
    productName: str
    quantity: int
    price: float
    category: Optional[str]
    rewardApplied: bool


class OrderResponse(BaseModel):
    id: UUID
    reference: str
    status: str
    paymentMethod: str
    paymentStatus: str
    total: float
    currency: str
    notes: Optional[str]
    rewardApplied: bool
    createdAt: Optional[datetime]
    items: List[OrderItemResponse]


class SubmitOrderRequest(BaseModel):
    paymentMethod: Literal["online", "in-store"] = Field(..., description="How the customer pays")


class SubmitOrderResponse(BaseModel):
    order: OrderResponse
    paymentUrl: Optional[str] = None
    collectionMinutes: Optional[int] = None
    rewardOutcome: Optional[str] = None


def serialize_order(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        reference=str(order.id)[:8],
        status=order.status.value,
        paymentMethod=order.payment_method.value,
        paymentStatus=order.payment_status,
        total=float(order.total or 0),
        currency=order.currency,
        notes=order.notes,
        rewardApplied=bool(order.reward_applied),
        createdAt=order.created_at,
        items=[
            OrderItemResponse(
                id=item.id,
                productName=item.product_name,
                quantity=item.quantity,
                price=float(item.price or 0),
                category=item.category,
                rewardApplied=bool(item.reward_applied),
            )
            for item in order.items
        ],
    )


@router.post("", response_model=SubmitOrderResponse, status_code=status.HTTP_201_CREATED)
async def submit_order(
    payload: SubmitOrderRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    gateway: WorldpayClient = Depends(get_payment_gateway),
) -> SubmitOrderResponse:
    """Turn the member's cart into an order.

    In-store orders are final on return; online orders carry a ``paymentUrl``
    for the hosted payment page.
    """

    orchestrator = OrderSubmissionOrchestrator(db, gateway=gateway)
    try:
        result = await orchestrator.submit(user, payload.paymentMethod)
    except CheckoutError as exc:
        await db.rollback()
        raise api_error(exc.status_code, exc.code, exc.message) from exc
    except LedgerConflictError as exc:
        await db.rollback()
        logger.warning("Checkout aborted by ledger contention", user_id=str(user.id))
        raise api_error(status.HTTP_409_CONFLICT, exc.code, "Please try again") from exc

    effect = result.reward_effect
    return SubmitOrderResponse(
        order=serialize_order(result.order),
        paymentUrl=result.payment_url,
        collectionMinutes=result.collection_minutes,
        rewardOutcome=(
            effect.decision.outcome.value if effect is not None and effect.decision is not None else None
        ),
    )


@router.get("", response_model=List[OrderResponse])
async def list_orders(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[OrderResponse]:
    orders = await OrderHistoryService(db).list_for_user(user.id, limit=limit)
    return [serialize_order(order) for order in orders]


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    try:
        order = await OrderHistoryService(db).get_for_user(order_id, user.id)
    except OrderNotFoundError as exc:
        raise api_error(status.HTTP_404_NOT_FOUND, "order_not_found", "Order not found") from exc
    except OrderAccessDeniedError as exc:
        raise api_error(status.HTTP_403_FORBIDDEN, "order_forbidden", str(exc)) from exc
    return serialize_order(order)
