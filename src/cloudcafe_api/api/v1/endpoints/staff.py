"""Staff terminal, order board and shop switches."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.api.dependencies.session import require_staff_session
from cloudcafe_api.api.errors import api_error
from cloudcafe_api.db.session import get_session
from cloudcafe_api.domain.identifiers import InvalidIdentifierFormatError
from cloudcafe_api.domain.rewards import RewardStateError
from cloudcafe_api.models.order import OrderStatusEnum
from cloudcafe_api.models.rewards import RewardLedger
from cloudcafe_api.models.user import User
from cloudcafe_api.services.orders import (
    InvalidOrderTransitionError,
    OrderHistoryService,
    OrderNotFoundError,
    OrderStateMachine,
)
from cloudcafe_api.services.rewards import (
    CustomerNotFoundError,
    LedgerConflictError,
    RewardLedgerService,
    StaffTerminal,
)
from cloudcafe_api.services.shop import ShopService

from .orders import OrderResponse, serialize_order
from .rewards import RewardCardResponse, serialize_snapshot
from .shop import ShopStatusResponse, serialize_shop_status


router = APIRouter(prefix="/staff", tags=["staff"])


class ScanRequest(BaseModel):
    payload: str = Field(..., description="Scanned QR payload or typed customer id")


class CustomerSummary(BaseModel):
    id: UUID
    email: str
    displayName: Optional[str]


class TerminalResponse(BaseModel):
    customer: CustomerSummary
    card: RewardCardResponse
    outcome: Optional[str] = None
    message: Optional[str] = None


class OrderStatusRequest(BaseModel):
    status: OrderStatusEnum


class BusyModeRequest(BaseModel):
    busyMode: bool


def _terminal_response(
    customer: User,
    ledger: RewardLedger,
    service: RewardLedgerService,
    *,
    outcome: str | None = None,
    message: str | None = None,
) -> TerminalResponse:
    return TerminalResponse(
        customer=CustomerSummary(id=customer.id, email=customer.email, displayName=customer.display_name),
        card=serialize_snapshot(service.snapshot(ledger)),
        outcome=outcome,
        message=message,
    )


async def _run_terminal(db: AsyncSession, action):
    try:
        return await action()
    except InvalidIdentifierFormatError as exc:
        raise api_error(status.HTTP_400_BAD_REQUEST, exc.code, str(exc)) from exc
    except CustomerNotFoundError as exc:
        raise api_error(status.HTTP_404_NOT_FOUND, exc.code, str(exc)) from exc
    except RewardStateError as exc:
        await db.rollback()
        raise api_error(status.HTTP_409_CONFLICT, exc.code, exc.message) from exc
    except LedgerConflictError as exc:
        await db.rollback()
        raise api_error(status.HTTP_409_CONFLICT, exc.code, "Card was updated elsewhere, scan again") from exc


@router.post("/rewards/lookup", response_model=TerminalResponse)
async def lookup_customer(
    payload: ScanRequest,
    staff: User = Depends(require_staff_session),
    db: AsyncSession = Depends(get_session),
) -> TerminalResponse:
    ledgers = RewardLedgerService(db)
    terminal = StaffTerminal(db, ledgers)
    found = await _run_terminal(db, lambda: terminal.lookup(payload.payload))
    return _terminal_response(found.customer, found.ledger, ledgers)


@router.post("/rewards/stamps", response_model=TerminalResponse)
async def add_stamp(
    payload: ScanRequest,
    staff: User = Depends(require_staff_session),
    db: AsyncSession = Depends(get_session),
) -> TerminalResponse:
    ledgers = RewardLedgerService(db)
    terminal = StaffTerminal(db, ledgers)
    result = await _run_terminal(db, lambda: terminal.add_stamp(payload.payload, staff))
    return _terminal_response(
        result.customer,
        result.ledger,
        ledgers,
        outcome=result.decision.outcome.value,
        message=result.message,
    )


@router.post("/rewards/redeem", response_model=TerminalResponse)
async def redeem_reward(
    payload: ScanRequest,
    staff: User = Depends(require_staff_session),
    db: AsyncSession = Depends(get_session),
) -> TerminalResponse:
    ledgers = RewardLedgerService(db)
    terminal = StaffTerminal(db, ledgers)
    result = await _run_terminal(db, lambda: terminal.redeem(payload.payload, staff))
    return _terminal_response(
        result.customer,
        result.ledger,
        ledgers,
        outcome=result.decision.outcome.value,
        message=result.message,
    )


@router.get("/orders", response_model=List[OrderResponse])
async def list_orders_for_staff(
    status_filter: Optional[List[OrderStatusEnum]] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    staff: User = Depends(require_staff_session),
    db: AsyncSession = Depends(get_session),
) -> List[OrderResponse]:
    orders = await OrderHistoryService(db).list_for_staff(statuses=status_filter, limit=limit)
    return [serialize_order(order) for order in orders]


@router.post("/orders/{order_id}/status", response_model=OrderResponse)
async def transition_order(
    order_id: UUID,
    payload: OrderStatusRequest,
    staff: User = Depends(require_staff_session),
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    machine = OrderStateMachine(db)
    try:
        order = await machine.transition(order_id=order_id, target_status=payload.status, staff=staff)
    except OrderNotFoundError as exc:
        raise api_error(status.HTTP_404_NOT_FOUND, "order_not_found", "Order not found") from exc
    except InvalidOrderTransitionError as exc:
        raise api_error(status.HTTP_409_CONFLICT, "invalid_order_transition", str(exc)) from exc
    return serialize_order(order)


@router.put("/shop/busy-mode", response_model=ShopStatusResponse)
async def set_busy_mode(
    payload: BusyModeRequest,
    staff: User = Depends(require_staff_session),
    db: AsyncSession = Depends(get_session),
) -> ShopStatusResponse:
    status_snapshot = await ShopService(db).set_busy_mode(payload.busyMode, staff=staff)
    return serialize_shop_status(status_snapshot)
