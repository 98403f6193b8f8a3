"""Gateway-facing routes: webhook deliveries and hosted-page redirects."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.api.dependencies.session import optional_member_session
from cloudcafe_api.api.errors import api_error
from cloudcafe_api.core.settings import settings
from cloudcafe_api.db.session import get_session
from cloudcafe_api.models.user import User
from cloudcafe_api.services.payments.reconciler import (
    InvalidRedirectOutcomeError,
    PaymentOrderAccessError,
    PaymentOrderNotFoundError,
    PaymentOutcomeReconciler,
    WebhookSourceRejectedError,
    resolve_webhook_source,
)
from cloudcafe_api.services.rewards.ledger import LedgerConflictError


router = APIRouter(tags=["payments"])


class PaymentOutcomeResponse(BaseModel):
    outcome: str
    orderId: str
    orderReference: str
    paymentStatus: str
    orderStatus: str
    title: str
    message: str
    rewardsApplied: bool


def _client_ip(request: Request) -> Optional[str]:
    peer = request.client.host if request.client else None
    return resolve_webhook_source(
        peer,
        request.headers.get("x-forwarded-for"),
        settings.worldpay_webhook_trusted_proxies,
    )


@router.post("/webhooks/payment", summary="Worldpay webhook receiver")
async def receive_payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """Acknowledge every delivery with 200 unless the source is not allowed."""

    client_ip = _client_ip(request)
    payload: Any
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Payment webhook body is not JSON", client_ip=client_ip)
        payload = None

    reconciler = PaymentOutcomeReconciler(db)
    try:
        result = await reconciler.handle_webhook(payload, client_ip=client_ip)
    except WebhookSourceRejectedError as exc:
        logger.warning("Payment webhook rejected by source allowlist", client_ip=client_ip)
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"detail": {"code": "webhook_source_rejected", "message": str(exc)}},
        )

    body: Dict[str, Any] = result.as_dict()
    return JSONResponse(status_code=status.HTTP_200_OK, content=body)


@router.get("/payment/{outcome}", response_model=PaymentOutcomeResponse, summary="Hosted payment page return")
async def payment_redirect(
    outcome: str,
    order: str = Query(..., description="Order id from the result URL"),
    user: User | None = Depends(optional_member_session),
    db: AsyncSession = Depends(get_session),
) -> PaymentOutcomeResponse:
    reconciler = PaymentOutcomeReconciler(db)
    try:
        view = await reconciler.handle_redirect(outcome, order, user_id=user.id if user else None)
    except InvalidRedirectOutcomeError as exc:
        raise api_error(status.HTTP_404_NOT_FOUND, "unknown_payment_outcome", str(exc)) from exc
    except PaymentOrderNotFoundError as exc:
        raise api_error(status.HTTP_404_NOT_FOUND, "order_not_found", "Order not found") from exc
    except PaymentOrderAccessError as exc:
        raise api_error(status.HTTP_403_FORBIDDEN, "order_forbidden", str(exc)) from exc
    except LedgerConflictError as exc:
        await db.rollback()
        raise api_error(status.HTTP_409_CONFLICT, exc.code, "Please refresh to see your payment status") from exc

    return PaymentOutcomeResponse(
        outcome=view.outcome,
        orderId=view.order_id,
        orderReference=view.order_reference,
        paymentStatus=view.payment_status,
        orderStatus=view.order_status,
        title=view.title,
        message=view.message,
        rewardsApplied=view.rewards_applied,
    )
