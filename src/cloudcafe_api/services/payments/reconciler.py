"""Applies gateway payment outcomes to orders exactly once."""

from __future__ import annotations

import ipaddress
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Mapping, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cloudcafe_api.core.settings import Settings, settings as default_settings
from cloudcafe_api.models.order import (
    Order,
    OrderStatusEnum,
    PaymentMethodEnum,
    PaymentStatusEnum,
)
from cloudcafe_api.models.payment_event import PaymentEventOutcomeEnum, PaymentWebhookEvent
from cloudcafe_api.observability.payments import get_payment_store
from cloudcafe_api.services.cart.service import CartService
from cloudcafe_api.services.checkout.rewards import RewardEffect, RewardEffectApplier, RewardEffectStatus
from cloudcafe_api.services.rewards.ledger import RewardLedgerService

from .worldpay import REDIRECT_OUTCOMES, InvalidTransactionReferenceError, parse_transaction_reference

SUCCESSFUL_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatusEnum.AUTHORIZED.value,
        PaymentStatusEnum.COMPLETED.value,
        PaymentStatusEnum.SETTLED.value,
    }
)

_WEBHOOK_LOCKED_STATUSES = frozenset({OrderStatusEnum.COMPLETED})
_REDIRECT_LOCKED_STATUSES = frozenset({OrderStatusEnum.COMPLETED, OrderStatusEnum.CANCELLED})

StatusChange = Tuple[str, OrderStatusEnum | None]

WEBHOOK_EVENT_MAPPING: Dict[str, StatusChange] = {
    "authorized": (PaymentStatusEnum.AUTHORIZED.value, OrderStatusEnum.CONFIRMED),
    "sentForSettlement": (PaymentStatusEnum.SETTLED.value, None),
    "refused": (PaymentStatusEnum.REFUSED.value, OrderStatusEnum.CANCELLED),
    "cancelled": (PaymentStatusEnum.CANCELLED.value, OrderStatusEnum.CANCELLED),
    "expired": (PaymentStatusEnum.EXPIRED.value, OrderStatusEnum.CANCELLED),
    "error": (PaymentStatusEnum.ERROR.value, OrderStatusEnum.AWAITING_PAYMENT),
}

REDIRECT_MAPPING: Dict[str, StatusChange] = {
    "success": (PaymentStatusEnum.COMPLETED.value, OrderStatusEnum.CONFIRMED),
    "failure": (PaymentStatusEnum.REFUSED.value, OrderStatusEnum.AWAITING_PAYMENT),
    "cancel": (PaymentStatusEnum.CANCELLED.value, OrderStatusEnum.AWAITING_PAYMENT),
    "pending": (PaymentStatusEnum.PENDING.value, OrderStatusEnum.AWAITING_PAYMENT),
    "error": (PaymentStatusEnum.ERROR.value, OrderStatusEnum.AWAITING_PAYMENT),
}

REDIRECT_COPY: Dict[str, Tuple[str, str]] = {
    "success": ("Payment Successful!", "Your order has been placed and is being prepared."),
    "failure": (
        "Payment Failed",
        "Your payment was declined. Please try again with a different payment method.",
    ),
    "cancel": ("Payment Cancelled", "You cancelled the payment. Your cart items are still saved."),
    "pending": (
        "Payment Pending",
        "Your payment is being processed. We will notify you once it is confirmed.",
    ),
    "error": (
        "Payment Error",
        "An error occurred during payment. Please try again or contact support.",
    ),
}


class InvalidWebhookPayloadError(ValueError):
    pass


class WebhookSourceRejectedError(PermissionError):
    def __init__(self, client_ip: str | None) -> None:
        super().__init__(f"Webhook source {client_ip!r} is not allowed")
        self.client_ip = client_ip


class InvalidRedirectOutcomeError(ValueError):
    def __init__(self, outcome: str) -> None:
        super().__init__(f"Unknown payment outcome: {outcome}")
        self.outcome = outcome


class PaymentOrderNotFoundError(LookupError):
    def __init__(self, order_id: UUID | str) -> None:
        super().__init__("Order not found")
        self.order_id = order_id


class PaymentOrderAccessError(PermissionError):
    def __init__(self, order_id: UUID) -> None:
        super().__init__("Order does not belong to the current user")
        self.order_id = order_id


@dataclass
class WebhookResult:
    received: bool = True
    event_id: str | None = None
    order_id: str | None = None
    payment_status: str | None = None
    order_status: str | None = None
    duplicate: bool = False
    rewards_applied: bool = False
    error: str | None = None

    def as_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class PaymentOutcomeView:
    outcome: str
    order_id: str
    order_reference: str
    payment_status: str
    order_status: str
    title: str
    message: str
    rewards_applied: bool


def _order_status_value(order: Order) -> str:
    status = order.status
    return status.value if isinstance(status, OrderStatusEnum) else str(status)


def _in_networks(address: str | None, networks: Iterable[str]) -> bool:
    try:
        parsed = ipaddress.ip_address((address or "").strip())
    except ValueError:
        return False
    return any(parsed in ipaddress.ip_network(network, strict=False) for network in networks)


def resolve_webhook_source(
    peer: str | None,
    forwarded_for: str | None,
    trusted_proxies: Iterable[str],
) -> str | None:
    """Return the address a webhook delivery came from.

    ``X-Forwarded-For`` is only read when the socket peer is a trusted proxy,
    and then the right-most hop that is not a trusted proxy wins. Entries to
    its left are supplied by the caller.
    """

    proxies = list(trusted_proxies)
    if not proxies or not _in_networks(peer, proxies):
        return peer
    hops = [hop.strip() for hop in (forwarded_for or "").split(",") if hop.strip()]
    for hop in reversed(hops):
        if not _in_networks(hop, proxies):
            return hop
    return hops[0] if hops else peer


class PaymentOutcomeReconciler:
    """Reconciles webhook deliveries and customer redirects against orders.

    The webhook is authoritative. A payment that reached a successful state
    never regresses, and the reward step is guarded by the order's
    ``rewards_processed_at`` marker so repeated deliveries are no-ops.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        config: Settings | None = None,
        cart_service: CartService | None = None,
        reward_effects: RewardEffectApplier | None = None,
    ) -> None:
        self._db = db_session
        self._config = config or default_settings
        ledgers = RewardLedgerService(db_session)
        self._carts = cart_service or CartService(db_session, ledgers)
        self._reward_effects = reward_effects or RewardEffectApplier(db_session, ledgers)

    def check_source(self, client_ip: str | None) -> None:
        networks = self._config.worldpay_webhook_allowed_networks
        if not networks:
            return
        if not _in_networks(client_ip, networks):
            raise WebhookSourceRejectedError(client_ip)

    async def handle_webhook(self, payload: Any, client_ip: str | None = None) -> WebhookResult:
        """Process one gateway notification.

        Raises only ``WebhookSourceRejectedError``; every processing failure is
        logged and reported in the result so the gateway does not retry.
        """

        self.check_source(client_ip)
        store = get_payment_store()
        event_id: str | None = None
        event_type = "unknown"
        if isinstance(payload, Mapping):
            event_id = payload.get("eventId") if isinstance(payload.get("eventId"), str) else None
            details = payload.get("eventDetails")
            if isinstance(details, Mapping) and isinstance(details.get("type"), str):
                event_type = details["type"]

        try:
            result = await self._process_webhook(payload)
        except Exception as exc:  # surfaced in the response body, never as a 5xx
            await self._db.rollback()
            store.record_webhook(event_type, "failed", event_id, error=str(exc))
            logger.exception(
                "Payment webhook processing failed",
                event_id=event_id,
                event_type=event_type,
                client_ip=client_ip,
            )
            return WebhookResult(event_id=event_id, error=str(exc))

        bucket = "duplicate" if result.duplicate else ("failed" if result.error else "processed")
        store.record_webhook(event_type, bucket, event_id, error=result.error)
        return result

    async def _process_webhook(self, payload: Any) -> WebhookResult:
        event_id, reference, event_type = self._validate_payload(payload)

        existing = await self._db.execute(
            select(PaymentWebhookEvent.id).where(PaymentWebhookEvent.event_id == event_id)
        )
        if existing.scalar_one_or_none() is not None:
            logger.info("Duplicate payment webhook ignored", event_id=event_id, transaction_reference=reference)
            return WebhookResult(event_id=event_id, duplicate=True)

        event = PaymentWebhookEvent(
            event_id=event_id,
            event_type=event_type,
            transaction_reference=reference,
            outcome=PaymentEventOutcomeEnum.PROCESSED.value,
        )
        self._db.add(event)
        try:
            await self._db.flush()
        except IntegrityError:
            await self._db.rollback()
            logger.info("Concurrent duplicate payment webhook ignored", event_id=event_id)
            return WebhookResult(event_id=event_id, duplicate=True)

        order, error = await self._resolve_order(reference)
        if order is None:
            event.outcome = PaymentEventOutcomeEnum.IGNORED.value
            event.error = error
            await self._db.commit()
            logger.error(
                "Payment webhook did not match an order",
                event_id=event_id,
                transaction_reference=reference,
                reason=error,
            )
            return WebhookResult(event_id=event_id, error=error)

        event.order_id = order.id
        payment_status, order_status = WEBHOOK_EVENT_MAPPING.get(event_type, (event_type[:32], None))
        if not self._apply_status(order, payment_status, order_status, source="webhook"):
            event.outcome = PaymentEventOutcomeEnum.IGNORED.value
            event.error = "payment already confirmed"

        effect = await self._reconcile(order)
        await self._db.commit()

        logger.info(
            "Payment webhook processed",
            event_id=event_id,
            event_type=event_type,
            order_id=str(order.id),
            user_id=str(order.user_id) if order.user_id else None,
            transaction_reference=reference,
            payment_status=order.payment_status,
            order_status=_order_status_value(order),
        )
        return WebhookResult(
            event_id=event_id,
            order_id=str(order.id),
            payment_status=order.payment_status,
            order_status=_order_status_value(order),
            rewards_applied=bool(effect and effect.applied),
        )

    def _validate_payload(self, payload: Any) -> Tuple[str, str, str]:
        if not isinstance(payload, Mapping):
            raise InvalidWebhookPayloadError("Webhook payload must be a JSON object")
        event_id = payload.get("eventId")
        details = payload.get("eventDetails")
        if not isinstance(event_id, str) or not event_id:
            raise InvalidWebhookPayloadError("Missing eventId")
        if not isinstance(details, Mapping):
            raise InvalidWebhookPayloadError("Missing eventDetails")
        reference = details.get("transactionReference")
        event_type = details.get("type")
        if not isinstance(reference, str) or not reference:
            raise InvalidWebhookPayloadError("Missing eventDetails.transactionReference")
        if not isinstance(event_type, str) or not event_type:
            raise InvalidWebhookPayloadError("Missing eventDetails.type")
        return event_id, reference, event_type

    async def _resolve_order(self, reference: str) -> Tuple[Order | None, str | None]:
        try:
            parsed = parse_transaction_reference(reference)
        except InvalidTransactionReferenceError:
            return None, "invalid transaction reference"

        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.payment_reference == reference)
            .execution_options(populate_existing=True)
        )
        order = (await self._db.execute(stmt)).scalar_one_or_none()
        if order is None:
            return None, "order not found"
        if not parsed.matches(order.id):
            return None, "transaction reference does not match order"
        return order, None

    def _apply_status(
        self,
        order: Order,
        payment_status: str,
        order_status: OrderStatusEnum | None,
        *,
        source: str,
    ) -> bool:
        if (
            order.payment_status in SUCCESSFUL_PAYMENT_STATUSES
            and payment_status not in SUCCESSFUL_PAYMENT_STATUSES
        ):
            logger.warning(
                "Ignoring payment status regression",
                order_id=str(order.id),
                current=order.payment_status,
                attempted=payment_status,
                source=source,
            )
            return False

        order.payment_status = payment_status
        # Redirects cannot reopen an order the gateway already closed.
        locked = _REDIRECT_LOCKED_STATUSES if source == "redirect" else _WEBHOOK_LOCKED_STATUSES
        if order_status is not None and order.status not in locked:
            order.status = order_status
        return True

    async def _reconcile(self, order: Order) -> RewardEffect | None:
        await self._db.flush()
        await self._db.refresh(order, attribute_names=["payment_status", "status", "rewards_processed_at"])
        if order.payment_status not in SUCCESSFUL_PAYMENT_STATUSES:
            return None

        effect = await self._reward_effects.apply_for_order(order)
        if effect.status is not RewardEffectStatus.ALREADY_PROCESSED and order.user_id is not None:
            await self._carts.discard(order.user_id)
        return effect

    async def handle_redirect(
        self,
        outcome: str,
        order_id: UUID | str,
        *,
        user_id: UUID | None = None,
    ) -> PaymentOutcomeView:
        """Reconcile the customer's return from the hosted payment page.

        Without user_id the stored state is reported and nothing is written.
        """

        if outcome not in REDIRECT_OUTCOMES:
            raise InvalidRedirectOutcomeError(outcome)
        try:
            order_uuid = order_id if isinstance(order_id, UUID) else UUID(str(order_id))
        except ValueError as exc:
            raise PaymentOrderNotFoundError(order_id) from exc

        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_uuid)
            .execution_options(populate_existing=True)
        )
        order = (await self._db.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise PaymentOrderNotFoundError(order_uuid)
        if user_id is not None and order.user_id != user_id:
            raise PaymentOrderAccessError(order_uuid)

        get_payment_store().record_redirect(outcome)
        # Only the signed-in owner's redirect writes; anonymous ones just report.
        if order.payment_method == PaymentMethodEnum.ONLINE and user_id is not None:
            if outcome != "success" or self._config.payment_trust_redirect_success:
                payment_status, order_status = REDIRECT_MAPPING[outcome]
                self._apply_status(order, payment_status, order_status, source="redirect")
            await self._reconcile(order)
            await self._db.commit()
            await self._db.refresh(order, attribute_names=["payment_status", "status", "rewards_processed_at"])

        title, message = REDIRECT_COPY[outcome]
        logger.info(
            "Payment redirect reconciled",
            outcome=outcome,
            order_id=str(order.id),
            user_id=str(order.user_id) if order.user_id else None,
            payment_status=order.payment_status,
        )
        return PaymentOutcomeView(
            outcome=outcome,
            order_id=str(order.id),
            order_reference=str(order.id)[:8],
            payment_status=order.payment_status,
            order_status=_order_status_value(order),
            title=title,
            message=message,
            rewards_applied=order.rewards_processed_at is not None,
        )


__all__ = [
    "InvalidRedirectOutcomeError",
    "InvalidWebhookPayloadError",
    "PaymentOrderAccessError",
    "PaymentOrderNotFoundError",
    "PaymentOutcomeReconciler",
    "PaymentOutcomeView",
    "REDIRECT_MAPPING",
    "SUCCESSFUL_PAYMENT_STATUSES",
    "WEBHOOK_EVENT_MAPPING",
    "WebhookResult",
    "WebhookSourceRejectedError",
    "resolve_webhook_source",
]
