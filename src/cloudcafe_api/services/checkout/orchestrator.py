"""Turns a member's cart into an order."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.core.settings import settings
from cloudcafe_api.domain.cart import CartSession
from cloudcafe_api.models.order import (
    Order,
    OrderItem,
    OrderStatusEnum,
    PaymentMethodEnum,
    PaymentStatusEnum,
)
from cloudcafe_api.models.user import User
from cloudcafe_api.observability.payments import get_payment_store
from cloudcafe_api.services.cart.service import CartService
from cloudcafe_api.services.payments.worldpay import (
    PaymentGatewayError,
    WorldpayClient,
    to_minor_units,
)
from cloudcafe_api.services.rewards.ledger import RewardLedgerService
from cloudcafe_api.services.shop.service import ShopService

from .errors import (
    EmptyCartError,
    NotAuthenticatedError,
    NotesTooLongError,
    PaymentSessionCreationError,
    RewardNoLongerAvailableError,
    ZeroTotalOnlinePaymentError,
)
from .rewards import RewardEffect, RewardEffectApplier, RewardEffectStatus


@dataclass
class CheckoutResult:
    order: Order
    payment_url: str | None = None
    reward_effect: RewardEffect | None = None
    collection_minutes: int | None = None


class OrderSubmissionOrchestrator:
    """Validates the cart, writes the order and routes it to payment.

    In-store orders settle rewards and clear the cart immediately. Online
    orders stop after the hosted payment session is created; the payment
    reconciler finishes them once the gateway reports the outcome.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        gateway: WorldpayClient | None = None,
        cart_service: CartService | None = None,
        reward_effects: RewardEffectApplier | None = None,
    ) -> None:
        self._db = db_session
        ledgers = RewardLedgerService(db_session)
        self._gateway = gateway or WorldpayClient()
        self._carts = cart_service or CartService(db_session, ledgers)
        self._reward_effects = reward_effects or RewardEffectApplier(db_session, ledgers)

    def _validate(self, cart: CartSession, method: PaymentMethodEnum) -> None:
        if cart.is_empty():
            raise EmptyCartError()
        limit = settings.order_notes_max_length
        if len(cart.notes) > limit:
            raise NotesTooLongError(limit)
        if method is PaymentMethodEnum.ONLINE and to_minor_units(cart.total()) <= 0:
            raise ZeroTotalOnlinePaymentError()

    def _build_order(self, user_id: UUID, cart: CartSession, method: PaymentMethodEnum) -> Order:
        if method is PaymentMethodEnum.IN_STORE:
            status, payment_status = OrderStatusEnum.PENDING, PaymentStatusEnum.IN_STORE
        else:
            status, payment_status = OrderStatusEnum.AWAITING_PAYMENT, PaymentStatusEnum.PENDING

        order = Order(
            user_id=user_id,
            status=status,
            total=cart.total(),
            currency=settings.currency,
            notes=cart.notes or None,
            payment_method=method,
            payment_status=payment_status.value,
            reward_applied=cart.reward_applied,
        )
        order.items = [
            OrderItem(
                position=position,
                product_name=item.name,
                quantity=item.quantity,
                price=item.unit_price,
                category=item.category,
                reward_applied=item.reward_applied,
            )
            for position, item in enumerate(cart.items)
        ]
        return order

    async def submit(self, user: User | None, payment_method: PaymentMethodEnum | str) -> CheckoutResult:
        if user is None:
            raise NotAuthenticatedError()
        method = PaymentMethodEnum(payment_method)

        cart = await self._carts.load(user.id, auto_apply=False)
        if cart.reward_applied and not await self._carts.has_pending_reward(user.id):
            # The reward was redeemed elsewhere; reprice the cart and let the
            # customer confirm the new total.
            await self._carts.load(user.id)
            await self._db.commit()
            raise RewardNoLongerAvailableError()
        cart = await self._carts.load(user.id)
        self._validate(cart, method)

        order = self._build_order(user.id, cart, method)
        self._db.add(order)
        await self._db.flush()
        collection_minutes = (await ShopService(self._db).status()).collection_minutes

        logger.info(
            "Order created",
            order_id=str(order.id),
            user_id=str(user.id),
            payment_method=method.value,
            total=str(order.total),
            reward_applied=order.reward_applied,
        )

        if method is PaymentMethodEnum.IN_STORE:
            effect = await self._reward_effects.apply_for_order(order)
            if effect.status is RewardEffectStatus.REWARD_ALREADY_CONSUMED:
                await self._db.rollback()
                raise RewardNoLongerAvailableError()
            await self._carts.discard(user.id)
            await self._db.commit()
            await self._load_timestamps(order)
            return CheckoutResult(order=order, reward_effect=effect, collection_minutes=collection_minutes)

        # The order must be durable before the gateway can call back about it.
        await self._db.commit()
        return await self._start_online_payment(order, collection_minutes)

    async def _start_online_payment(self, order: Order, collection_minutes: int) -> CheckoutResult:
        store = get_payment_store()
        try:
            session = await self._gateway.create_payment_session(
                order_id=order.id,
                amount=order.total,
                currency=order.currency,
            )
        except PaymentGatewayError as exc:
            store.record_session_failure(exc.reason)
            logger.error(
                "Payment session creation failed; removing order",
                order_id=str(order.id),
                user_id=str(order.user_id),
                reason=exc.reason,
            )
            await self._discard_order(order.id)
            raise PaymentSessionCreationError(exc.reason) from exc

        order.payment_reference = session.transaction_reference
        await self._db.commit()
        await self._load_timestamps(order)
        store.record_session_success(str(order.id))
        return CheckoutResult(order=order, payment_url=session.url, collection_minutes=collection_minutes)

    async def _load_timestamps(self, order: Order) -> None:
        # Server-side defaults are not loaded by the INSERT.
        await self._db.refresh(order, attribute_names=["created_at", "updated_at"])

    async def _discard_order(self, order_id: UUID) -> None:
        await self._db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
        await self._db.execute(delete(Order).where(Order.id == order_id))
        await self._db.commit()


__all__ = ["CheckoutResult", "OrderSubmissionOrchestrator"]
