from __future__ import annotations

import base64
import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select

from cloudcafe_api.domain.rewards import LedgerState, RewardTransactionType
from cloudcafe_api.models import Cart, Order, OrderStatusEnum
from cloudcafe_api.observability.payments import get_payment_store
from cloudcafe_api.services.cart import CartService
from cloudcafe_api.services.checkout import (
    EmptyCartError,
    NotAuthenticatedError,
    NotesTooLongError,
    OrderSubmissionOrchestrator,
    PaymentSessionCreationError,
    RewardEffectStatus,
    RewardNoLongerAvailableError,
    ZeroTotalOnlinePaymentError,
)
from cloudcafe_api.services.rewards import StaffTerminal

from factories import create_user, fetch_ledger, fetch_transactions, fill_cart, make_gateway


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_in_store_order_crossing_threshold_unlocks_reward(session_factory):
    user = await create_user(session_factory, email="eight@example.com", stamps=8)
    await fill_cart(session_factory, user.id, ("Latte", "£3.50", "Coffee", 2))

    async with session_factory() as session:
        result = await OrderSubmissionOrchestrator(session, gateway=make_gateway()).submit(user, "in-store")

    order = result.order
    assert order.status is OrderStatusEnum.PENDING
    assert order.payment_status == "in_store"
    assert order.total == Decimal("7.00")
    assert result.payment_url is None
    assert result.collection_minutes == 25
    assert result.reward_effect.status is RewardEffectStatus.APPLIED

    ledger = await fetch_ledger(session_factory, user.id)
    assert ledger.state() == LedgerState(stamps=0, pending_reward=True)

    transactions = await fetch_transactions(session_factory, user.id)
    assert sorted((entry.type.value, entry.amount) for entry in transactions) == [
        (RewardTransactionType.REWARD_EARNED.value, 1),
        (RewardTransactionType.STAMP_EARNED.value, 2),
    ]
    assert {entry.order_id for entry in transactions} == {order.id}
    assert await _count(session_factory, Cart) == 0


@pytest.mark.asyncio
async def test_in_store_order_with_free_drink_redeems_pending_reward(session_factory):
    user = await create_user(session_factory, email="free@example.com", stamps=0, pending_reward=True)
    await fill_cart(
        session_factory,
        user.id,
        ("Latte", "£3.50", "Coffee", 1),
        ("Croissant", "£2.80", "Pastry", 1),
    )

    async with session_factory() as session:
        result = await OrderSubmissionOrchestrator(session, gateway=make_gateway()).submit(user, "in-store")

    assert result.order.reward_applied is True
    assert result.order.total == Decimal("2.80")
    assert [item.price for item in result.order.items] == [Decimal("0"), Decimal("2.80")]

    ledger = await fetch_ledger(session_factory, user.id)
    assert ledger.state() == LedgerState(stamps=0, pending_reward=False)
    transactions = await fetch_transactions(session_factory, user.id)
    assert [entry.type for entry in transactions] == [RewardTransactionType.REWARD_REDEEMED]


@pytest.mark.asyncio
async def test_online_order_waits_for_payment(session_factory):
    user = await create_user(session_factory, email="online@example.com", stamps=3)
    await fill_cart(session_factory, user.id, ("Latte", "£3.50", "Coffee", 2))
    sent: list[httpx.Request] = []

    async with session_factory() as session:
        orchestrator = OrderSubmissionOrchestrator(session, gateway=make_gateway(requests=sent))
        result = await orchestrator.submit(user, "online")

    order = result.order
    assert result.payment_url == "https://pay.test/hpp/abc"
    assert order.status is OrderStatusEnum.AWAITING_PAYMENT
    assert order.payment_status == "pending"
    assert order.payment_reference.startswith(f"ORDER-{str(order.id)[:8]}-")
    assert result.reward_effect is None

    assert len(sent) == 1
    request = sent[0]
    assert str(request.url) == "https://gateway.test/payment_pages"
    assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"svc-key").decode()
    body = json.loads(request.content)
    assert body["value"] == {"currency": "GBP", "amount": 700}
    assert body["transactionReference"] == order.payment_reference
    assert body["resultURLs"]["successURL"] == f"https://cafe.example/payment/success?order={order.id}"

    # Stamps and cart wait for the webhook.
    ledger = await fetch_ledger(session_factory, user.id)
    assert ledger.stamps == 3
    assert await _count(session_factory, Cart) == 1
    assert get_payment_store().snapshot().session_totals == {"succeeded": 1}


@pytest.mark.asyncio
async def test_gateway_failure_removes_order_and_keeps_cart(session_factory):
    user = await create_user(session_factory, email="declined@example.com")
    await fill_cart(session_factory, user.id, ("Mocha", "£3.90", "Coffee", 1))

    def failing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="upstream unavailable")

    async with session_factory() as session:
        orchestrator = OrderSubmissionOrchestrator(session, gateway=make_gateway(failing))
        with pytest.raises(PaymentSessionCreationError) as excinfo:
            await orchestrator.submit(user, "online")

    assert excinfo.value.status_code == 502
    assert await _count(session_factory, Order) == 0
    async with session_factory() as session:
        cart = await CartService(session).load(user.id)
    assert cart.count() == 1
    assert get_payment_store().snapshot().session_totals == {"failed": 1}


@pytest.mark.asyncio
async def test_submission_guards(session_factory):
    user = await create_user(session_factory, email="guards@example.com")

    async with session_factory() as session:
        orchestrator = OrderSubmissionOrchestrator(session, gateway=make_gateway())
        with pytest.raises(NotAuthenticatedError):
            await orchestrator.submit(None, "in-store")
        with pytest.raises(EmptyCartError):
            await orchestrator.submit(user, "in-store")

    await fill_cart(session_factory, user.id, ("Tea", "£2.20", "Tea", 1))
    async with session_factory() as session:
        await CartService(session).set_notes(user.id, "x" * 501)

    async with session_factory() as session:
        with pytest.raises(NotesTooLongError):
            await OrderSubmissionOrchestrator(session, gateway=make_gateway()).submit(user, "in-store")

    assert await _count(session_factory, Order) == 0


@pytest.mark.asyncio
async def test_free_only_cart_cannot_pay_online(session_factory):
    user = await create_user(session_factory, email="zero@example.com", stamps=0, pending_reward=True)
    await fill_cart(session_factory, user.id, ("Flat White", "£3.40", "Coffee", 1))
    sent: list[httpx.Request] = []

    async with session_factory() as session:
        orchestrator = OrderSubmissionOrchestrator(session, gateway=make_gateway(requests=sent))
        with pytest.raises(ZeroTotalOnlinePaymentError):
            await orchestrator.submit(user, "online")

    assert sent == []
    assert await _count(session_factory, Order) == 0


@pytest.mark.asyncio
async def test_free_drink_redeemed_at_till_is_not_given_again(session_factory):
    user = await create_user(session_factory, email="twice@example.com", stamps=0, pending_reward=True)
    staff = await create_user(session_factory, email="barista@example.com", role="staff")
    await fill_cart(
        session_factory,
        user.id,
        ("Latte", "£3.50", "Coffee", 1),
        ("Croissant", "£2.80", "Pastry", 1),
    )
    async with session_factory() as session:
        await StaffTerminal(session).redeem(str(user.id), staff)

    async with session_factory() as session:
        with pytest.raises(RewardNoLongerAvailableError) as excinfo:
            await OrderSubmissionOrchestrator(session, gateway=make_gateway()).submit(user, "in-store")
    assert excinfo.value.status_code == 409
    assert await _count(session_factory, Order) == 0

    async with session_factory() as session:
        cart = await CartService(session).load(user.id, auto_apply=False)
    assert cart.reward_applied is False
    assert cart.total() == Decimal("6.30")

    async with session_factory() as session:
        result = await OrderSubmissionOrchestrator(session, gateway=make_gateway()).submit(user, "in-store")

    assert result.order.total == Decimal("6.30")
    assert result.order.reward_applied is False
    ledger = await fetch_ledger(session_factory, user.id)
    assert ledger.state() == LedgerState(stamps=1, pending_reward=False)
    transactions = await fetch_transactions(session_factory, user.id)
    assert [entry.type for entry in transactions].count(RewardTransactionType.REWARD_REDEEMED) == 1


class _StaleCartService(CartService):
    async def has_pending_reward(self, user_id):
        return True


@pytest.mark.asyncio
async def test_reward_consumed_during_in_store_checkout_rolls_back_order(session_factory):
    user = await create_user(session_factory, email="race@example.com", stamps=0, pending_reward=True)
    staff = await create_user(session_factory, email="till@example.com", role="staff")
    await fill_cart(session_factory, user.id, ("Flat White", "£3.40", "Coffee", 1))
    async with session_factory() as session:
        await StaffTerminal(session).redeem(str(user.id), staff)

    async with session_factory() as session:
        orchestrator = OrderSubmissionOrchestrator(
            session,
            gateway=make_gateway(),
            cart_service=_StaleCartService(session),
        )
        with pytest.raises(RewardNoLongerAvailableError):
            await orchestrator.submit(user, "in-store")

    assert await _count(session_factory, Order) == 0
    assert await _count(session_factory, Cart) == 1
    transactions = await fetch_transactions(session_factory, user.id)
    assert [entry.type for entry in transactions] == [RewardTransactionType.REWARD_REDEEMED]
