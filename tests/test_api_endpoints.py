from __future__ import annotations

from uuid import uuid4

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from cloudcafe_api.api.dependencies.payments import get_payment_gateway
from cloudcafe_api.core.settings import settings

from factories import create_user, fetch_ledger, make_gateway


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _as(user) -> dict[str, str]:
    return {"X-Session-User": str(user.id)}


@pytest.mark.asyncio
async def test_health_endpoints(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        assert (await client.get("/healthz")).json() == {"status": "ok"}
        assert (await client.get("/readyz")).json() == {"status": "ready", "database": "ok"}


@pytest.mark.asyncio
async def test_member_routes_require_session(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        missing = await client.get("/api/v1/cart")
        invalid = await client.get("/api/v1/cart", headers={"X-Session-User": "nope"})
        unknown = await client.get("/api/v1/cart", headers={"X-Session-User": str(uuid4())})

    assert missing.status_code == 401
    assert missing.json()["detail"]["code"] == "not_authenticated"
    assert invalid.status_code == 400
    assert unknown.status_code == 401


@pytest.mark.asyncio
async def test_cart_flow_applies_pending_reward(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await create_user(session_factory, email="cart@example.com", stamps=0, pending_reward=True)

    async with _client(app) as client:
        added = await client.post(
            "/api/v1/cart/items",
            json={"name": "Latte", "price": "£3.50", "category": "Coffee", "quantity": 2},
            headers=_as(user),
        )
        assert added.status_code == 201
        cart = added.json()
        assert cart["rewardApplied"] is True
        assert cart["total"] == pytest.approx(3.5)
        assert cart["count"] == 2
        free_line = next(item for item in cart["items"] if item["rewardApplied"])
        assert free_line["price"] == "£0.00"
        assert free_line["originalPrice"] == "£3.50"

        paid_line = next(item for item in cart["items"] if not item["rewardApplied"])
        updated = await client.patch(
            f"/api/v1/cart/items/{paid_line['id']}",
            json={"quantity": 3},
            headers=_as(user),
        )
        assert updated.json()["total"] == pytest.approx(10.5)

        notes = await client.put("/api/v1/cart/notes", json={"notes": "Extra hot"}, headers=_as(user))
        assert notes.json()["notes"] == "Extra hot"

        missing = await client.delete("/api/v1/cart/items/unknown", headers=_as(user))
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "cart_item_not_found"

        cleared = await client.delete("/api/v1/cart", headers=_as(user))
        assert cleared.json()["items"] == []


@pytest.mark.asyncio
async def test_reward_card_and_history(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await create_user(session_factory, email="card@example.com")

    async with _client(app) as client:
        card = await client.get("/api/v1/rewards/me", headers=_as(user))
        history = await client.get("/api/v1/rewards/me/transactions", headers=_as(user))

    assert card.status_code == 200
    body = card.json()
    assert body["stamps"] == 0
    assert body["pendingReward"] is False
    assert body["stampsToNextReward"] == 10
    assert body["qrPayload"] == f"cloudcafe:{user.id}"
    assert history.json() == []


@pytest.mark.asyncio
async def test_in_store_checkout_and_order_history(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await create_user(session_factory, email="checkout@example.com", stamps=8)
    other = await create_user(session_factory, email="other@example.com")
    app.dependency_overrides[get_payment_gateway] = lambda: make_gateway()

    async with _client(app) as client:
        await client.post(
            "/api/v1/cart/items",
            json={"name": "Cappuccino", "price": "£3.30", "category": "Coffee", "quantity": 2},
            headers=_as(user),
        )
        submitted = await client.post("/api/v1/orders", json={"paymentMethod": "in-store"}, headers=_as(user))
        assert submitted.status_code == 201
        body = submitted.json()
        assert body["rewardOutcome"] == "reward_unlocked"
        assert body["collectionMinutes"] == 25
        assert body["paymentUrl"] is None
        order = body["order"]
        assert order["status"] == "pending"
        assert order["paymentMethod"] == "in-store"
        assert order["reference"] == order["id"][:8]
        assert order["items"][0]["productName"] == "Cappuccino"

        empty = await client.post("/api/v1/orders", json={"paymentMethod": "in-store"}, headers=_as(user))
        assert empty.status_code == 400
        assert empty.json()["detail"]["code"] == "empty_cart"

        listed = await client.get("/api/v1/orders", headers=_as(user))
        assert [entry["id"] for entry in listed.json()] == [order["id"]]

        forbidden = await client.get(f"/api/v1/orders/{order['id']}", headers=_as(other))
        assert forbidden.status_code == 403
        missing = await client.get(f"/api/v1/orders/{uuid4()}", headers=_as(user))
        assert missing.status_code == 404

    ledger = await fetch_ledger(session_factory, user.id)
    assert ledger.pending_reward is True


@pytest.mark.asyncio
async def test_online_checkout_gateway_failure_returns_502(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await create_user(session_factory, email="gateway@example.com")

    def failing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    app.dependency_overrides[get_payment_gateway] = lambda: make_gateway(failing)

    async with _client(app) as client:
        await client.post(
            "/api/v1/cart/items",
            json={"name": "Tea", "price": "£2.20", "category": "Tea"},
            headers=_as(user),
        )
        response = await client.post("/api/v1/orders", json={"paymentMethod": "online"}, headers=_as(user))
        orders = await client.get("/api/v1/orders", headers=_as(user))

    assert response.status_code == 502
    assert response.json()["detail"]["code"] == "payment_session_failed"
    assert orders.json() == []


@pytest.mark.asyncio
async def test_online_checkout_then_webhook_and_redirect(app_with_db) -> None:
    app, session_factory = app_with_db
    user = await create_user(session_factory, email="online@example.com", stamps=1)
    app.dependency_overrides[get_payment_gateway] = lambda: make_gateway()

    async with _client(app) as client:
        await client.post(
            "/api/v1/cart/items",
            json={"name": "Latte", "price": "£3.50", "category": "Coffee"},
            headers=_as(user),
        )
        submitted = await client.post("/api/v1/orders", json={"paymentMethod": "online"}, headers=_as(user))
        assert submitted.status_code == 201
        body = submitted.json()
        assert body["paymentUrl"] == "https://pay.test/hpp/abc"
        order_id = body["order"]["id"]
        assert body["order"]["status"] == "awaiting_payment"

        history = await client.get(f"/api/v1/orders/{order_id}", headers=_as(user))
        reference = history.json()["id"][:8]
        assert reference == body["order"]["reference"]

        redirect = await client.get(f"/payment/pending?order={order_id}", headers=_as(user))
        assert redirect.status_code == 200
        assert redirect.json()["title"] == "Payment Pending"

        unknown_outcome = await client.get(f"/payment/refund?order={order_id}")
        assert unknown_outcome.status_code == 404

    ledger = await fetch_ledger(session_factory, user.id)
    assert ledger.stamps == 1


@pytest.mark.asyncio
async def test_webhook_acknowledges_bad_payloads(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post(
            "/webhooks/payment",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["received"] is True
    assert body["error"] == "Webhook payload must be a JSON object"


@pytest.mark.asyncio
async def test_webhook_allowlist_uses_socket_peer_not_forwarded_header(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "worldpay_webhook_allowed_networks", ["195.35.90.0/24"])

    async with _client(app) as client:
        plain = await client.post("/webhooks/payment", json={})
        spoofed = await client.post(
            "/webhooks/payment",
            json={},
            headers={"X-Forwarded-For": "195.35.90.7"},
        )

    assert plain.status_code == 403
    assert spoofed.status_code == 403
    assert spoofed.json()["detail"]["code"] == "webhook_source_rejected"


@pytest.mark.asyncio
async def test_webhook_behind_trusted_proxy_uses_nearest_untrusted_hop(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "worldpay_webhook_allowed_networks", ["195.35.90.0/24"])
    monkeypatch.setattr(settings, "worldpay_webhook_trusted_proxies", ["127.0.0.1/32"])

    async with _client(app) as client:
        relayed = await client.post(
            "/webhooks/payment",
            json={},
            headers={"X-Forwarded-For": "10.9.9.9, 195.35.90.7"},
        )
        prepended = await client.post(
            "/webhooks/payment",
            json={},
            headers={"X-Forwarded-For": "195.35.90.7, 10.9.9.9"},
        )

    assert relayed.status_code == 200
    assert relayed.json()["received"] is True
    assert prepended.status_code == 403


@pytest.mark.asyncio
async def test_staff_routes_reject_customers(app_with_db) -> None:
    app, session_factory = app_with_db
    customer = await create_user(session_factory, email="customer@example.com")

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/staff/rewards/stamps",
            json={"payload": f"cloudcafe:{customer.id}"},
            headers=_as(customer),
        )
        observability = await client.get("/api/v1/observability", headers=_as(customer))

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "staff_only"
    assert observability.status_code == 403


@pytest.mark.asyncio
async def test_staff_terminal_endpoints(app_with_db) -> None:
    app, session_factory = app_with_db
    staff = await create_user(session_factory, email="barista@example.com", role="staff")
    customer = await create_user(session_factory, email="regular@example.com", stamps=9)
    scan = {"payload": f"cloudcafe:{customer.id}"}

    async with _client(app) as client:
        lookup = await client.post("/api/v1/staff/rewards/lookup", json=scan, headers=_as(staff))
        assert lookup.json()["card"]["stamps"] == 9
        assert lookup.json()["customer"]["email"] == "regular@example.com"

        stamped = await client.post("/api/v1/staff/rewards/stamps", json=scan, headers=_as(staff))
        assert stamped.status_code == 200
        assert stamped.json()["outcome"] == "reward_unlocked"
        assert stamped.json()["message"] == "Stamp added! Reward unlocked!"
        assert stamped.json()["card"]["pendingReward"] is True

        blocked = await client.post("/api/v1/staff/rewards/stamps", json=scan, headers=_as(staff))
        assert blocked.status_code == 409
        assert blocked.json()["detail"]["code"] == "reward_already_pending"

        redeemed = await client.post("/api/v1/staff/rewards/redeem", json=scan, headers=_as(staff))
        assert redeemed.json()["card"]["pendingReward"] is False

        again = await client.post("/api/v1/staff/rewards/redeem", json=scan, headers=_as(staff))
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "no_reward_to_redeem"

        malformed = await client.post(
            "/api/v1/staff/rewards/lookup", json={"payload": "hello"}, headers=_as(staff)
        )
        assert malformed.status_code == 400
        assert malformed.json()["detail"]["code"] == "invalid_identifier_format"

        unknown = await client.post(
            "/api/v1/staff/rewards/lookup", json={"payload": str(uuid4())}, headers=_as(staff)
        )
        assert unknown.status_code == 404

        metrics = await client.get("/api/v1/observability", headers=_as(staff))
        rewards = metrics.json()["rewards"]
        assert rewards["transitions"]["source:staff_terminal"] == 2
        assert rewards["rejections"] == {"reward_already_pending": 1, "no_reward_to_redeem": 1}


@pytest.mark.asyncio
async def test_staff_order_board_and_busy_mode(app_with_db) -> None:
    app, session_factory = app_with_db
    staff = await create_user(session_factory, email="till@example.com", role="admin")
    customer = await create_user(session_factory, email="buyer@example.com")
    app.dependency_overrides[get_payment_gateway] = lambda: make_gateway()

    async with _client(app) as client:
        busy = await client.put("/api/v1/staff/shop/busy-mode", json={"busyMode": True}, headers=_as(staff))
        assert busy.json() == {"busyMode": True, "collectionMinutes": 55}
        assert (await client.get("/api/v1/shop/status")).json()["busyMode"] is True

        await client.post(
            "/api/v1/cart/items",
            json={"name": "Toastie", "price": "£5.00", "category": "Food"},
            headers=_as(customer),
        )
        submitted = await client.post("/api/v1/orders", json={"paymentMethod": "in-store"}, headers=_as(customer))
        assert submitted.json()["collectionMinutes"] == 55
        order_id = submitted.json()["order"]["id"]

        board = await client.get("/api/v1/staff/orders", params={"status": "pending"}, headers=_as(staff))
        assert [entry["id"] for entry in board.json()] == [order_id]

        done = await client.post(
            f"/api/v1/staff/orders/{order_id}/status", json={"status": "completed"}, headers=_as(staff)
        )
        assert done.json()["status"] == "completed"

        reopened = await client.post(
            f"/api/v1/staff/orders/{order_id}/status", json={"status": "confirmed"}, headers=_as(staff)
        )
        assert reopened.status_code == 409
        assert reopened.json()["detail"]["code"] == "invalid_order_transition"
