import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from takeout import main
from takeout.database import get_db
from takeout.main import app
from takeout.services.notifications import NotificationHub, get_notification_hub
from takeout.services.payment import get_payment_service


@pytest.fixture
async def client(session_maker, payment, hub, seed):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_service] = lambda: payment
    app.dependency_overrides[get_notification_hub] = lambda: hub

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def alice(seed):
    return {"X-User-Id": str(seed.alice.id)}


@pytest.fixture
def bob(seed):
    return {"X-User-Id": str(seed.bob.id)}


async def checkout(client, headers, seed) -> dict:
    response = await client.post(
        "/user/shoppingCart/add", json={"dish_id": seed.noodles.id}, headers=headers
    )
    assert response.status_code == 200
    response = await client.post(
        "/user/order/submit",
        json={"address_book_id": seed.alice_home.id, "tableware_number": 2},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()


class TestAuthentication:
    async def test_missing_user_header(self, client):
        response = await client.get("/user/shoppingCart/list")
        assert response.status_code == 401


class TestCartEndpoints:
    async def test_add_list_sub_clean(self, client, alice, seed):
        item = {"dish_id": seed.noodles.id, "dish_flavor": "mild"}

        await client.post("/user/shoppingCart/add", json=item, headers=alice)
        response = await client.post("/user/shoppingCart/add", json=item, headers=alice)
        assert response.json()["quantity"] == 2

        response = await client.get("/user/shoppingCart/list", headers=alice)
        assert [line["name"] for line in response.json()] == ["Beef Noodles"]

        response = await client.post("/user/shoppingCart/sub", json=item, headers=alice)
        assert response.json() == {"quantity": 1}

        response = await client.delete("/user/shoppingCart/clean", headers=alice)
        assert response.json() == {"removed": 1}

    async def test_invalid_item(self, client, alice):
        response = await client.post("/user/shoppingCart/add", json={}, headers=alice)

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidCartItem"


class TestOrderFlow:
    async def test_submit_pay_and_confirm(self, client, alice, seed, dashboard):
        submitted = await checkout(client, alice, seed)
        assert submitted["order_amount"] == 18.5

        response = await client.put(
            "/user/order/payment",
            json={"order_number": submitted["order_number"]},
            headers=alice,
        )
        assert response.status_code == 200
        assert response.json()["provider"] == "mock"

        simulate = f"/webhook/simulation/paid/{submitted['order_number']}"
        assert (await client.post(simulate)).json()["transitioned"] is True
        assert (await client.post(simulate)).json()["transitioned"] is False

        response = await client.get(
            f"/user/order/orderDetail/{submitted['id']}", headers=alice
        )
        body = response.json()
        assert body["status"] == "to_be_confirmed"
        assert body["pay_status"] == "paid"
        assert len(body["details"]) == 1

        assert len(dashboard.messages) == 1
        assert json.loads(dashboard.messages[0])["orderId"] == submitted["id"]

    async def test_paying_twice_is_rejected(self, client, alice, seed):
        submitted = await checkout(client, alice, seed)
        await client.post(f"/webhook/simulation/paid/{submitted['order_number']}")

        response = await client.put(
            "/user/order/payment",
            json={"order_number": submitted["order_number"]},
            headers=alice,
        )

        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyPaid"

    async def test_empty_cart_submit(self, client, alice, seed):
        response = await client.post(
            "/user/order/submit",
            json={"address_book_id": seed.alice_home.id},
            headers=alice,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "EmptyCart"

    async def test_orders_are_private(self, client, alice, bob, seed):
        submitted = await checkout(client, alice, seed)

        response = await client.get(f"/user/order/orderDetail/{submitted['id']}", headers=bob)
        assert response.status_code == 404

        response = await client.get("/user/order/historyOrders", headers=bob)
        assert response.json() == {"total": 0, "records": []}

    async def test_reminder(self, client, alice, seed, dashboard):
        submitted = await checkout(client, alice, seed)

        response = await client.get(f"/user/order/reminder/{submitted['id']}", headers=alice)

        assert response.status_code == 200
        assert json.loads(dashboard.messages[0])["type"] == 2

    async def test_user_cancel(self, client, alice, seed):
        submitted = await checkout(client, alice, seed)

        response = await client.put(f"/user/order/cancel/{submitted['id']}", headers=alice)

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancel_reason"] == "Cancelled by customer"


class TestPaymentWebhook:
    async def test_event_confirms_order(self, client, alice, seed, payment):
        submitted = await checkout(client, alice, seed)
        event = payment.settle(submitted["order_number"])

        response = await client.post("/webhook/payment", content=json.dumps(event))

        assert response.status_code == 200
        assert response.json()["transitioned"] is True

    async def test_unknown_order_is_acknowledged(self, client, payment):
        event = payment.settle("DOES-NOT-EXIST")

        response = await client.post("/webhook/payment", content=json.dumps(event))

        assert response.status_code == 200
        assert response.json()["handled"] is False

    async def test_other_events_are_ignored(self, client):
        response = await client.post(
            "/webhook/payment", content=json.dumps({"type": "charge.refunded"})
        )
        assert response.json() == {"received": True, "handled": False}

    async def test_malformed_payload(self, client):
        response = await client.post("/webhook/payment", content=b"not json")
        assert response.status_code == 400


class TestMerchantEndpoints:
    async def test_lifecycle_and_statistics(self, client, alice, seed):
        submitted = await checkout(client, alice, seed)
        order_id = submitted["id"]

        response = await client.put("/admin/order/confirm", json={"id": order_id})
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidOrderState"

        await client.post(f"/webhook/simulation/paid/{submitted['order_number']}")
        stats = (await client.get("/admin/order/statistics")).json()
        assert stats["to_be_confirmed"] == 1

        assert (await client.put("/admin/order/confirm", json={"id": order_id})).status_code == 200
        assert (await client.put(f"/admin/order/delivery/{order_id}")).status_code == 200
        response = await client.put(f"/admin/order/complete/{order_id}")
        assert response.json()["status"] == "completed"

        response = await client.get(
            "/admin/order/conditionSearch", params={"status": "completed"}
        )
        assert response.json()["total"] == 1

    async def test_merchant_cancel_refunds_paid_order(self, client, alice, seed, payment):
        submitted = await checkout(client, alice, seed)
        await client.post(f"/webhook/simulation/paid/{submitted['order_number']}")

        response = await client.put(
            "/admin/order/cancel",
            json={"id": submitted["id"], "cancel_reason": "Kitchen closed"},
        )

        assert response.status_code == 200
        assert response.json()["pay_status"] == "refunded"

    async def test_unknown_order(self, client):
        response = await client.put("/admin/order/delivery/999")
        assert response.status_code == 404


class TestReports:
    async def test_turnover_range(self, client):
        response = await client.get(
            "/admin/report/turnoverStatistics",
            params={"begin": "2024-05-01", "end": "2024-05-03"},
        )

        assert response.status_code == 200
        assert response.json()["turnover_list"] == [0.0, 0.0, 0.0]

    async def test_reversed_range(self, client):
        response = await client.get(
            "/admin/report/ordersStatistics",
            params={"begin": "2024-05-03", "end": "2024-05-01"},
        )
        assert response.status_code == 400

    async def test_user_statistics(self, client):
        response = await client.get(
            "/admin/report/userStatistics",
            params={"begin": "2024-05-01", "end": "2024-05-02"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["date_list"] == ["2024-05-01", "2024-05-02"]
        assert body["new_user_list"] == [0, 0]

    async def test_top10_without_sales(self, client):
        response = await client.get(
            "/admin/report/top10",
            params={"begin": "2024-05-01", "end": "2024-05-31"},
        )

        assert response.status_code == 200
        assert response.json() == {"name_list": [], "number_list": []}

    async def test_top10_requires_range(self, client):
        response = await client.get("/admin/report/top10", params={"begin": "2024-05-01"})
        assert response.status_code == 422


class TestHealth:
    async def test_reports_components(self, client, dashboard, monkeypatch):
        monkeypatch.setattr(main.redis.Redis, "from_url", MagicMock())

        response = await client.get("/health")

        body = response.json()
        assert body["database"] == "healthy"
        assert body["redis"] == "healthy"
        assert body["payment_service"] == "healthy"
        assert body["observers"] == 1


class TestNotificationSocket:
    def test_connection_registers_and_unregisters(self):
        class RecordingHub(NotificationHub):
            def __init__(self):
                super().__init__()
                self.registered = []

            def register(self, observer):
                self.registered.append(observer.key)
                super().register(observer)

        hub = RecordingHub()
        app.dependency_overrides[get_notification_hub] = lambda: hub
        try:
            with TestClient(app).websocket_connect("/ws/dashboard-7") as websocket:
                websocket.send_text("ping")
        finally:
            app.dependency_overrides.clear()

        assert hub.registered == ["dashboard-7"]
        assert len(hub) == 0
