import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

from starlette.websockets import WebSocketState

from takeout.services.notifications import (
    EventType,
    NotificationHub,
    OrderEvent,
    get_notification_hub,
    reset_notification_hub,
)
from takeout.services.notifications.websocket import WebSocketObserver

from tests.conftest import FailingObserver, RecordingObserver


class TestOrderEvent:
    def test_new_order_wire_format(self):
        event = OrderEvent.new_order(42, "20240520120000ABCDEF12")

        assert json.loads(event.to_json()) == {
            "type": 1,
            "orderId": 42,
            "content": "Order number: 20240520120000ABCDEF12",
        }

    def test_reminder_type(self):
        event = OrderEvent.reminder(7, "N1")
        assert event.type == EventType.REMINDER
        assert event.to_dict()["type"] == 2


class TestNotificationHub:
    async def test_broadcast_reaches_every_observer(self):
        hub = NotificationHub()
        first, second = RecordingObserver("a"), RecordingObserver("b")
        hub.register(first)
        hub.register(second)

        delivered = await hub.broadcast(OrderEvent.new_order(1, "N1"))

        assert delivered == 2
        assert len(first.messages) == len(second.messages) == 1

    async def test_broadcast_without_observers(self):
        assert await NotificationHub().broadcast(OrderEvent.new_order(1, "N1")) == 0

    async def test_failing_observer_is_dropped(self):
        hub = NotificationHub()
        healthy = RecordingObserver("healthy")
        hub.register(FailingObserver("broken"))
        hub.register(healthy)

        delivered = await hub.broadcast(OrderEvent.new_order(1, "N1"))

        assert delivered == 1
        assert len(healthy.messages) == 1
        assert "broken" not in hub
        assert "healthy" in hub

    async def test_slow_observer_times_out(self):
        class StalledObserver(RecordingObserver):
            async def send(self, message):
                await asyncio.sleep(10)

        hub = NotificationHub(send_timeout=0.01)
        fast = RecordingObserver("fast")
        hub.register(StalledObserver("slow"))
        hub.register(fast)

        assert await hub.broadcast(OrderEvent.reminder(1, "N1")) == 1
        assert len(fast.messages) == 1
        assert len(hub) == 1

    def test_unregister_is_idempotent(self):
        hub = NotificationHub()
        hub.register(RecordingObserver("a"))

        hub.unregister("a")
        hub.unregister("a")
        hub.unregister("never-registered")

        assert len(hub) == 0

    def test_stale_unregister_keeps_newer_connection(self):
        hub = NotificationHub()
        old, new = RecordingObserver("dash"), RecordingObserver("dash")
        hub.register(old)
        hub.register(new)

        hub.unregister("dash", old)

        assert "dash" in hub
        assert len(hub) == 1

    async def test_registered_after_broadcast_starts_is_not_included(self):
        hub = NotificationHub()
        late = RecordingObserver("late")

        class RegistersAnother(RecordingObserver):
            async def send(self, message):
                hub.register(late)
                await super().send(message)

        hub.register(RegistersAnother("early"))
        delivered = await hub.broadcast(OrderEvent.new_order(1, "N1"))

        assert delivered == 1
        assert late.messages == []
        assert "late" in hub

    async def test_close_all_empties_registry(self):
        class ClosableObserver(RecordingObserver):
            closed = False

            async def close(self):
                self.closed = True

        class BrokenClose(RecordingObserver):
            async def close(self):
                raise ConnectionError("already gone")

        hub = NotificationHub()
        closable = ClosableObserver("a")
        hub.register(closable)
        hub.register(BrokenClose("b"))

        await hub.close_all()

        assert closable.closed
        assert len(hub) == 0


class TestWebSocketObserver:
    async def test_send_forwards_text(self):
        websocket = MagicMock()
        websocket.send_text = AsyncMock()
        observer = WebSocketObserver("client-1", websocket)

        await observer.send('{"type": 1}')

        assert observer.key == "client-1"
        websocket.send_text.assert_awaited_once_with('{"type": 1}')

    async def test_close_only_when_connected(self):
        websocket = MagicMock()
        websocket.close = AsyncMock()
        websocket.client_state = WebSocketState.DISCONNECTED

        await WebSocketObserver("client-1", websocket).close()
        websocket.close.assert_not_awaited()

        websocket.client_state = WebSocketState.CONNECTED
        await WebSocketObserver("client-1", websocket).close()
        websocket.close.assert_awaited_once()


class TestNotificationHubFactory:
    def test_hub_is_shared_until_reset(self):
        reset_notification_hub()
        try:
            hub = get_notification_hub()
            hub.register(RecordingObserver("dashboard"))
            assert get_notification_hub() is hub

            reset_notification_hub()

            fresh = get_notification_hub()
            assert fresh is not hub
            assert len(fresh) == 0
        finally:
            reset_notification_hub()
