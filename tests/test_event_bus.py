"""
Tests for EventBus.
"""
import pytest
from unittest.mock import MagicMock

from ckfinance.core.event_bus import Event, EventBus, EventType


class TestEventBusDispatch:

    @pytest.mark.asyncio
    async def test_emit_reaches_async_and_sync_handlers(self):
        bus = EventBus()
        received = []

        async def on_async(event):
            received.append(("async", event.data["asset_id"]))

        def on_sync(event):
            received.append(("sync", event.data["asset_id"]))

        bus.subscribe(EventType.DEPOSIT_READY, on_async)
        bus.subscribe(EventType.DEPOSIT_READY, on_sync)

        event = await bus.emit(EventType.DEPOSIT_READY, source="test", asset_id="BTC")

        assert isinstance(event, Event)
        assert event.source == "test"
        assert sorted(received) == [("async", "BTC"), ("sync", "BTC")]

    @pytest.mark.asyncio
    async def test_priority_order(self):
        bus = EventBus()
        order = []
        bus.subscribe(EventType.ORDER_PLACED, lambda e: order.append("low"), priority=0)
        bus.subscribe(EventType.ORDER_PLACED, lambda e: order.append("high"), priority=10)

        await bus.emit(EventType.ORDER_PLACED)

        assert order == ["high", "low"]

    @pytest.mark.asyncio
    async def test_handler_error_isolated(self):
        log_event = MagicMock()
        bus = EventBus(log_event=log_event)
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(EventType.ORDER_CANCELLED, broken, priority=5, name="broken")
        bus.subscribe(EventType.ORDER_CANCELLED, lambda e: seen.append(e))

        await bus.emit(EventType.ORDER_CANCELLED, order_id=1)

        assert len(seen) == 1
        assert bus.get_stats()["handler_errors"] == 1
        events = [c.args[0] for c in log_event.call_args_list]
        assert "event_bus_handler_error" in events

    @pytest.mark.asyncio
    async def test_filter_fn(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.DEPOSIT_STATUS_CHANGED, lambda e: seen.append(e.data["asset_id"]),
                      filter_fn=lambda e: e.data["asset_id"] == "ETH")

        await bus.emit(EventType.DEPOSIT_STATUS_CHANGED, asset_id="BTC")
        await bus.emit(EventType.DEPOSIT_STATUS_CHANGED, asset_id="ETH")

        assert seen == ["ETH"]

    @pytest.mark.asyncio
    async def test_subscribe_all_and_unsubscribe(self):
        bus = EventBus()
        seen = []
        sub = bus.subscribe_all(lambda e: seen.append(e.type))

        await bus.emit(EventType.SESSION_CONNECTED)
        assert bus.unsubscribe(None, sub) is True
        await bus.emit(EventType.SESSION_DISCONNECTED)

        assert seen == [EventType.SESSION_CONNECTED]


class TestEventBusQueue:

    @pytest.mark.asyncio
    async def test_publish_nowait_then_drain(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.PORTFOLIO_UPDATED, lambda e: seen.append(e))

        bus.publish_nowait(bus.create_event(EventType.PORTFOLIO_UPDATED, asset_id="BTC"))
        bus.publish_nowait(bus.create_event(EventType.PORTFOLIO_UPDATED, asset_id="ETH"))
        assert seen == []

        assert await bus.drain() == 2
        assert [e.data["asset_id"] for e in seen] == ["BTC", "ETH"]

    @pytest.mark.asyncio
    async def test_history_and_clear(self):
        bus = EventBus(history_size=2)
        for i in range(3):
            await bus.emit(EventType.ORDER_PLACED, order_id=i)

        history = bus.get_history(EventType.ORDER_PLACED)
        assert [e.data["order_id"] for e in history] == [1, 2]

        bus.subscribe(EventType.ORDER_PLACED, lambda e: None)
        bus.clear()
        assert bus.get_history() == []
        assert bus.get_subscriber_count(EventType.ORDER_PLACED) == 0
