# tests/test_event_bus.py
import pytest

from conftest import settle
from events.event_bus import Event, EventBus, EventTypes


@pytest.mark.asyncio
async def test_dispatch_reaches_sync_async_and_wildcard_listeners(bus):
    received = []

    def sync_listener(event):
        received.append(("sync", event.type))

    async def async_listener(event):
        received.append(("async", event.type))

    bus.subscribe(EventTypes.BLOCKS_UPDATED, sync_listener)
    bus.subscribe(EventTypes.BLOCKS_UPDATED, async_listener)
    bus.subscribe("*", lambda event: received.append(("any", event.type)))

    await bus.dispatch(Event(EventTypes.BLOCKS_UPDATED, {}, 0.0))
    await bus.dispatch(Event(EventTypes.NOTIFICATION, {}, 0.0))

    assert received == [
        ("sync", EventTypes.BLOCKS_UPDATED),
        ("async", EventTypes.BLOCKS_UPDATED),
        ("any", EventTypes.BLOCKS_UPDATED),
        ("any", EventTypes.NOTIFICATION),
    ]


@pytest.mark.asyncio
async def test_cancel_handle_detaches_listener(bus):
    received = []
    cancel = bus.subscribe(EventTypes.STATS_UPDATED, received.append)
    cancel()
    cancel()

    await bus.dispatch(Event(EventTypes.STATS_UPDATED, {}, 0.0))
    assert received == []


@pytest.mark.asyncio
async def test_failing_listener_is_isolated(bus):
    received = []

    def broken(event):
        raise RuntimeError("listener bug")

    bus.subscribe(EventTypes.NOTIFICATION, broken)
    bus.subscribe(EventTypes.NOTIFICATION, received.append)

    await bus.dispatch(Event(EventTypes.NOTIFICATION, {"message": "x"}, 0.0))
    assert len(received) == 1


@pytest.mark.asyncio
async def test_processor_delivers_emitted_events():
    bus = EventBus()
    received = []
    bus.subscribe(EventTypes.HEIGHT_ADVANCED, received.append)
    await bus.start()

    bus.emit_nowait(EventTypes.HEIGHT_ADVANCED, {"height": 5}, source="test")
    await bus.emit(EventTypes.HEIGHT_ADVANCED, {"height": 6})
    await settle(lambda: len(received) == 2)
    await bus.stop()

    assert [e.data["height"] for e in received] == [5, 6]
    assert received[0].source == "test"


def test_drain_returns_queued_events(bus):
    bus.emit_nowait(EventTypes.BLOCKS_UPDATED, {"count": 1})
    bus.emit_nowait(EventTypes.TRANSACTIONS_UPDATED, {"count": 2})

    assert [e.type for e in bus.drain()] == [EventTypes.BLOCKS_UPDATED, EventTypes.TRANSACTIONS_UPDATED]
    assert bus.drain() == []
