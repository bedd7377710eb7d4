# tests/test_account_tracker.py
import asyncio

import pytest
import pytest_asyncio

from conftest import FakeSession, FakeWebSocket, settle
from events.event_bus import EventTypes
from realtime.channel import RealtimeChannel
from tracking.account_tracker import AccountSubscriptionTracker

ADDR_A = "a" * 48
ADDR_B = "b" * 48


def _account_frame(account, tx_hash):
    return {
        "op": "event_account_tx",
        "account": account,
        "tx": {"hash": tx_hash, "tx": {"signer": account, "nonce": 1, "actions": []}},
    }


@pytest_asyncio.fixture
async def open_channel(clock):
    ws = FakeWebSocket()
    channel = RealtimeChannel("wss://node.test/ws", session_factory=lambda: FakeSession([ws]),
                              clock=clock, sleep=clock.sleep)
    await channel.start()
    yield channel, ws
    await channel.stop()


@pytest.mark.asyncio
async def test_switching_accounts_unsubscribes_first(open_channel, bus):
    channel, ws = open_channel
    tracker = AccountSubscriptionTracker(channel, bus)

    assert await tracker.start_tracking(ADDR_A) is True
    assert await tracker.start_tracking(ADDR_B) is True

    assert tracker.address == ADDR_B
    assert ws.sent == [
        {"op": "subscribe_account", "account": ADDR_A},
        {"op": "unsubscribe_account", "account": ADDR_A},
        {"op": "subscribe_account", "account": ADDR_B},
    ]
    changes = [e.data for e in bus.drain() if e.type == EventTypes.TRACKING_CHANGED]
    assert changes == [
        {"enabled": True, "address": ADDR_A},
        {"enabled": False, "address": ADDR_A},
        {"enabled": True, "address": ADDR_B},
    ]


@pytest.mark.asyncio
async def test_only_tracked_account_is_buffered(open_channel):
    channel, _ = open_channel
    tracker = AccountSubscriptionTracker(channel)
    await tracker.start_tracking(ADDR_A)
    await tracker.start_tracking(ADDR_B)

    await channel.dispatch(_account_frame(ADDR_A, "from-a"))
    await channel.dispatch(_account_frame(ADDR_B, "from-b"))

    assert [tx.hash for tx in tracker.transactions()] == ["from-b"]


@pytest.mark.asyncio
async def test_live_buffer_is_capped_newest_first(open_channel):
    channel, _ = open_channel
    tracker = AccountSubscriptionTracker(channel)
    await tracker.start_tracking(ADDR_A)

    for i in range(60):
        await channel.dispatch(_account_frame(ADDR_A, f"tx{i}"))

    hashes = [tx.hash for tx in tracker.transactions()]
    assert len(hashes) == 50
    assert hashes[0] == "tx59"
    assert hashes[-1] == "tx10"


@pytest.mark.asyncio
async def test_start_requires_open_channel(clock):
    channel = RealtimeChannel("wss://node.test/ws", session_factory=FakeSession, clock=clock, sleep=clock.sleep)
    tracker = AccountSubscriptionTracker(channel)

    assert await tracker.start_tracking(ADDR_A) is False
    assert tracker.enabled is False


@pytest.mark.asyncio
async def test_stop_is_best_effort(open_channel):
    channel, ws = open_channel
    tracker = AccountSubscriptionTracker(channel)
    await tracker.start_tracking(ADDR_A)
    await channel.dispatch(_account_frame(ADDR_A, "tx"))

    ws.closed = True            # unsubscribe send will fail
    await tracker.stop_tracking()

    assert tracker.enabled is False
    assert tracker.transactions() == []

    await channel.dispatch(_account_frame(ADDR_A, "late"))
    assert tracker.transactions() == []


@pytest.mark.asyncio
async def test_overlapping_starts_leave_one_subscription(open_channel):
    channel, ws = open_channel
    ws.yield_on_send = True
    tracker = AccountSubscriptionTracker(channel)

    results = await asyncio.gather(tracker.start_tracking(ADDR_A), tracker.start_tracking(ADDR_B))

    assert results == [True, True]
    assert tracker.address == ADDR_B
    assert ws.sent == [
        {"op": "subscribe_account", "account": ADDR_A},
        {"op": "unsubscribe_account", "account": ADDR_A},
        {"op": "subscribe_account", "account": ADDR_B},
    ]


@pytest.mark.asyncio
async def test_resubscribes_on_the_new_socket_after_reconnect(clock, bus):
    first = FakeWebSocket()
    session = FakeSession([first])
    channel = RealtimeChannel("wss://node.test/ws", session_factory=lambda: session,
                              clock=clock, sleep=clock.sleep)
    tracker = AccountSubscriptionTracker(channel, bus)
    await channel.start()
    await tracker.start_tracking(ADDR_A)

    clock.now = 20.0
    first.server_close()
    assert await settle(lambda: len(session.sockets) == 2 and session.sockets[1].sent)

    assert session.sockets[1].sent == [{"op": "subscribe_account", "account": ADDR_A}]
    assert tracker.address == ADDR_A

    await channel.dispatch(_account_frame(ADDR_A, "after-gap"))
    assert [tx.hash for tx in tracker.transactions()] == ["after-gap"]
    await channel.stop()


@pytest.mark.asyncio
async def test_failed_resubscribe_drops_to_idle(clock, bus):
    first, second = FakeWebSocket(), FakeWebSocket()
    second.closed = True            # every send on the new socket fails
    session = FakeSession([first, second])
    channel = RealtimeChannel("wss://node.test/ws", session_factory=lambda: session,
                              clock=clock, sleep=clock.sleep)
    tracker = AccountSubscriptionTracker(channel, bus)
    await channel.start()
    await tracker.start_tracking(ADDR_A)

    clock.now = 20.0
    first.server_close()
    assert await settle(lambda: not tracker.enabled)

    changes = [e.data for e in bus.drain() if e.type == EventTypes.TRACKING_CHANGED]
    assert changes[-1] == {"enabled": False, "address": ADDR_A}
    await channel.stop()
