import asyncio

import pytest

from counter_room.coordinator import RoomCoordinator
from counter_room.heartbeat import LIVENESS_CLOSE_CODE, HeartbeatMonitor
from counter_room.fanout import Broadcaster
from counter_room.registry import SessionRegistry
from counter_room.store import MemoryIdentityStore

from .helpers import FakeConnection, frame


async def joined(room):
    conn = FakeConnection()
    await room.connect(conn)
    return conn


def test_grace_must_be_positive():
    registry = SessionRegistry()
    with pytest.raises(ValueError):
        HeartbeatMonitor(registry, Broadcaster(registry), lambda s: None, missed_probes=0)


async def test_tick_probes_live_connections(room):
    a = await joined(room)
    a.clear()

    await room.heartbeat.tick()

    assert a.types() == ["ping"]
    assert isinstance(a.messages[0]["timestamp"], int)
    assert room.registry.get(a.connection_id).missed_probes == 1


async def test_answering_probe_keeps_connection(room):
    a = await joined(room)

    for _ in range(5):
        await room.heartbeat.tick()
        await room.receive(a, frame("pong"))

    assert a.closed_with is None
    assert a.connection_id in room.registry


async def test_client_ping_also_counts_as_answer(room):
    a = await joined(room)

    await room.heartbeat.tick()
    await room.receive(a, frame("ping"))
    await room.heartbeat.tick()

    assert a.closed_with is None


async def test_silent_connection_is_reaped_on_second_tick(room, store):
    a = await joined(room)
    silent = await joined(room)
    silent_uid = silent.of_type("user_joined")[0]["userId"]

    await room.heartbeat.tick()
    await room.receive(a, frame("pong"))
    a.clear()
    await room.heartbeat.tick()

    assert silent.closed_with == LIVENESS_CLOSE_CODE
    assert silent.connection_id not in room.registry
    assert await store.get(silent_uid) is None
    rosters = a.of_type("user_list")
    assert len(rosters) == 1
    assert silent_uid not in [u["id"] for u in rosters[0]["users"]]


async def test_longer_grace_period():
    room = RoomCoordinator(MemoryIdentityStore(), heartbeat_interval=3600, heartbeat_missed_probes=2)
    try:
        silent = await joined(room)

        await room.heartbeat.tick()
        await room.heartbeat.tick()
        assert silent.closed_with is None

        await room.heartbeat.tick()
        assert silent.closed_with == LIVENESS_CLOSE_CODE
    finally:
        await room.aclose()


async def test_failed_probe_send_leads_to_reap(room):
    broken = FakeConnection(fail_sends=True)
    await room.connect(broken)

    await room.heartbeat.tick()
    await room.heartbeat.tick()

    assert broken.closed_with == LIVENESS_CLOSE_CODE
    assert len(room.registry) == 0


async def test_timer_reaps_without_manual_ticks():
    room = RoomCoordinator(MemoryIdentityStore(), heartbeat_interval=0.01)
    try:
        silent = await joined(room)
        assert room.heartbeat.running

        for _ in range(100):
            if silent.closed_with is not None:
                break
            await asyncio.sleep(0.01)

        assert silent.closed_with == LIVENESS_CLOSE_CODE
        assert len(room.registry) == 0
    finally:
        await room.aclose()
    assert not room.heartbeat.running
