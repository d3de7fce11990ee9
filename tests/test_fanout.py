import json

from counter_room.fanout import Broadcaster
from counter_room.messages import CounterUpdate, Pong
from counter_room.registry import SessionRegistry

from .helpers import FakeConnection


async def test_send_reaches_everyone_but_excluded():
    registry = SessionRegistry()
    a, b, c = FakeConnection("a"), FakeConnection("b"), FakeConnection("c")
    for conn in (a, b, c):
        registry.add(conn, conn.connection_id)

    delivered = await Broadcaster(registry).send(CounterUpdate(user_id="a", count=1), exclude="a")

    assert delivered == 2
    assert a.sent == []
    assert b.messages == c.messages == [{"type": "counter_update", "userId": "a", "count": 1}]


async def test_failed_recipient_does_not_stop_fanout(caplog):
    registry = SessionRegistry()
    a, broken, c = FakeConnection("a"), FakeConnection("broken", fail_sends=True), FakeConnection("c")
    for conn in (a, broken, c):
        registry.add(conn, conn.connection_id)

    delivered = await Broadcaster(registry).send(CounterUpdate(user_id="a", count=1))

    assert delivered == 2
    assert len(a.sent) == len(c.sent) == 1
    assert "broken" in caplog.text


async def test_per_recipient_order_is_preserved():
    registry = SessionRegistry()
    a = FakeConnection("a")
    registry.add(a, "a")
    broadcaster = Broadcaster(registry)

    for count in range(1, 6):
        await broadcaster.send(CounterUpdate(user_id="a", count=count))

    assert [json.loads(t)["count"] for t in a.sent] == [1, 2, 3, 4, 5]


async def test_send_to_reports_failure():
    broadcaster = Broadcaster(SessionRegistry())
    assert await broadcaster.send_to(FakeConnection(), Pong(timestamp=1))
    assert not await broadcaster.send_to(FakeConnection(fail_sends=True), Pong(timestamp=1))
