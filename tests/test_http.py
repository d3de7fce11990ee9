import pytest
from django.apps import apps

from counter_room.coordinator import RoomCoordinator
from counter_room.store import IdentityStoreError, MemoryIdentityStore

from .helpers import FakeConnection


class BrokenStore(MemoryIdentityStore):
    async def list_users(self):
        raise IdentityStoreError("redis is down")


@pytest.fixture
async def app_room(monkeypatch):
    room = RoomCoordinator(MemoryIdentityStore(), name="http-room", heartbeat_interval=3600)
    monkeypatch.setattr(apps.get_app_config("counter_room"), "room", room)
    yield room
    await room.aclose()


async def test_health(async_client, app_room):
    await app_room.connect(FakeConnection())

    response = await async_client.get("/health/")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["connections"] == 1
    assert "instance_id" in body
    assert response["Access-Control-Allow-Origin"] == "*"


async def test_roster_lists_connected_users(async_client, app_room):
    first, second = FakeConnection(), FakeConnection()
    await app_room.connect(first)
    await app_room.connect(second)
    await app_room.increment(second)

    response = await async_client.get("/api/room/users/")

    assert response.status_code == 200
    body = response.json()
    assert body["room"] == "http-room"
    assert body["connections"] == 2
    assert [u["count"] for u in body["users"]] == [0, 1]


async def test_roster_is_get_only(async_client, app_room):
    response = await async_client.post("/api/room/users/")
    assert response.status_code == 405


async def test_roster_reports_store_outage(async_client, monkeypatch):
    room = RoomCoordinator(BrokenStore(), heartbeat_interval=3600)
    monkeypatch.setattr(apps.get_app_config("counter_room"), "room", room)

    response = await async_client.get("/api/room/users/")

    assert response.status_code == 503
    assert response.json() == {"detail": "identity store unavailable"}
