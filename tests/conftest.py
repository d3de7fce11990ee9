import pytest

from counter_room.coordinator import RoomCoordinator
from counter_room.store import MemoryIdentityStore
from counter_server.config import IdentityPolicy


@pytest.fixture
def store():
    return MemoryIdentityStore()


@pytest.fixture
async def room(store):
    room = RoomCoordinator(store, name="test-room", heartbeat_interval=3600)
    yield room
    await room.aclose()


@pytest.fixture
async def claimed_room(store):
    room = RoomCoordinator(
        store,
        name="test-room",
        policy=IdentityPolicy.CLIENT_CLAIMED,
        heartbeat_interval=3600,
        join_timeout=0,
    )
    yield room
    await room.aclose()
