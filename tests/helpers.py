import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional

from counter_room.store import MemoryIdentityStore


class FakeConnection:
    """In-memory stand-in for a socket: records what the room sends to it."""

    def __init__(self, connection_id: Optional[str] = None, *, fail_sends: bool = False):
        self.connection_id = connection_id or uuid.uuid4().hex
        self.fail_sends = fail_sends
        self.sent: List[str] = []
        self.closed_with: Optional[int] = None

    async def send_text(self, text: str) -> None:
        if self.fail_sends:
            raise ConnectionResetError("peer went away")
        self.sent.append(text)

    async def terminate(self, code: int) -> None:
        self.closed_with = code

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(text) for text in self.sent]

    def types(self) -> List[str]:
        return [m["type"] for m in self.messages]

    def of_type(self, msg_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["type"] == msg_type]

    def clear(self) -> None:
        self.sent.clear()


class SlowStore(MemoryIdentityStore):
    """Suspends inside every call, and increments as a split read-modify-write."""

    async def get(self, user_id):
        await asyncio.sleep(0)
        return await super().get(user_id)

    async def list_users(self):
        await asyncio.sleep(0)
        return await super().list_users()

    async def increment(self, user_id):
        current = await self.get(user_id)
        if current is None:
            return None
        await asyncio.sleep(0)
        return await self.set_count(user_id, current.count + 1)


def frame(msg_type: str, **fields: Any) -> str:
    return json.dumps({"type": msg_type, **fields})
