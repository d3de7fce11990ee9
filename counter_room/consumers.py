"""
WebSocket consumer for the counter room.

Key behavior:
- URL: /ws/
- One consumer per socket. Channels hands this consumer its frames one at a time,
  so frames of one connection are handled strictly in order.
- The consumer only adapts the socket; all protocol decisions live in RoomCoordinator.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from channels.generic.websocket import AsyncWebsocketConsumer

from .coordinator import RoomCoordinator

logger = logging.getLogger(__name__)


class CounterConsumer(AsyncWebsocketConsumer):
    # Set per route via `CounterConsumer.as_asgi(room=...)`.
    room: Optional[RoomCoordinator] = None

    def __init__(self, *args: Any, room: Optional[RoomCoordinator] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        if room is not None:
            self.room = room
        if self.room is None:
            raise TypeError("CounterConsumer needs a room: use CounterConsumer.as_asgi(room=...)")
        self.connection_id: str = uuid.uuid4().hex

    async def connect(self) -> None:
        await self.accept()
        await self.room.connect(self)

    async def disconnect(self, close_code: int) -> None:
        await self.room.close(self, reason=f"socket closed ({close_code})")

    async def receive(self, text_data: Optional[str] = None, bytes_data: Optional[bytes] = None) -> None:
        if text_data is None:
            logger.warning("Dropping binary frame from connection %s", self.connection_id)
            return
        await self.room.receive(self, text_data)

    # Connection interface used by the room

    async def send_text(self, text: str) -> None:
        await self.send(text_data=text)

    async def terminate(self, code: int) -> None:
        await self.close(code=code)
