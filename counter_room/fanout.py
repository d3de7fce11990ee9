from __future__ import annotations

import logging
from typing import Optional

from .messages import OutboundMessage, encode
from .registry import Connection, SessionRegistry

logger = logging.getLogger(__name__)


class Broadcaster:
    """
    Writes one encoded message to every live connection of a registry.

    A failed write is logged and skipped; it never stops delivery to the rest.
    Recipients are written one after another, so each connection sees messages in
    the order they were sent.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    async def send(self, message: OutboundMessage, exclude: Optional[str] = None) -> int:
        text = encode(message)
        delivered = 0
        for session in self.registry.sessions():
            if session.connection_id == exclude:
                continue
            if await self._write(session.connection, text, message.type):
                delivered += 1
        return delivered

    async def send_to(self, connection: Connection, message: OutboundMessage) -> bool:
        return await self._write(connection, encode(message), message.type)

    async def _write(self, connection: Connection, text: str, msg_type: str) -> bool:
        try:
            await connection.send_text(text)
        except Exception:
            logger.exception(
                "Send of %s to connection %s failed", msg_type, connection.connection_id
            )
            return False
        return True
