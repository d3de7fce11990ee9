"""
Live connections of one room and the user id each of them speaks for.

Nothing here is persisted: the registry lives and dies with its RoomCoordinator.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol


class Connection(Protocol):
    """What the room needs from a transport connection."""

    connection_id: str

    async def send_text(self, text: str) -> None: ...

    async def terminate(self, code: int) -> None: ...


@dataclass
class ConnectionSession:
    connection: Connection
    user_id: str
    connected_at: float = field(default_factory=time.time)
    # Probes sent since the connection was last heard from.
    missed_probes: int = 0
    last_ping: Optional[float] = None

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    @property
    def is_alive(self) -> bool:
        return self.missed_probes == 0


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[str, ConnectionSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions

    def add(self, connection: Connection, user_id: str) -> ConnectionSession:
        if connection.connection_id in self._sessions:
            raise ValueError(f"connection {connection.connection_id} is already registered")
        session = ConnectionSession(connection=connection, user_id=user_id)
        self._sessions[connection.connection_id] = session
        return session

    def get(self, connection_id: str) -> Optional[ConnectionSession]:
        return self._sessions.get(connection_id)

    def remove(self, connection_id: str) -> Optional[ConnectionSession]:
        return self._sessions.pop(connection_id, None)

    def sessions(self) -> List[ConnectionSession]:
        """Snapshot in connect order; safe to iterate across awaits."""
        return list(self._sessions.values())

    def user_ids(self) -> List[str]:
        seen: Dict[str, None] = {}
        for session in self._sessions.values():
            seen.setdefault(session.user_id, None)
        return list(seen)

    def references(self, user_id: str) -> int:
        return sum(1 for s in self._sessions.values() if s.user_id == user_id)

    def mark_alive(self, connection_id: str) -> bool:
        session = self._sessions.get(connection_id)
        if session is None:
            return False
        session.missed_probes = 0
        return True
