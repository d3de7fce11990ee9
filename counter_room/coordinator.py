"""
Room coordinator: the protocol state machine for every connection of one room.

Lifecycle per connection: AWAITING_IDENTITY -> ACTIVE -> CLOSED.

- server_assigned: the room picks a fresh id on connect and becomes ACTIVE at once;
  the user record is deleted when its last connection closes.
- client_claimed: the room waits for a `join` carrying a remembered id (or none, in
  which case one is generated). An existing record is reused as is, so a reconnecting
  client keeps its count and name. Records outlive their connections.

Every mutation and the messages it triggers run under one asyncio.Lock, so a room
applies increments strictly one at a time even when the store suspends. A close
takes effect on the registry immediately; handlers re-check registry membership
after each store await and stay silent for connections that went away meanwhile.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from enum import Enum
from typing import Dict, List, Optional

from counter_server.config import IdentityPolicy, RoomSettings, StoreBackend

from .fanout import Broadcaster
from .heartbeat import HeartbeatMonitor
from .messages import (
    ChangeName,
    CounterUpdate,
    IncrementCounter,
    InboundMessage,
    Join,
    NameChange,
    OutboundMessage,
    Ping,
    Pong,
    ProbeAck,
    ProtocolError,
    Timestamp,
    UserJoined,
    UserList,
    UserRecord,
    decode,
    epoch_ms,
)
from .registry import Connection, ConnectionSession, SessionRegistry
from .store import IdentityStore, IdentityStoreError, MemoryIdentityStore, RedisIdentityStore

logger = logging.getLogger(__name__)

ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"

JOIN_TIMEOUT_CLOSE_CODE = 4408
STORE_FAILURE_CLOSE_CODE = 1011
GOING_AWAY_CLOSE_CODE = 1001


class ConnectionState(str, Enum):
    AWAITING_IDENTITY = "awaiting_identity"
    ACTIVE = "active"
    CLOSED = "closed"


def generate_user_id(length: int = 8) -> str:
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def default_name(user_id: str) -> str:
    return f"User {user_id[:4]}"


class RoomCoordinator:
    def __init__(
        self,
        store: IdentityStore,
        *,
        name: str = "default-room",
        policy: IdentityPolicy = IdentityPolicy.SERVER_ASSIGNED,
        id_length: int = 8,
        heartbeat_interval: float = 30.0,
        heartbeat_missed_probes: int = 1,
        join_timeout: float = 10.0,
        send_delta_to_others: bool = True,
    ) -> None:
        if id_length < 8:
            raise ValueError("id_length must be at least 8")
        self.name = name
        self.store = store
        self.policy = policy
        self.id_length = id_length
        self.join_timeout = join_timeout
        self.send_delta_to_others = send_delta_to_others

        self.registry = SessionRegistry()
        self.broadcaster = Broadcaster(self.registry)
        self.heartbeat = HeartbeatMonitor(
            self.registry,
            self.broadcaster,
            self._close_dead_session,
            interval=heartbeat_interval,
            missed_probes=heartbeat_missed_probes,
        )

        self._lock = asyncio.Lock()
        self._states: Dict[str, ConnectionState] = {}
        self._join_timers: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, settings: RoomSettings) -> "RoomCoordinator":
        if settings.store_backend is StoreBackend.REDIS:
            store: IdentityStore = RedisIdentityStore.from_url(settings.redis_url, room_name=settings.room_name)
        else:
            store = MemoryIdentityStore()
        return cls(
            store,
            name=settings.room_name,
            policy=settings.identity_policy,
            id_length=settings.id_length,
            heartbeat_interval=settings.heartbeat_interval_seconds,
            heartbeat_missed_probes=settings.heartbeat_missed_probes,
            join_timeout=settings.join_timeout_seconds,
            send_delta_to_others=settings.send_delta_to_others,
        )

    def state(self, connection_id: str) -> ConnectionState:
        return self._states.get(connection_id, ConnectionState.CLOSED)

    # Connection lifecycle

    async def connect(self, connection: Connection) -> ConnectionState:
        cid = connection.connection_id
        if cid in self._states:
            raise ValueError(f"connection {cid} is already known to room {self.name}")
        self._states[cid] = ConnectionState.AWAITING_IDENTITY

        if self.policy is IdentityPolicy.SERVER_ASSIGNED:
            await self._activate(connection)
        elif self.join_timeout > 0:
            self._join_timers[cid] = asyncio.create_task(self._expire_join(connection))
        return self.state(cid)

    async def receive(self, connection: Connection, text_data: str) -> None:
        """Handle one inbound frame. Never raises for bad input."""

        cid = connection.connection_id
        state = self.state(cid)
        if state is ConnectionState.CLOSED:
            logger.debug("Ignoring frame for closed connection %s", cid)
            return

        # any frame proves the peer is still there
        self.registry.mark_alive(cid)

        try:
            message = decode(text_data)
        except ProtocolError as exc:
            logger.warning("Dropping frame from connection %s: %s", cid, exc)
            return
        if message is None:
            logger.debug("Ignoring unknown message type from connection %s", cid)
            return

        if state is ConnectionState.AWAITING_IDENTITY:
            if isinstance(message, Join):
                await self._activate(connection, message.user_id, message.name)
            else:
                logger.warning("Dropping %s from connection %s: join required first", message.type, cid)
            return

        await self.dispatch(connection, message)

    async def dispatch(self, connection: Connection, message: InboundMessage) -> None:
        if isinstance(message, IncrementCounter):
            await self.increment(connection)
        elif isinstance(message, ChangeName):
            await self.change_name(connection, message.name)
        elif isinstance(message, Ping):
            await self.ping(connection, message.timestamp)
        elif isinstance(message, ProbeAck):
            # liveness already recorded by receive()
            pass
        elif isinstance(message, Join):
            logger.warning("Dropping join from connection %s: identity already assigned", connection.connection_id)
        else:
            logger.debug("No handler for %s", type(message).__name__)

    async def close(self, connection: Connection, reason: str = "disconnect") -> bool:
        """
        Remove a connection from the room. Safe to call more than once.

        Returns False when the connection was already gone.
        """

        cid = connection.connection_id
        previous = self._states.pop(cid, None)
        if previous is None:
            return False
        self._cancel_join_timer(cid)

        session = self.registry.remove(cid)
        if session is None:
            logger.info("Connection %s closed before joining: %s", cid, reason)
            return True

        logger.info("Connection %s (user %s) left room %s: %s", cid, session.user_id, self.name, reason)
        async with self._lock:
            if self.policy is IdentityPolicy.SERVER_ASSIGNED and not self.registry.references(session.user_id):
                try:
                    await self.store.remove(session.user_id)
                except IdentityStoreError:
                    logger.exception("Removing user %s from the store failed", session.user_id)
            roster = await self._roster_message()
            if roster is not None:
                await self.broadcaster.send(roster)
        return True

    async def aclose(self) -> None:
        """Stop the heartbeat, drop every connection and release the store."""

        await self.heartbeat.stop()
        for cid in list(self._join_timers):
            self._cancel_join_timer(cid)
        for session in self.registry.sessions():
            self.registry.remove(session.connection_id)
            try:
                await session.connection.terminate(GOING_AWAY_CLOSE_CODE)
            except Exception:
                logger.warning("Terminating connection %s failed", session.connection_id, exc_info=True)
        self._states.clear()
        await self.store.aclose()

    # Operations on ACTIVE connections

    async def increment(self, connection: Connection) -> Optional[UserRecord]:
        cid = connection.connection_id
        async with self._lock:
            session = self.registry.get(cid)
            if session is None:
                return None
            try:
                record = await self.store.increment(session.user_id)
            except IdentityStoreError:
                logger.exception("Increment for user %s failed", session.user_id)
                return None
            if record is None:
                logger.warning("Increment for user %s: record no longer exists", session.user_id)
                return None
            if cid not in self.registry:
                return record
            await self._announce(connection, CounterUpdate(user_id=record.id, count=record.count))
            return record

    async def change_name(self, connection: Connection, name: str) -> Optional[UserRecord]:
        if not name:
            logger.warning("Ignoring empty name from connection %s", connection.connection_id)
            return None
        cid = connection.connection_id
        async with self._lock:
            session = self.registry.get(cid)
            if session is None:
                return None
            try:
                record = await self.store.set_name(session.user_id, name)
            except IdentityStoreError:
                logger.exception("Rename for user %s failed", session.user_id)
                return None
            if record is None:
                logger.warning("Rename for user %s: record no longer exists", session.user_id)
                return None
            if cid not in self.registry:
                return record
            await self._announce(connection, NameChange(user_id=record.id, name=record.name))
            return record

    async def ping(self, connection: Connection, timestamp: Optional[Timestamp] = None) -> None:
        session = self.registry.get(connection.connection_id)
        if session is None:
            return
        session.last_ping = time.time()
        reply = Pong(timestamp=timestamp if timestamp is not None else epoch_ms())
        await self.broadcaster.send_to(connection, reply)

    async def roster(self) -> List[UserRecord]:
        """Records of the users that currently have at least one live connection."""

        records = {record.id: record for record in await self.store.list_users()}
        return [records[user_id] for user_id in self.registry.user_ids() if user_id in records]

    # Internals

    async def _announce(self, connection: Connection, delta: OutboundMessage) -> None:
        # The origin hears about its own change before it can see a roster.
        await self.broadcaster.send_to(connection, delta)
        roster = await self._roster_message()
        if roster is not None:
            await self.broadcaster.send(roster)
        if self.send_delta_to_others:
            await self.broadcaster.send(delta, exclude=connection.connection_id)

    async def _roster_message(self) -> Optional[UserList]:
        try:
            return UserList(users=await self.roster())
        except IdentityStoreError:
            logger.exception("Reading the roster of room %s failed", self.name)
            return None

    async def _activate(
        self,
        connection: Connection,
        claimed_id: Optional[str] = None,
        claimed_name: Optional[str] = None,
    ) -> None:
        cid = connection.connection_id
        async with self._lock:
            if self.state(cid) is not ConnectionState.AWAITING_IDENTITY:
                return
            try:
                record = await self._resolve_identity(claimed_id, claimed_name)
            except IdentityStoreError:
                logger.exception("Assigning an identity to connection %s failed", cid)
                self._states.pop(cid, None)
                self._cancel_join_timer(cid)
                await self._terminate(connection, STORE_FAILURE_CLOSE_CODE)
                return

            if self.state(cid) is not ConnectionState.AWAITING_IDENTITY:
                # closed while the store was working
                await self._discard_orphan(record.id)
                return

            self._cancel_join_timer(cid)
            self.registry.add(connection, record.id)
            self._states[cid] = ConnectionState.ACTIVE
            self.heartbeat.start()
            logger.info("Connection %s joined room %s as user %s", cid, self.name, record.id)

            joined = UserJoined(user_id=record.id, name=record.name)
            roster = await self._roster_message()
            await self.broadcaster.send_to(connection, joined)
            if roster is not None:
                await self.broadcaster.send_to(connection, roster)
            await self.broadcaster.send_to(connection, CounterUpdate(user_id=record.id, count=record.count))
            await self.broadcaster.send(joined, exclude=cid)
            if roster is not None:
                await self.broadcaster.send(roster, exclude=cid)

    async def _resolve_identity(self, claimed_id: Optional[str], claimed_name: Optional[str]) -> UserRecord:
        if claimed_id:
            existing = await self.store.get(claimed_id)
            if existing is not None:
                return existing
            user_id = claimed_id
        else:
            user_id = await self._fresh_id()
        record = UserRecord(id=user_id, name=claimed_name or default_name(user_id), count=0)
        return await self.store.create(record)

    async def _fresh_id(self) -> str:
        for _ in range(5):
            user_id = generate_user_id(self.id_length)
            if await self.store.get(user_id) is None:
                return user_id
        # 64**8 ids: five straight collisions means the store is lying to us
        raise IdentityStoreError("could not find an unused user id")

    async def _discard_orphan(self, user_id: str) -> None:
        if self.policy is not IdentityPolicy.SERVER_ASSIGNED or self.registry.references(user_id):
            return
        try:
            await self.store.remove(user_id)
        except IdentityStoreError:
            logger.exception("Removing orphaned user %s failed", user_id)

    async def _close_dead_session(self, session: ConnectionSession) -> None:
        await self.close(session.connection, reason="liveness probe unanswered")

    async def _expire_join(self, connection: Connection) -> None:
        try:
            await asyncio.sleep(self.join_timeout)
        except asyncio.CancelledError:
            return
        cid = connection.connection_id
        self._join_timers.pop(cid, None)
        if self.state(cid) is not ConnectionState.AWAITING_IDENTITY:
            return
        logger.warning("Connection %s sent no join within %.1fs", cid, self.join_timeout)
        await self.close(connection, reason="join timeout")
        await self._terminate(connection, JOIN_TIMEOUT_CLOSE_CODE)

    def _cancel_join_timer(self, connection_id: str) -> None:
        timer = self._join_timers.pop(connection_id, None)
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    @staticmethod
    async def _terminate(connection: Connection, code: int) -> None:
        try:
            await connection.terminate(code)
        except Exception:
            logger.warning("Terminating connection %s failed", connection.connection_id, exc_info=True)
