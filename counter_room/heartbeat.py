"""
Liveness monitor for one room.

Every `interval` seconds each session is either reaped or probed:
- a session that has not been heard from for `missed_probes` consecutive probes is
  handed to `on_dead` (the room's close path) and its connection terminated;
- otherwise its miss counter goes up by one and a `ping` probe frame is sent.

Any inbound frame from the connection resets the counter (SessionRegistry.mark_alive).
With the default of one missed probe a silent connection is gone on the second tick
after it was last heard from.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .fanout import Broadcaster
from .messages import Probe, epoch_ms
from .registry import ConnectionSession, SessionRegistry

logger = logging.getLogger(__name__)

# Close code sent to connections that stopped answering probes.
LIVENESS_CLOSE_CODE = 4000


class HeartbeatMonitor:
    def __init__(
        self,
        registry: SessionRegistry,
        broadcaster: Broadcaster,
        on_dead: Callable[[ConnectionSession], Awaitable[None]],
        *,
        interval: float = 30.0,
        missed_probes: int = 1,
    ) -> None:
        if missed_probes < 1:
            raise ValueError("missed_probes must be >= 1")
        self.registry = registry
        self.broadcaster = broadcaster
        self.on_dead = on_dead
        self.interval = interval
        self.missed_probes = missed_probes
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the timer. Needs a running event loop; calling it twice is a no-op."""
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def tick(self) -> None:
        for session in self.registry.sessions():
            if session.connection_id not in self.registry:
                # closed while an earlier session of this tick was being handled
                continue
            if session.missed_probes >= self.missed_probes:
                await self._reap(session)
                continue
            session.missed_probes += 1
            await self.broadcaster.send_to(session.connection, Probe(timestamp=epoch_ms()))

    async def _reap(self, session: ConnectionSession) -> None:
        logger.info(
            "Reaping connection %s (user %s): %d probe(s) unanswered",
            session.connection_id,
            session.user_id,
            session.missed_probes,
        )
        try:
            await self.on_dead(session)
        except Exception:
            logger.exception("Close path failed for reaped connection %s", session.connection_id)
        try:
            await session.connection.terminate(LIVENESS_CLOSE_CODE)
        except Exception:
            logger.warning("Terminating connection %s failed", session.connection_id, exc_info=True)

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.tick()
                except Exception:
                    logger.exception("Heartbeat tick failed")
        except asyncio.CancelledError:
            return
