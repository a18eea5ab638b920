"""
Liveness and closure-timer enforcement.

Two periodic ticks run on `PeriodicScheduler`:

- heartbeat (30 s): a connection that has not answered the previous ping is
  terminated and cleaned up exactly like a disconnect; every other
  connection is marked not-alive and pinged again. A pong marks it alive.
- closure (1 s): delegates to the handler, which disables the chat once the
  configured deadline has passed.
"""

from __future__ import annotations

from modchat.scheduler.periodic_scheduler import PeriodicScheduler
from modchat.server.connection_registry import Connection, ConnectionRegistry
from modchat.server.protocol_handler import SessionProtocolHandler
from modchat.util.logger import get_logger

logger = get_logger("presence_monitor")


class PresenceMonitor:
    """Own the heartbeat and closure-timer schedulers."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        handler: SessionProtocolHandler,
        heartbeat_interval: float = 30.0,
        closure_interval: float = 1.0,
    ) -> None:
        self.registry = registry
        self.handler = handler
        self.heartbeat = PeriodicScheduler("HEARTBEAT", self.heartbeat_tick, heartbeat_interval)
        self.closure = PeriodicScheduler("CLOSURE TIMER", self.closure_tick, closure_interval)

    def start(self) -> None:
        self.heartbeat.start()
        self.closure.start()

    async def shutdown(self) -> None:
        await self.heartbeat.shutdown()
        await self.closure.shutdown()

    @staticmethod
    def mark_alive(conn: Connection) -> None:
        """Record a pong."""
        conn.is_alive = True

    async def heartbeat_tick(self) -> None:
        reaped = 0
        for conn in self.registry:
            if not conn.is_alive:
                reaped += 1
                logger.info("[PRESENCE] Terminating unresponsive connection %s (%s)", conn.session_id, conn.username)
                await self.registry.terminate(conn)
                await self.handler.handle_disconnect(conn)
                continue

            conn.is_alive = False
            try:
                await conn.socket.ping()
            except (ConnectionError, RuntimeError) as exc:
                logger.debug("[PRESENCE] Ping to %s failed: %s", conn.session_id, exc)
        if reaped:
            logger.debug("[PRESENCE] Reaped %d connections, %d remain", reaped, len(self.registry))

    async def closure_tick(self) -> None:
        await self.handler.enforce_closure_timer()
