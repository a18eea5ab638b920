"""
Live socket set and fan-out primitives.

The registry answers "send to everyone", "send to admins" and "send to this
connection" without callers touching the socket library. A connection only
keeps a back-reference (``user_id``) to its user; the user record itself is
owned by the store.

Sockets are duck-typed on the aiohttp ``WebSocketResponse`` surface:
``closed``, ``send_str``, ``ping`` and ``close``.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

from modchat.datatypes.chat_datatypes import Role, is_admin, new_id
from modchat.datatypes.event_datatypes import ServerEvent, envelope
from modchat.util.logger import get_logger

if TYPE_CHECKING:
    from modchat.store.moderation_store import ModerationStore

logger = get_logger("connection_registry")

CLOSE_TIMEOUT_SECONDS = 2.0


@dataclass(eq=False)
class Connection:
    """Per-socket session state.

    Attributes:
        socket: The underlying WebSocket.
        session_id: Identifier of the socket, independent of authentication.
        user_id: Id of the store's user record once authenticated.
        username: Handle recorded at authentication.
        role: Role taken from the credential table at authentication.
        is_alive: Cleared on each heartbeat ping and set again by a pong.
    """

    socket: Any
    session_id: str = field(default_factory=new_id)
    user_id: Optional[str] = None
    username: Optional[str] = None
    role: Optional[Role] = None
    is_alive: bool = True

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.authenticated and is_admin(self.role)

    @property
    def closed(self) -> bool:
        return bool(getattr(self.socket, "closed", False))

    def clear_identity(self) -> None:
        self.user_id = None
        self.username = None
        self.role = None


class ConnectionRegistry:
    """Track open connections and deliver JSON envelopes to them."""

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, socket: Any) -> Connection:
        conn = Connection(socket=socket)
        self._connections[conn.session_id] = conn
        logger.debug("[REGISTRY] Registered connection %s (%d open)", conn.session_id, len(self._connections))
        return conn

    def unregister(self, conn: Connection) -> None:
        if self._connections.pop(conn.session_id, None) is not None:
            logger.debug("[REGISTRY] Unregistered connection %s (%d open)", conn.session_id, len(self._connections))

    def admins(self) -> List[Connection]:
        return [c for c in self if c.is_admin]

    async def _send_text(self, conn: Connection, text: str) -> bool:
        if conn.closed:
            return False
        try:
            await conn.socket.send_str(text)
            return True
        except (ConnectionError, RuntimeError) as exc:
            logger.warning("[REGISTRY] Failed to send to %s (%s): %s", conn.username or conn.session_id, type(exc).__name__, exc)
            return False

    async def send(self, conn: Connection, payload: Dict[str, Any]) -> bool:
        """Unicast ``payload``. Returns False when the socket is closed or the send failed."""
        return await self._send_text(conn, json.dumps(payload, ensure_ascii=False))

    async def broadcast(self, payload: Dict[str, Any], exclude: Optional[Connection] = None) -> int:
        """Send ``payload`` to every open connection, authenticated or not."""
        text = json.dumps(payload, ensure_ascii=False)
        delivered = 0
        for conn in self:
            if conn is exclude:
                continue
            if await self._send_text(conn, text):
                delivered += 1
        return delivered

    async def broadcast_to_admins(self, payload: Dict[str, Any], exclude: Optional[Connection] = None) -> int:
        """Send ``payload`` to every authenticated admin connection."""
        text = json.dumps(payload, ensure_ascii=False)
        delivered = 0
        for conn in self.admins():
            if conn is exclude:
                continue
            if await self._send_text(conn, text):
                delivered += 1
        return delivered

    async def broadcast_users(self, store: "ModerationStore") -> None:
        """Push the user list, including hidden users only for admins."""
        everyone = [u.to_dict() for u in store.get_users(include_hidden=True)]
        visible = [u.to_dict() for u in store.get_users(include_hidden=False)]
        admin_text = json.dumps(envelope(ServerEvent.USERS_UPDATE, users=everyone), ensure_ascii=False)
        public_text = json.dumps(envelope(ServerEvent.USERS_UPDATE, users=visible), ensure_ascii=False)
        for conn in self:
            await self._send_text(conn, admin_text if conn.is_admin else public_text)

    async def terminate(self, conn: Connection) -> None:
        """Close the socket without waiting on a well-behaved peer and forget it."""
        self.unregister(conn)
        if conn.closed:
            return
        try:
            await asyncio.wait_for(conn.socket.close(), timeout=CLOSE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("[REGISTRY] Timed out closing connection %s", conn.session_id)
        except (ConnectionError, RuntimeError) as exc:
            logger.debug("[REGISTRY] Error closing connection %s: %s", conn.session_id, exc)

    async def close_all(self) -> None:
        for conn in self:
            await self.terminate(conn)
