"""
aiohttp application exposing the chat.

Routes:
- ``GET /ws``: WebSocket carrying one JSON envelope per text frame.
- ``POST /api/login``: checks a handle and password against the credential table.
- ``GET /health``: liveness probe with the open connection count.

Automatic pings are disabled on the socket so the presence monitor owns the
ping/pong cycle.
"""

from __future__ import annotations

from typing import Optional

from aiohttp import WSMsgType, web

from modchat.auth.credentials import CredentialAuthority
from modchat.bot.moderation_bot import ModerationBot
from modchat.server.connection_registry import ConnectionRegistry
from modchat.server.presence_monitor import PresenceMonitor
from modchat.server.protocol_handler import SessionProtocolHandler
from modchat.store.moderation_store import ModerationStore
from modchat.util.logger import get_logger

logger = get_logger("server")

MAX_FRAME_BYTES = 64 * 1024


class ChatServer:
    """
    Bundle of the running components and their HTTP surface.

    Args:
        store: Authoritative chat state; loaded on startup, flushed on cleanup.
        credentials: Credential table for login and socket auth.
        handler: Protocol handler; built from the other components when omitted.
        bot: Optional moderation bot.
        heartbeat_interval: Seconds between heartbeat pings.
        closure_interval: Seconds between closure-timer checks.
    """

    def __init__(
        self,
        store: ModerationStore,
        credentials: CredentialAuthority,
        registry: Optional[ConnectionRegistry] = None,
        handler: Optional[SessionProtocolHandler] = None,
        bot: Optional[ModerationBot] = None,
        heartbeat_interval: float = 30.0,
        closure_interval: float = 1.0,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.bot = bot
        self.registry = registry or ConnectionRegistry()
        self.handler = handler or SessionProtocolHandler(store, self.registry, credentials, bot=bot)
        self.monitor = PresenceMonitor(self.registry, self.handler, heartbeat_interval, closure_interval)

    # --------------------------
    # Lifecycle hooks
    # --------------------------
    async def on_startup(self, app: web.Application) -> None:
        await self.store.load()
        await self.handler.schedule_loaded_flashes()
        if await self.handler.sync_bot_user():
            logger.info("[SERVER] Bot user %s registered", self.bot.user.username)
        self.monitor.start()
        logger.info("[SERVER] Chat server started")

    async def on_cleanup(self, app: web.Application) -> None:
        logger.info("[SERVER] Shutting down chat server")
        await self.monitor.shutdown()
        await self.registry.close_all()
        await self.handler.shutdown()
        if self.bot is not None:
            try:
                await self.bot.close()
            except Exception as exc:
                logger.error("[SERVER] Error closing AI provider: %s", exc)
        await self.store.close()
        logger.info("[SERVER] Shutdown complete")

    # --------------------------
    # Routes
    # --------------------------
    async def websocket_handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(autoping=False, max_msg_size=MAX_FRAME_BYTES)
        await ws.prepare(request)

        conn = self.registry.register(ws)
        logger.debug("[SERVER] WebSocket opened from %s", request.remote)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self.handler.handle_raw(conn, msg.data)
                elif msg.type == WSMsgType.PING:
                    await ws.pong(msg.data)
                    self.monitor.mark_alive(conn)
                elif msg.type == WSMsgType.PONG:
                    self.monitor.mark_alive(conn)
                elif msg.type == WSMsgType.BINARY:
                    logger.warning("[SERVER] Dropping binary frame from %s", conn.session_id)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("[SERVER] WebSocket error on %s: %s", conn.session_id, ws.exception())
        finally:
            await self.handler.handle_disconnect(conn)
        return ws

    async def login_handler(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"error": "Invalid JSON body"}, status=400)

        handle = body.get("handle") if isinstance(body, dict) else None
        password = body.get("password") if isinstance(body, dict) else None
        if not isinstance(handle, str) or not isinstance(password, str):
            return web.json_response({"error": "Handle and password are required"}, status=400)

        if not self.credentials.check_secret(handle, password):
            logger.warning("[SERVER] Failed login for %r from %s", handle, request.remote)
            return web.json_response({"error": "Invalid credentials"}, status=401)

        role = self.credentials.verify(handle)
        return web.json_response({"handle": handle, "role": role.value})

    async def health_handler(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "connections": len(self.registry)})

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self.websocket_handler)
        app.router.add_post("/api/login", self.login_handler)
        app.router.add_get("/health", self.health_handler)
        app.on_startup.append(self.on_startup)
        app.on_cleanup.append(self.on_cleanup)
        return app
