"""
Session protocol handler: the message-driven state machine of the chat.

Each inbound envelope is validated, authorized, applied to the store and then
fanned out through the registry. Events from all connections are serialized
behind one lock so every client observes state changes in the order they
were applied. Slow work (AI calls) runs in tracked background tasks outside
the lock; only their resulting mutations re-enter it.

Error policy:
- validation failures raise `ProtocolError` and are answered with a unicast
  ``error`` event, the connection stays open;
- authorization failures are silently ignored;
- unknown message ids, handles or plan ids are no-ops;
- any other exception is logged with its traceback and contained to the event.
"""

from __future__ import annotations

import asyncio
import json
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set

from modchat.auth.credentials import CredentialAuthority
from modchat.bot.moderation_bot import ModerationBot
from modchat.datatypes.action_datatypes import BotAction, BotActionType, BotProposal
from modchat.datatypes.chat_datatypes import (
    BotConfig,
    Message,
    MessageStatus,
    MessageType,
    Role,
    User,
    is_admin,
    new_id,
    normalize_word,
)
from modchat.datatypes.event_datatypes import ClientEvent, ServerEvent, envelope
from modchat.errors import ProtocolError
from modchat.scheduler.flash_expiry_scheduler import FlashExpiryScheduler
from modchat.server.connection_registry import Connection, ConnectionRegistry
from modchat.store.moderation_store import ModerationStore
from modchat.util.logger import get_logger
from modchat.util.time_utils import MINUTE_MS, export_date_stamp, humanize_millis

logger = get_logger("protocol_handler")

CLOSURE_MESSAGE = "⏰ Chat is closed, the timer has ended."
SYSTEM_USER_ID = "system"
SYSTEM_USERNAME = "System"

EXPORT_RULE = "═" * 63

Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ChatLimits:
    """Validation bounds for inbound content."""

    max_message_length: int = 1000
    max_broadcast_length: int = 500
    max_flash_seconds: int = 60


# --------------------------------------------------------------------------
# Payload validation helpers
# --------------------------------------------------------------------------

def _require_text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ProtocolError(f"'{key}' must be a non-empty string")
    return value.strip()


def _require_bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ProtocolError(f"'{key}' must be a boolean")
    return value


def _require_number(value: Any, key: str, minimum: float, maximum: Optional[float] = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"'{key}' must be a number")
    if not math.isfinite(value):
        raise ProtocolError(f"'{key}' must be a finite number")
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f"between {minimum:g} and {maximum:g}" if maximum is not None else f"at least {minimum:g}"
        raise ProtocolError(f"'{key}' must be {bounds}")
    return value


def _bounded_content(payload: Mapping[str, Any], limit: int) -> str:
    content = payload.get("content")
    if not isinstance(content, str) or not content.strip():
        raise ProtocolError("Content cannot be empty")
    content = content.strip()
    if len(content) > limit:
        raise ProtocolError(f"Content exceeds {limit} characters")
    return content


class SessionProtocolHandler:
    """
    Interpret client events against the store and fan the results out.

    Args:
        store: Authoritative chat state.
        registry: Live connections.
        credentials: Authority consulted on every ``auth`` event.
        bot: Optional moderation bot; without it bot events are rejected.
        limits: Content validation bounds.
        flash_scheduler: Optional scheduler; one bound to `expire_flash` is
            created when omitted.
    """

    def __init__(
        self,
        store: ModerationStore,
        registry: ConnectionRegistry,
        credentials: CredentialAuthority,
        bot: Optional[ModerationBot] = None,
        limits: ChatLimits = ChatLimits(),
        flash_scheduler: Optional[FlashExpiryScheduler] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.credentials = credentials
        self.bot = bot
        self.limits = limits
        self.flash_scheduler = flash_scheduler or FlashExpiryScheduler(self.expire_flash)
        self.lock = asyncio.Lock()
        self._background_tasks: Set[asyncio.Task] = set()

        self._open_handlers: Dict[ClientEvent, Handler] = {
            ClientEvent.AUTH: self.handle_auth,
            ClientEvent.SEND_MESSAGE: self.handle_send_message,
            ClientEvent.TYPING: self.handle_typing,
        }
        self._admin_handlers: Dict[ClientEvent, Handler] = {
            ClientEvent.APPROVE_MESSAGE: self.handle_approve_message,
            ClientEvent.REJECT_MESSAGE: self.handle_reject_message,
            ClientEvent.FORCE_PUBLISH: self.handle_force_publish,
            ClientEvent.DELETE_MESSAGE: self.handle_delete_message,
            ClientEvent.SEND_EVENT: self.handle_send_event,
            ClientEvent.SEND_WARNING: self.handle_send_warning,
            ClientEvent.SEND_FLASH: self.handle_send_flash,
            ClientEvent.UPDATE_CONFIG: self.handle_update_config,
            ClientEvent.MUTE_USER: self.handle_mute_user,
            ClientEvent.UNMUTE_USER: self.handle_unmute_user,
            ClientEvent.HIDE_USER: self.handle_hide_user,
            ClientEvent.UNHIDE_USER: self.handle_unhide_user,
            ClientEvent.ADD_BLOCKED_WORD: self.handle_add_blocked_word,
            ClientEvent.REMOVE_BLOCKED_WORD: self.handle_remove_blocked_word,
            ClientEvent.CLEAR_HISTORY: self.handle_clear_history,
            ClientEvent.RESET_TIMERS: self.handle_reset_timers,
            ClientEvent.TRIGGER_ANIMATION: self.handle_trigger_animation,
            ClientEvent.EXPORT_HISTORY: self.handle_export_history,
            ClientEvent.BOT_COMMAND: self.handle_bot_command,
            ClientEvent.BOT_CONFIRM: self.handle_bot_confirm,
            ClientEvent.BOT_DISMISS: self.handle_bot_dismiss,
            ClientEvent.UPDATE_BOT_CONFIG: self.handle_update_bot_config,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_raw(self, conn: Connection, raw: str) -> None:
        """Decode one text frame. Malformed JSON and non-object envelopes are dropped."""
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            logger.warning("[PROTOCOL] Dropping malformed frame from %s: %s", conn.session_id, exc)
            return
        if not isinstance(payload, dict):
            logger.warning("[PROTOCOL] Dropping non-object frame from %s", conn.session_id)
            return
        await self.handle_event(conn, payload)

    async def handle_event(self, conn: Connection, payload: Dict[str, Any]) -> None:
        """Apply one decoded envelope, serialized with every other mutation."""
        async with self.lock:
            try:
                await self._dispatch(conn, payload)
            except ProtocolError as exc:
                await self.registry.send(conn, envelope(ServerEvent.ERROR, message=str(exc)))
            except Exception:
                logger.exception("[PROTOCOL] Error handling %r from %s", payload.get("type"), conn.session_id)

    async def _dispatch(self, conn: Connection, payload: Dict[str, Any]) -> None:
        raw_type = payload.get("type")
        if not isinstance(raw_type, str) or not raw_type:
            raise ProtocolError("Missing event type")
        try:
            event = ClientEvent(raw_type)
        except ValueError:
            raise ProtocolError(f"Unknown event type '{raw_type}'") from None

        if event is not ClientEvent.AUTH and not conn.authenticated:
            logger.debug("[PROTOCOL] Ignoring %s from unauthenticated connection %s", event, conn.session_id)
            return

        handler = self._open_handlers.get(event)
        if handler is None:
            if not conn.is_admin:
                logger.debug("[PROTOCOL] Ignoring admin event %s from %s", event, conn.username)
                return
            handler = self._admin_handlers[event]
        await handler(conn, payload)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def initial_state(self, conn: Connection) -> Dict[str, Any]:
        admin = conn.is_admin
        state: Dict[str, Any] = {
            "messages": [m.to_dict() for m in self.store.get_approved_messages()],
            "users": [u.to_dict() for u in self.store.get_users(include_hidden=admin)],
            "config": self.store.get_config().to_dict(),
            "mutedUsers": [mu.to_dict() for mu in self.store.get_muted_users()],
            "blockedWords": [bw.to_dict() for bw in self.store.get_blocked_words()],
        }
        if admin:
            state["pendingMessages"] = [m.to_dict() for m in self.store.get_pending_messages()]
            state["botConfig"] = self.store.get_bot_config().to_dict()
        return envelope(ServerEvent.INITIAL_STATE, **state)

    async def handle_auth(self, conn: Connection, payload: Dict[str, Any]) -> None:
        handle = _require_text(payload, "handle")
        role = self.credentials.verify(handle)
        if role is None:
            logger.warning("[PROTOCOL] Rejected auth for unknown handle %r", handle)
            raise ProtocolError("Unknown handle")

        declared = payload.get("role")
        if declared is not None and Role.parse(declared) is not role:
            logger.warning("[PROTOCOL] %s declared role %r, using %s from credentials", handle, declared, role)

        reauth = conn.authenticated
        if reauth:
            self._drop_session_user(conn)

        mute = self.store.get_mute(handle)
        user = User(
            id=new_id(),
            username=handle,
            role=role,
            is_muted=mute is not None,
            muted_until=mute.muted_until if mute else None,
            is_hidden=self.store.is_hidden(handle),
        )
        self.store.add_user(user)
        conn.user_id, conn.username, conn.role = user.id, handle, role
        logger.info("[PROTOCOL] %s authenticated as %s", handle, role)

        await self.registry.send(conn, self.initial_state(conn))
        await self.registry.broadcast_users(self.store)
        if reauth:
            await self.broadcast_typing()

    def _drop_session_user(self, conn: Connection) -> None:
        if conn.user_id:
            self.store.remove_user(conn.user_id)
        if conn.username:
            self.store.remove_user_typing(conn.username)
        conn.clear_identity()

    async def handle_disconnect(self, conn: Connection) -> None:
        """Forget the connection and its user. Safe to call more than once."""
        async with self.lock:
            self.registry.unregister(conn)
            if not conn.authenticated:
                return
            username = conn.username
            self._drop_session_user(conn)
            logger.info("[PROTOCOL] %s disconnected", username)
            await self.registry.broadcast_users(self.store)
            await self.broadcast_typing()

    # ------------------------------------------------------------------
    # Open events
    # ------------------------------------------------------------------

    async def broadcast_typing(self) -> None:
        await self.registry.broadcast(envelope(ServerEvent.TYPING_UPDATE, users=self.store.get_typing_users()))

    async def handle_send_message(self, conn: Connection, payload: Dict[str, Any]) -> None:
        content = payload.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ProtocolError("Message cannot be empty")
        content = content.strip()
        if len(content) > self.limits.max_message_length:
            raise ProtocolError(f"Message exceeds {self.limits.max_message_length} characters")

        admin = conn.is_admin
        config = self.store.get_config()
        if not config.enabled and not admin:
            raise ProtocolError("Chat is disabled")
        if self.store.is_muted(conn.username):
            raise ProtocolError("You are muted")
        if self.store.contains_blocked_word(content):
            raise ProtocolError("Message contains blocked words")

        approved = admin or config.direct_chat_enabled
        message = Message(
            id=new_id(),
            user_id=conn.user_id,
            username=conn.username,
            role=conn.role,
            content=content,
            timestamp=self.store.clock(),
            status=MessageStatus.APPROVED if approved else MessageStatus.PENDING,
        )
        self.store.add_message(message)

        if approved:
            await self.registry.broadcast(envelope(ServerEvent.MESSAGE, message=message.to_dict()))
        else:
            pending = envelope(ServerEvent.PENDING_MESSAGE, message=message.to_dict())
            await self.registry.send(conn, pending)
            await self.registry.broadcast_to_admins(pending, exclude=conn)

        self.store.remove_user_typing(conn.username)
        await self.broadcast_typing()

        if self.bot is not None:
            self.spawn(self._observe_message(message), name=f"bot-observe-{message.id}")

    async def handle_typing(self, conn: Connection, payload: Dict[str, Any]) -> None:
        is_typing = _require_bool(payload.get("isTyping"), "isTyping")
        if is_typing:
            self.store.set_user_typing(conn.username)
        else:
            self.store.remove_user_typing(conn.username)
        await self.broadcast_typing()

    # ------------------------------------------------------------------
    # Message moderation
    # ------------------------------------------------------------------

    async def approve_message(self, message_id: str, force: bool = False) -> bool:
        patch: Dict[str, Any] = {"status": MessageStatus.APPROVED}
        if force:
            patch["force_published"] = True
        message = self.store.update_message(message_id, **patch)
        if message is None:
            return False
        await self.registry.broadcast(envelope(ServerEvent.MESSAGE, message=message.to_dict()))
        await self.registry.broadcast(envelope(ServerEvent.MESSAGE_APPROVED, messageId=message_id))
        return True

    async def reject_message(self, message_id: str) -> bool:
        if not self.store.delete_message(message_id):
            return False
        await self.flash_scheduler.cancel(message_id)
        await self.registry.broadcast(envelope(ServerEvent.MESSAGE_REJECTED, messageId=message_id))
        return True

    async def delete_message(self, message_id: str) -> bool:
        if not self.store.delete_message(message_id):
            return False
        await self.flash_scheduler.cancel(message_id)
        await self.registry.broadcast(envelope(ServerEvent.MESSAGE_DELETED, messageId=message_id))
        return True

    async def handle_approve_message(self, conn: Connection, payload: Dict[str, Any]) -> None:
        await self.approve_message(_require_text(payload, "messageId"))

    async def handle_reject_message(self, conn: Connection, payload: Dict[str, Any]) -> None:
        await self.reject_message(_require_text(payload, "messageId"))

    async def handle_force_publish(self, conn: Connection, payload: Dict[str, Any]) -> None:
        await self.approve_message(_require_text(payload, "messageId"), force=True)

    async def handle_delete_message(self, conn: Connection, payload: Dict[str, Any]) -> None:
        await self.delete_message(_require_text(payload, "messageId"))

    # ------------------------------------------------------------------
    # Admin broadcasts
    # ------------------------------------------------------------------

    def _admin_message(self, author: Any, content: str, message_type: MessageType, flash_duration: Optional[int] = None) -> Message:
        return Message(
            id=new_id(),
            user_id=author.user_id if isinstance(author, Connection) else author.id,
            username=author.username,
            role=author.role,
            content=content,
            timestamp=self.store.clock(),
            status=MessageStatus.APPROVED,
            type=message_type,
            flash_duration=flash_duration,
        )

    async def post_message(self, author: Any, content: str, message_type: MessageType) -> Message:
        """Append an always-visible message and broadcast it."""
        message = self._admin_message(author, content, message_type)
        self.store.add_message(message)
        await self.registry.broadcast(envelope(ServerEvent.MESSAGE, message=message.to_dict()))
        return message

    async def handle_send_event(self, conn: Connection, payload: Dict[str, Any]) -> None:
        content = _bounded_content(payload, self.limits.max_broadcast_length)
        await self.post_message(conn, content, MessageType.EVENT)

    async def handle_send_warning(self, conn: Connection, payload: Dict[str, Any]) -> None:
        content = _bounded_content(payload, self.limits.max_broadcast_length)
        await self.post_message(conn, content, MessageType.WARNING)

    async def handle_send_flash(self, conn: Connection, payload: Dict[str, Any]) -> None:
        content = _bounded_content(payload, self.limits.max_broadcast_length)
        duration = _require_number(payload.get("durationSeconds"), "durationSeconds", 1, self.limits.max_flash_seconds)
        message = self._admin_message(conn, content, MessageType.FLASH, flash_duration=int(duration))
        self.store.add_message(message)
        await self.registry.broadcast(envelope(ServerEvent.FLASH_MESSAGE, message=message.to_dict()))
        await self.flash_scheduler.schedule(message.id, duration)

    async def schedule_loaded_flashes(self) -> int:
        """Schedule expiry of flash messages restored from persistence.

        Flashes whose window already passed come due on the scheduler's next
        pass. Returns the number of jobs scheduled.
        """
        now = self.store.clock()
        flashes = [m for m in self.store.get_messages() if m.type is MessageType.FLASH]
        for message in flashes:
            expires_at = message.timestamp + (message.flash_duration or 0) * 1000
            await self.flash_scheduler.schedule(message.id, max(0, expires_at - now) / 1000)
        if flashes:
            logger.info("[PROTOCOL] Rescheduled expiry of %d restored flash messages", len(flashes))
        return len(flashes)

    async def expire_flash(self, message_id: str) -> None:
        """Delete an expired flash message. Runs from the flash scheduler."""
        async with self.lock:
            if self.store.delete_message(message_id):
                await self.registry.broadcast(envelope(ServerEvent.MESSAGE_DELETED, messageId=message_id))

    async def handle_trigger_animation(self, conn: Connection, payload: Dict[str, Any]) -> None:
        kind = _require_text(payload, "kind")
        await self.registry.broadcast(envelope(ServerEvent.ANIMATION_TRIGGER, kind=kind))

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def broadcast_config(self) -> None:
        await self.registry.broadcast(envelope(ServerEvent.CONFIG_UPDATE, config=self.store.get_config().to_dict()))

    def _config_patch(self, requested: Mapping[str, Any]) -> Dict[str, Any]:
        patch: Dict[str, Any] = {}
        for key, value in requested.items():
            if key == "enabled":
                patch["enabled"] = _require_bool(value, key)
            elif key == "simulationMode":
                patch["simulation_mode"] = _require_bool(value, key)
            elif key == "directChatEnabled":
                patch["direct_chat_enabled"] = _require_bool(value, key)
            elif key == "cooldown":
                patch["cooldown"] = int(_require_number(value, key, 0))
            elif key == "timerMinutes":
                minutes = _require_number(value, key, 0)
                # The deadline is stored as absolute time, never as a duration.
                patch["timer_end_time"] = self.store.clock() + int(minutes * MINUTE_MS) if minutes > 0 else None
            else:
                logger.debug("[PROTOCOL] Ignoring unsupported config key %r", key)
        return patch

    async def handle_update_config(self, conn: Connection, payload: Dict[str, Any]) -> None:
        requested = payload.get("config")
        if not isinstance(requested, dict):
            raise ProtocolError("'config' must be an object")
        patch = self._config_patch(requested)
        self.store.update_config(**patch)
        logger.info("[PROTOCOL] %s updated config: %s", conn.username, sorted(patch))
        await self.broadcast_config()

    async def handle_reset_timers(self, conn: Connection, payload: Dict[str, Any]) -> None:
        self.store.update_config(timer_end_time=None, cooldown=0)
        await self.broadcast_config()

    async def set_chat_enabled(self, enabled: bool) -> None:
        self.store.update_config(enabled=enabled)
        await self.broadcast_config()

    async def set_timer(self, minutes: float) -> None:
        await self._apply_config({"timerMinutes": minutes})

    async def _apply_config(self, requested: Mapping[str, Any]) -> None:
        self.store.update_config(**self._config_patch(requested))
        await self.broadcast_config()

    async def enforce_closure_timer(self) -> None:
        """Close the chat once its deadline has passed. Repeat calls are no-ops."""
        async with self.lock:
            config = self.store.get_config()
            if config.timer_end_time is None or self.store.clock() < config.timer_end_time:
                return

            if not config.enabled:
                self.store.update_config(timer_end_time=None)
                await self.broadcast_config()
                return

            self.store.update_config(enabled=False, timer_end_time=None)
            notice = Message(
                id=new_id(),
                user_id=SYSTEM_USER_ID,
                username=SYSTEM_USERNAME,
                role=Role.BOT,
                content=CLOSURE_MESSAGE,
                timestamp=self.store.clock(),
                status=MessageStatus.APPROVED,
                type=MessageType.EVENT,
            )
            self.store.add_message(notice)
            logger.info("[PROTOCOL] Closure timer elapsed, chat disabled")
            await self.registry.broadcast(envelope(ServerEvent.MESSAGE, message=notice.to_dict()))
            await self.broadcast_config()

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------

    async def broadcast_mutes(self) -> None:
        muted = [mu.to_dict() for mu in self.store.get_muted_users()]
        await self.registry.broadcast(envelope(ServerEvent.MUTED_USERS_UPDATE, mutedUsers=muted))
        await self.registry.broadcast_users(self.store)

    async def mute_user(self, handle: str, minutes: float) -> None:
        self.store.add_muted_user(handle, self.store.clock() + int(minutes * MINUTE_MS))
        logger.info("[PROTOCOL] Muted %s for %s minutes", handle, minutes)
        await self.broadcast_mutes()

    async def handle_mute_user(self, conn: Connection, payload: Dict[str, Any]) -> None:
        handle = _require_text(payload, "handle")
        minutes = _require_number(payload.get("durationMinutes"), "durationMinutes", 1)
        await self.mute_user(handle, minutes)

    async def handle_unmute_user(self, conn: Connection, payload: Dict[str, Any]) -> None:
        self.store.remove_muted_user(_require_text(payload, "handle"))
        await self.broadcast_mutes()

    async def handle_hide_user(self, conn: Connection, payload: Dict[str, Any]) -> None:
        self.store.hide_user(_require_text(payload, "handle"))
        await self.registry.broadcast_users(self.store)

    async def handle_unhide_user(self, conn: Connection, payload: Dict[str, Any]) -> None:
        self.store.unhide_user(_require_text(payload, "handle"))
        await self.registry.broadcast_users(self.store)

    # ------------------------------------------------------------------
    # Blocked words and history
    # ------------------------------------------------------------------

    def _word(self, payload: Mapping[str, Any]) -> str:
        word = payload.get("word")
        if not isinstance(word, str) or not normalize_word(word):
            raise ProtocolError("Word cannot be empty")
        return word

    async def broadcast_blocked_words(self) -> None:
        words = [bw.to_dict() for bw in self.store.get_blocked_words()]
        await self.registry.broadcast(envelope(ServerEvent.BLOCKED_WORDS_UPDATE, blockedWords=words))

    async def handle_add_blocked_word(self, conn: Connection, payload: Dict[str, Any]) -> None:
        self.store.add_blocked_word(self._word(payload))
        await self.broadcast_blocked_words()

    async def handle_remove_blocked_word(self, conn: Connection, payload: Dict[str, Any]) -> None:
        self.store.remove_blocked_word(self._word(payload))
        await self.broadcast_blocked_words()

    async def handle_clear_history(self, conn: Connection, payload: Dict[str, Any]) -> None:
        self.store.clear_messages()
        logger.info("[PROTOCOL] %s cleared the message history", conn.username)
        await self.registry.broadcast(envelope(ServerEvent.MESSAGES_CLEARED))

    def export_text(self) -> str:
        """Human-readable transcript of the visible messages."""
        visible = self.store.get_approved_messages()
        config = self.store.get_config()
        header = [
            EXPORT_RULE,
            "                   CHAT HISTORY EXPORT",
            EXPORT_RULE,
            f"Exported at: {humanize_millis(self.store.clock())}",
            f"Total messages: {len(visible)}",
            f"Chat status: {'enabled' if config.enabled else 'disabled'}",
            f"Direct chat: {'enabled' if config.direct_chat_enabled else 'disabled'}",
            f"Cooldown: {config.cooldown} seconds",
            EXPORT_RULE,
            "",
        ]
        lines = []
        for message in visible:
            labels = f"[{message.role.value.upper()}]"
            if message.type is not MessageType.NORMAL:
                labels += f"[{message.type.value.upper()}]"
            if message.force_published:
                labels += "[FORCED]"
            lines.append(f"{humanize_millis(message.timestamp)} {labels} {message.username}: {message.content}")
        footer = ["", EXPORT_RULE, "                      END OF EXPORT", EXPORT_RULE]
        return "\n".join(header + lines + footer)

    async def handle_export_history(self, conn: Connection, payload: Dict[str, Any]) -> None:
        export_format = payload.get("format")
        if export_format == "json":
            data = json.dumps(self.store.snapshot(), indent=2, ensure_ascii=False)
            filename = "chat-storage.json"
        elif export_format == "text":
            data = self.export_text()
            filename = f"chat-export-{export_date_stamp(self.store.clock())}.txt"
        else:
            raise ProtocolError(f"Unknown export format '{export_format}'")
        await self.registry.send(
            conn,
            envelope(ServerEvent.EXPORT_DATA, format=export_format, data=data, filename=filename),
        )

    # ------------------------------------------------------------------
    # Moderation bot
    # ------------------------------------------------------------------

    def _require_bot(self) -> ModerationBot:
        if self.bot is None or not self.store.get_bot_config().enabled:
            raise ProtocolError("Bot is disabled")
        return self.bot

    async def sync_bot_user(self) -> bool:
        """Register or remove the bot user to match the bot config. Returns True on change."""
        if self.bot is None:
            return False
        present = self.store.get_user_by_id(self.bot.user.id) is not None
        wanted = self.store.get_bot_config().enabled
        if wanted and not present:
            self.store.add_user(self.bot.user)
        elif present and not wanted:
            self.store.remove_user(self.bot.user.id)
        else:
            return False
        return True

    def bot_context(self) -> Dict[str, Any]:
        """State summary handed to the AI provider when planning a command."""
        return {
            "config": self.store.get_config().to_dict(),
            "pendingMessageIds": [m.id for m in self.store.get_pending_messages()],
            "pendingMessages": [
                {"id": m.id, "username": m.username, "content": m.content}
                for m in self.store.get_pending_messages()
            ],
            "onlineHandles": [u.username for u in self.store.get_users()],
            "mutedUsers": [mu.to_dict() for mu in self.store.get_muted_users()],
        }

    async def push_proposal(self, proposal: BotProposal) -> None:
        await self.registry.broadcast_to_admins(envelope(ServerEvent.BOT_PLAN, **proposal.to_dict()))

    async def handle_bot_command(self, conn: Connection, payload: Dict[str, Any]) -> None:
        bot = self._require_bot()
        command = _require_text(payload, "command")
        context = self.bot_context()
        self.spawn(self._plan_command(bot, command, context), name="bot-command")

    async def _plan_command(self, bot: ModerationBot, command: str, context: Dict[str, Any]) -> None:
        proposal = await bot.plan_command(command, context)
        async with self.lock:
            await self.push_proposal(proposal)

    async def _observe_message(self, message: Message) -> None:
        bot = self.bot
        if bot is None:
            return
        config = self.store.get_bot_config()
        proposal = await bot.review_message(message, config)
        if proposal is not None:
            async with self.lock:
                await self.push_proposal(proposal)

        reply = await bot.respond(message, config)
        if reply:
            async with self.lock:
                await self.post_message(bot.user, reply[: self.limits.max_message_length], MessageType.NORMAL)

    async def handle_bot_confirm(self, conn: Connection, payload: Dict[str, Any]) -> None:
        bot = self._require_bot()
        plan_id = _require_text(payload, "planId")
        proposal = bot.take_proposal(plan_id)
        if proposal is None:
            raise ProtocolError("Unknown or expired plan")

        logger.info("[PROTOCOL] %s confirmed plan %s (%d actions)", conn.username, plan_id, len(proposal.actions))
        if proposal.reply:
            await self.post_message(bot.user, proposal.reply[: self.limits.max_message_length], MessageType.NORMAL)
        for action in proposal.actions:
            await self.execute_bot_action(action, bot)

    async def handle_bot_dismiss(self, conn: Connection, payload: Dict[str, Any]) -> None:
        if self.bot is not None and self.bot.dismiss(_require_text(payload, "planId")):
            logger.info("[PROTOCOL] %s dismissed plan %s", conn.username, payload["planId"])

    async def execute_bot_action(self, action: BotAction, bot: ModerationBot) -> None:
        """Run one confirmed intent through the same paths as the admin events."""
        kind = action.action
        if kind is BotActionType.APPROVE_MESSAGE and action.message_id:
            await self.approve_message(action.message_id)
        elif kind is BotActionType.REJECT_MESSAGE and action.message_id:
            await self.reject_message(action.message_id)
        elif kind is BotActionType.DELETE_MESSAGE and action.message_id:
            await self.delete_message(action.message_id)
        elif kind is BotActionType.CLOSE_CHAT:
            await self.set_chat_enabled(False)
        elif kind is BotActionType.OPEN_CHAT:
            await self.set_chat_enabled(True)
        elif kind is BotActionType.SET_TIMER:
            await self.set_timer(max(action.minutes, 0))
        elif kind is BotActionType.MUTE_USER and action.handle and action.minutes >= 1:
            await self.mute_user(action.handle, action.minutes)
        elif kind is BotActionType.SEND_EVENT and action.content:
            await self.post_message(bot.user, action.content[: self.limits.max_broadcast_length], MessageType.EVENT)
        elif kind is BotActionType.SEND_WARNING and action.content:
            await self.post_message(bot.user, action.content[: self.limits.max_broadcast_length], MessageType.WARNING)
        else:
            logger.warning("[PROTOCOL] Skipping incomplete bot action %s", action.to_dict())

    async def handle_update_bot_config(self, conn: Connection, payload: Dict[str, Any]) -> None:
        requested = payload.get("config")
        if not isinstance(requested, dict):
            raise ProtocolError("'config' must be an object")
        patch = {}
        for attr, value in BotConfig.wire_to_attrs(requested).items():
            patch[attr] = _require_bool(value, BotConfig.WIRE_KEYS[attr])
        self.store.update_bot_config(**patch)

        await self.registry.broadcast_to_admins(
            envelope(ServerEvent.BOT_CONFIG_UPDATE, botConfig=self.store.get_bot_config().to_dict())
        )
        if await self.sync_bot_user():
            await self.registry.broadcast_users(self.store)

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def spawn(self, coro: Awaitable[None], name: str) -> asyncio.Task:
        """Run ``coro`` in a tracked background task; failures are logged."""
        task = asyncio.create_task(coro, name=f"modchat-{name}")
        self._background_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[PROTOCOL] Background task %s failed", task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        """Wait for the background tasks spawned so far."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._background_tasks):
            task.cancel()
        await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
        await self.flash_scheduler.shutdown()
