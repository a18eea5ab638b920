"""Event type names exchanged over the WebSocket channel."""

from __future__ import annotations

from enum import Enum


class ClientEvent(Enum):
    """Events a client may send to the server."""

    AUTH = "auth"
    SEND_MESSAGE = "send_message"
    TYPING = "typing"
    APPROVE_MESSAGE = "approve_message"
    REJECT_MESSAGE = "reject_message"
    FORCE_PUBLISH = "force_publish"
    SEND_EVENT = "send_event"
    SEND_FLASH = "send_flash"
    SEND_WARNING = "send_warning"
    UPDATE_CONFIG = "update_config"
    MUTE_USER = "mute_user"
    UNMUTE_USER = "unmute_user"
    HIDE_USER = "hide_user"
    UNHIDE_USER = "unhide_user"
    ADD_BLOCKED_WORD = "add_blocked_word"
    REMOVE_BLOCKED_WORD = "remove_blocked_word"
    CLEAR_HISTORY = "clear_history"
    RESET_TIMERS = "reset_timers"
    DELETE_MESSAGE = "delete_message"
    TRIGGER_ANIMATION = "trigger_animation"
    EXPORT_HISTORY = "export_history"
    BOT_COMMAND = "bot_command"
    BOT_CONFIRM = "bot_confirm"
    BOT_DISMISS = "bot_dismiss"
    UPDATE_BOT_CONFIG = "update_bot_config"

    def __str__(self) -> str:
        return self.value


class ServerEvent(Enum):
    """Events the server pushes to clients."""

    INITIAL_STATE = "initial_state"
    MESSAGE = "message"
    PENDING_MESSAGE = "pending_message"
    FLASH_MESSAGE = "flash_message"
    MESSAGE_APPROVED = "message_approved"
    MESSAGE_REJECTED = "message_rejected"
    MESSAGE_DELETED = "message_deleted"
    USERS_UPDATE = "users_update"
    TYPING_UPDATE = "typing_update"
    CONFIG_UPDATE = "config_update"
    MUTED_USERS_UPDATE = "muted_users_update"
    BLOCKED_WORDS_UPDATE = "blocked_words_update"
    MESSAGES_CLEARED = "messages_cleared"
    ANIMATION_TRIGGER = "animation_trigger"
    EXPORT_DATA = "export_data"
    BOT_PLAN = "bot_plan"
    BOT_CONFIG_UPDATE = "bot_config_update"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


def envelope(event: ServerEvent, **payload) -> dict:
    """Build a ``{type, ...payload}`` envelope for ``event``."""
    return {"type": event.value, **payload}
