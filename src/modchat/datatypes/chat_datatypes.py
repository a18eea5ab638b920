"""
Core chat data structures and their wire encoding.

Every structure here is serialised with camelCase keys so the persisted
document and the WebSocket payloads share one format. Timestamps are Unix
milliseconds.

Key Features:
- `Role`: closed set of roles with the single `is_admin` predicate.
- `Message`: immutable authoring fields plus patchable moderation fields.
- `ChatConfig` / `BotConfig`: singletons merged with partial patches.
- `MutedUser`, `BlockedWord`: moderation bookkeeping records.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class Role(Enum):
    """Enumeration of the roles a session can hold."""

    REGULAR = "regular"
    ADMIN = "admin"
    BOT = "bot"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """Return the matching role or None when ``value`` is not a role name."""
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


def is_admin(role: Optional[Role]) -> bool:
    """Return True when ``role`` carries administrator rights."""
    return role is Role.ADMIN


class MessageStatus(Enum):
    """Moderation status of a message."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    def __str__(self) -> str:
        return self.value


class MessageType(Enum):
    """Kind of message; anything but NORMAL is always displayed."""

    NORMAL = "normal"
    EVENT = "event"
    FLASH = "flash"
    WARNING = "warning"

    def __str__(self) -> str:
        return self.value


def new_id() -> str:
    """Return a fresh random identifier."""
    return str(uuid.uuid4())


@dataclass(slots=True)
class User:
    """A live chat session.

    Attributes:
        id: Session-scoped identifier allocated at authentication.
        username: Handle from the credential table.
        role: Role taken from the credential table.
        is_online: Always True while the record exists.
        is_muted: Mirrors the mute record for ``username``.
        muted_until: Absolute mute expiry in ms, when muted.
        is_hidden: Mirrors the hidden-handle set.
    """

    id: str
    username: str
    role: Role
    is_online: bool = True
    is_muted: bool = False
    muted_until: Optional[int] = None
    is_hidden: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "username": self.username,
            "role": self.role.value,
            "isOnline": self.is_online,
            "isMuted": self.is_muted,
            "isHidden": self.is_hidden,
        }
        if self.muted_until is not None:
            data["mutedUntil"] = self.muted_until
        return data


# Fields of a message that moderation may change after creation.
MUTABLE_MESSAGE_FIELDS = frozenset({"status", "type", "force_published", "flash_duration"})


@dataclass(slots=True)
class Message:
    """A chat message with its moderation state.

    Username and role are copied from the author at creation so the message
    still renders after the author disconnects.
    """

    id: str
    user_id: str
    username: str
    role: Role
    content: str
    timestamp: int
    status: MessageStatus = MessageStatus.PENDING
    type: MessageType = MessageType.NORMAL
    force_published: bool = False
    flash_duration: Optional[int] = None

    @property
    def is_visible(self) -> bool:
        """True when the message belongs to the public feed."""
        return (
            self.status is MessageStatus.APPROVED
            or self.type is not MessageType.NORMAL
            or self.force_published
        )

    @property
    def is_pending(self) -> bool:
        """True when the message is waiting in the admin queue."""
        return self.status is MessageStatus.PENDING and self.type is MessageType.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "username": self.username,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "type": self.type.value,
        }
        if self.force_published:
            data["forcePublished"] = True
        if self.flash_duration is not None:
            data["flashDuration"] = self.flash_duration
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        """Rebuild a message from its persisted form.

        Roles that are not part of the current role set (older documents
        stored per-handle roles) fall back to REGULAR.
        """
        flash = data.get("flashDuration")
        return cls(
            id=str(data["id"]),
            user_id=str(data.get("userId", "")),
            username=str(data.get("username", "")),
            role=Role.parse(data.get("role")) or Role.REGULAR,
            content=str(data.get("content", "")),
            timestamp=int(data.get("timestamp", 0)),
            status=MessageStatus(data.get("status", MessageStatus.PENDING.value)),
            type=MessageType(data.get("type", MessageType.NORMAL.value)),
            force_published=bool(data.get("forcePublished", False)),
            flash_duration=int(flash) if flash is not None else None,
        )


class PatchMixin:
    """Partial-patch merge for configuration singletons.

    Subclasses declare ``WIRE_KEYS`` mapping attribute names to camelCase keys.
    Omitted keys keep their previous value; unknown keys raise ``KeyError``.
    """

    WIRE_KEYS: Dict[str, str] = {}

    def apply_patch(self, **patch: Any) -> None:
        known = {f.name for f in fields(self)}  # type: ignore[arg-type]
        unknown = set(patch) - known
        if unknown:
            raise KeyError(f"Unknown configuration keys: {sorted(unknown)}")
        for key, value in patch.items():
            setattr(self, key, value)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for attr, wire_key in self.WIRE_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[wire_key] = value
        return data

    @classmethod
    def wire_to_attrs(cls, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Translate camelCase keys present in ``data`` into attribute names."""
        reverse = {wire: attr for attr, wire in cls.WIRE_KEYS.items()}
        return {reverse[key]: value for key, value in data.items() if key in reverse}


@dataclass(slots=True)
class ChatConfig(PatchMixin):
    """Chat-wide switches controlled by the admin."""

    enabled: bool = True
    cooldown: int = 0
    timer_end_time: Optional[int] = None
    simulation_mode: bool = False
    direct_chat_enabled: bool = False

    WIRE_KEYS = {
        "enabled": "enabled",
        "cooldown": "cooldown",
        "timer_end_time": "timerEndTime",
        "simulation_mode": "simulationMode",
        "direct_chat_enabled": "directChatEnabled",
    }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ChatConfig":
        config = cls()
        if data:
            config.apply_patch(**cls.wire_to_attrs(data))
        return config


@dataclass(slots=True)
class BotConfig(PatchMixin):
    """Switches for the moderation bot."""

    enabled: bool = True
    auto_moderation: bool = True
    detect_private_messaging: bool = True
    respond_to_users: bool = False
    respond_to_admins: bool = False
    monitor_chat: bool = True

    WIRE_KEYS = {
        "enabled": "enabled",
        "auto_moderation": "autoModeration",
        "detect_private_messaging": "detectPrivateMessaging",
        "respond_to_users": "respondToUsers",
        "respond_to_admins": "respondToAdmins",
        "monitor_chat": "monitorChat",
    }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "BotConfig":
        config = cls()
        if data:
            config.apply_patch(**cls.wire_to_attrs(data))
        return config


@dataclass(slots=True)
class MutedUser:
    """A mute record keyed by handle."""

    username: str
    muted_until: int

    def is_active(self, now: int) -> bool:
        return self.muted_until > now

    def to_dict(self) -> Dict[str, Any]:
        return {"username": self.username, "mutedUntil": self.muted_until}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MutedUser":
        return cls(username=str(data["username"]), muted_until=int(data["mutedUntil"]))


@dataclass(slots=True)
class BlockedWord:
    """A blocked word or phrase, stored lowercased."""

    word: str
    added_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {"word": self.word, "addedAt": self.added_at}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BlockedWord":
        return cls(word=normalize_word(str(data["word"])), added_at=int(data.get("addedAt", 0)))


def normalize_word(word: str) -> str:
    """Normalise a blocked word for storage and lookup."""
    return word.strip().lower()

