"""
Authoritative in-memory chat state.

Responsibilities:
- Hold messages, chat and bot configuration, mutes, blocked words, hidden
  handles, live users and typing indicators.
- Request a debounced save after every mutation of persisted state.
- Load and snapshot the persisted document through a `PersistenceBackend`.

Users, typing indicators and hidden handles are session state and are never
written to the backend. All mutators are synchronous so no other task can
observe a half-applied change.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from modchat.datatypes.chat_datatypes import (
    MUTABLE_MESSAGE_FIELDS,
    BlockedWord,
    BotConfig,
    ChatConfig,
    Message,
    MutedUser,
    User,
    normalize_word,
)
from modchat.persistence.base import PersistenceBackend, StateDocument
from modchat.scheduler.debounced_saver import DebouncedSaver
from modchat.util.logger import get_logger
from modchat.util.time_utils import Clock, current_millis

logger = get_logger("moderation_store")

TYPING_STALE_MS = 5_000
SAVE_DEBOUNCE_SECONDS = 2.0


class ModerationStore:
    """
    Sole owner of chat state.

    Args:
        backend: Persistence backend for the state document.
        clock: Millisecond clock, injectable for tests.
        save_delay: Quiet window of the debounced saver in seconds.
        typing_stale_ms: Age after which a typing indicator is dropped.
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        clock: Clock = current_millis,
        save_delay: float = SAVE_DEBOUNCE_SECONDS,
        typing_stale_ms: int = TYPING_STALE_MS,
    ) -> None:
        self.backend = backend
        self.clock = clock
        self.typing_stale_ms = typing_stale_ms

        self.users: Dict[str, User] = {}
        self.messages: List[Message] = []
        self.config = ChatConfig()
        self.bot_config = BotConfig()
        self.muted_users: Dict[str, MutedUser] = {}
        self.blocked_words: Dict[str, BlockedWord] = {}
        self.hidden_usernames: set[str] = set()
        self.typing_users: Dict[str, int] = {}

        self.saver = DebouncedSaver(self._save_now, delay=save_delay, name="chat state")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> StateDocument:
        """Return the persisted document for the current state."""
        return {
            "messages": [m.to_dict() for m in self.messages],
            "mutedUsers": [mu.to_dict() for mu in self.muted_users.values()],
            "blockedWords": [bw.to_dict() for bw in self.blocked_words.values()],
            "config": self.config.to_dict(),
            "botConfig": self.bot_config.to_dict(),
        }

    def load_snapshot(self, document: StateDocument) -> None:
        """Replace persisted state with ``document``; missing keys get defaults."""
        self.messages = [Message.from_dict(m) for m in document.get("messages") or []]
        self.muted_users = {}
        for raw in document.get("mutedUsers") or []:
            muted = MutedUser.from_dict(raw)
            self.muted_users[muted.username] = muted
        self.blocked_words = {}
        for raw in document.get("blockedWords") or []:
            blocked = BlockedWord.from_dict(raw)
            self.blocked_words[blocked.word] = blocked
        self.config = ChatConfig.from_dict(document.get("config"))
        self.bot_config = BotConfig.from_dict(document.get("botConfig"))

    async def load(self) -> bool:
        """Load the persisted document.

        Failures are logged and the store starts empty; memory is authoritative
        from here on.

        Returns:
            True when a document was loaded.
        """
        try:
            await self.backend.open()
            document = await self.backend.load()
        except Exception as exc:
            logger.error("[STORE] Failed to load state from %s, starting fresh: %s", self.backend.describe(), exc)
            return False

        if not document:
            logger.info("[STORE] No saved state in %s, starting fresh", self.backend.describe())
            return False

        try:
            self.load_snapshot(document)
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("[STORE] Saved state is malformed, starting fresh: %s", exc)
            self.load_snapshot({})
            return False

        logger.info("[STORE] Loaded %d messages from %s", len(self.messages), self.backend.describe())
        return True

    async def _save_now(self) -> None:
        await self.backend.save(self.snapshot())

    def schedule_save(self) -> None:
        """Request a debounced write of the current state."""
        self.saver.request_save()

    async def flush(self) -> None:
        """Write any pending change immediately."""
        await self.saver.flush()

    async def close(self) -> None:
        """Flush pending writes and release the backend."""
        await self.flush()
        try:
            await self.backend.close()
        except Exception as exc:
            logger.error("[STORE] Failed to close backend %s: %s", self.backend.describe(), exc)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self.users.values() if u.username == username), None)

    def add_user(self, user: User) -> None:
        self.users[user.id] = user

    def remove_user(self, user_id: str) -> Optional[User]:
        return self.users.pop(user_id, None)

    def get_users(self, include_hidden: bool = True) -> List[User]:
        """Return live users; hidden ones only when ``include_hidden``."""
        return [u for u in self.users.values() if include_hidden or not u.is_hidden]

    def _update_users_named(self, username: str, **patch: Any) -> None:
        for user in self.users.values():
            if user.username == username:
                for key, value in patch.items():
                    setattr(user, key, value)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> None:
        """Append a message. Content is not validated here."""
        self.messages.append(message)
        self.schedule_save()

    def get_messages(self) -> List[Message]:
        return list(self.messages)

    def get_message(self, message_id: str) -> Optional[Message]:
        return next((m for m in self.messages if m.id == message_id), None)

    def get_pending_messages(self) -> List[Message]:
        """Pending normal messages, oldest first."""
        return [m for m in self.messages if m.is_pending]

    def get_approved_messages(self) -> List[Message]:
        """The public feed: approved, forced, or non-normal messages, oldest first."""
        return [m for m in self.messages if m.is_visible]

    def update_message(self, message_id: str, **patch: Any) -> Optional[Message]:
        """Patch moderation fields of a message; no-op when the id is unknown.

        Raises:
            ValueError: when ``patch`` touches an immutable field.
        """
        illegal = set(patch) - MUTABLE_MESSAGE_FIELDS
        if illegal:
            raise ValueError(f"Cannot patch immutable message fields: {sorted(illegal)}")

        message = self.get_message(message_id)
        if message is None:
            return None
        for key, value in patch.items():
            setattr(message, key, value)
        self.schedule_save()
        return message

    def delete_message(self, message_id: str) -> bool:
        """Remove a message. Returns False when nothing was removed."""
        before = len(self.messages)
        self.messages = [m for m in self.messages if m.id != message_id]
        removed = len(self.messages) != before
        if removed:
            self.schedule_save()
        return removed

    def clear_messages(self) -> None:
        self.messages = []
        self.schedule_save()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self) -> ChatConfig:
        return self.config

    def update_config(self, **patch: Any) -> ChatConfig:
        """Merge ``patch`` into the chat config; omitted keys are preserved."""
        self.config.apply_patch(**patch)
        self.schedule_save()
        return self.config

    def get_bot_config(self) -> BotConfig:
        return self.bot_config

    def update_bot_config(self, **patch: Any) -> BotConfig:
        """Merge ``patch`` into the bot config; omitted keys are preserved."""
        self.bot_config.apply_patch(**patch)
        self.schedule_save()
        return self.bot_config

    # ------------------------------------------------------------------
    # Mutes
    # ------------------------------------------------------------------

    def add_muted_user(self, username: str, muted_until: int) -> MutedUser:
        muted = MutedUser(username=username, muted_until=muted_until)
        self.muted_users[username] = muted
        self._update_users_named(username, is_muted=True, muted_until=muted_until)
        self.schedule_save()
        return muted

    def remove_muted_user(self, username: str) -> bool:
        removed = self.muted_users.pop(username, None) is not None
        self._update_users_named(username, is_muted=False, muted_until=None)
        if removed:
            self.schedule_save()
        return removed

    def get_muted_users(self) -> List[MutedUser]:
        """Active mutes; expired records are reclaimed on the way."""
        now = self.clock()
        for muted in [mu for mu in self.muted_users.values() if not mu.is_active(now)]:
            logger.debug("[STORE] Mute for %s expired", muted.username)
            self.remove_muted_user(muted.username)
        return list(self.muted_users.values())

    def get_mute(self, username: str) -> Optional[MutedUser]:
        """Return the active mute record for ``username``, reclaiming an expired one."""
        muted = self.muted_users.get(username)
        if muted is None:
            return None
        if not muted.is_active(self.clock()):
            logger.debug("[STORE] Mute for %s expired", username)
            self.remove_muted_user(username)
            return None
        return muted

    def is_muted(self, username: str) -> bool:
        return self.get_mute(username) is not None

    # ------------------------------------------------------------------
    # Blocked words
    # ------------------------------------------------------------------

    def add_blocked_word(self, word: str) -> bool:
        """Add a normalised word. Returns False for blanks and duplicates."""
        normalized = normalize_word(word)
        if not normalized or normalized in self.blocked_words:
            return False
        self.blocked_words[normalized] = BlockedWord(word=normalized, added_at=self.clock())
        self.schedule_save()
        return True

    def remove_blocked_word(self, word: str) -> bool:
        removed = self.blocked_words.pop(normalize_word(word), None) is not None
        if removed:
            self.schedule_save()
        return removed

    def get_blocked_words(self) -> List[BlockedWord]:
        return list(self.blocked_words.values())

    def contains_blocked_word(self, text: str) -> bool:
        """Case-insensitive substring match against every blocked word."""
        if not self.blocked_words:
            return False
        lowered = text.lower()
        return any(word in lowered for word in self.blocked_words)

    # ------------------------------------------------------------------
    # Hidden users
    # ------------------------------------------------------------------

    def hide_user(self, username: str) -> None:
        self.hidden_usernames.add(username)
        self._update_users_named(username, is_hidden=True)

    def unhide_user(self, username: str) -> None:
        self.hidden_usernames.discard(username)
        self._update_users_named(username, is_hidden=False)

    def is_hidden(self, username: str) -> bool:
        return username in self.hidden_usernames

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------

    def set_user_typing(self, username: str) -> None:
        self.typing_users[username] = self.clock()

    def remove_user_typing(self, username: str) -> None:
        self.typing_users.pop(username, None)

    def get_typing_users(self) -> List[str]:
        """Handles typing within the staleness window; stale entries are dropped."""
        now = self.clock()
        for username, stamp in list(self.typing_users.items()):
            if now - stamp >= self.typing_stale_ms:
                del self.typing_users[username]
        return list(self.typing_users)
