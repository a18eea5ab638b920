"""
Action types and data structures for the moderation bot.

The AI provider never drives control flow through free text: it returns a
`MessageAnalysis` verdict or a `BotReply` holding typed `BotAction` intents.
Intents are grouped into a `BotProposal` that an admin has to confirm before
anything is executed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from modchat.datatypes.chat_datatypes import new_id


class BotActionType(Enum):
    """Enumeration of actions the bot may propose."""

    APPROVE_MESSAGE = "approve_message"
    REJECT_MESSAGE = "reject_message"
    DELETE_MESSAGE = "delete_message"
    CLOSE_CHAT = "close_chat"
    OPEN_CHAT = "open_chat"
    SET_TIMER = "set_timer"
    MUTE_USER = "mute_user"
    SEND_EVENT = "send_event"
    SEND_WARNING = "send_warning"

    def __str__(self) -> str:
        return self.value


# Actions that need a target message id.
MESSAGE_ACTIONS = frozenset({
    BotActionType.APPROVE_MESSAGE,
    BotActionType.REJECT_MESSAGE,
    BotActionType.DELETE_MESSAGE,
})


@dataclass(slots=True)
class BotAction:
    """A single typed action intent.

    Attributes:
        action: Type of action to perform.
        message_id: Target message for approve/reject/delete.
        handle: Target user for mute.
        minutes: Mute duration or closure timer length.
        content: Text for event and warning broadcasts.
        reason: Short justification shown to the admin.
    """

    action: BotActionType
    message_id: Optional[str] = None
    handle: Optional[str] = None
    minutes: int = 0
    content: str = ""
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"action": self.action.value}
        if self.message_id:
            data["messageId"] = self.message_id
        if self.handle:
            data["handle"] = self.handle
        if self.minutes:
            data["minutes"] = self.minutes
        if self.content:
            data["content"] = self.content
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass(slots=True)
class MessageAnalysis:
    """Verdict of the AI provider on a single chat message."""

    contains_private_messaging: bool = False
    contains_insults: bool = False
    should_moderate: bool = False
    suggested_action: Optional[str] = None


@dataclass(slots=True)
class BotReply:
    """Free-text reply plus explicit action intents."""

    reply: str = ""
    actions: List[BotAction] = field(default_factory=list)


@dataclass(slots=True)
class BotProposal:
    """A set of actions waiting for admin confirmation.

    Attributes:
        summary: Human readable plan shown to the admin.
        actions: Intents executed in order on confirmation.
        source: ``"command"`` for admin commands, ``"auto"`` for verdicts.
        reply: Optional bot chat message posted on confirmation.
        plan_id: Identifier the admin echoes back in ``bot_confirm``.
    """

    summary: str
    actions: List[BotAction]
    source: str
    reply: str = ""
    plan_id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planId": self.plan_id,
            "summary": self.summary,
            "source": self.source,
            "reply": self.reply,
            "actions": [action.to_dict() for action in self.actions],
        }
