"""
Moderation bot: turns AI verdicts and admin commands into proposals.

The bot never mutates chat state itself. Every verdict or command becomes a
`BotProposal` that is pushed to admins; the protocol handler executes the
actions only once an admin confirms the plan id. Chat replies to users or
admins are the single exception and are posted directly.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, List, Mapping, Optional

from modchat.bot.ai_provider import AIProvider
from modchat.datatypes.action_datatypes import BotAction, BotActionType, BotProposal
from modchat.datatypes.chat_datatypes import BotConfig, Message, Role, User, is_admin
from modchat.util.logger import get_logger

logger = get_logger("moderation_bot")

BOT_USER_ID = "bot"
MAX_OPEN_PROPOSALS = 50


class ModerationBot:
    """
    Holds the AI provider, the bot's user identity and the open proposals.

    Args:
        provider: AI backend answering verdicts, plans and replies.
        handle: Display handle of the bot user.
        max_proposals: Oldest proposals are forgotten beyond this many.
    """

    def __init__(self, provider: AIProvider, handle: str = "modbot", max_proposals: int = MAX_OPEN_PROPOSALS) -> None:
        self.provider = provider
        self.user = User(id=BOT_USER_ID, username=handle, role=Role.BOT)
        self.max_proposals = max_proposals
        self.proposals: "OrderedDict[str, BotProposal]" = OrderedDict()

    def _remember(self, proposal: BotProposal) -> BotProposal:
        self.proposals[proposal.plan_id] = proposal
        while len(self.proposals) > self.max_proposals:
            dropped_id, _ = self.proposals.popitem(last=False)
            logger.debug("[BOT] Forgot stale proposal %s", dropped_id)
        return proposal

    def take_proposal(self, plan_id: str) -> Optional[BotProposal]:
        """Remove and return the proposal so it can only be confirmed once."""
        return self.proposals.pop(plan_id, None)

    def dismiss(self, plan_id: str) -> bool:
        return self.proposals.pop(plan_id, None) is not None

    async def review_message(self, message: Message, config: BotConfig) -> Optional[BotProposal]:
        """Analyse a freshly sent message and propose moderation when warranted."""
        if not config.enabled or not config.monitor_chat or message.role is Role.BOT:
            return None

        analysis = await self.provider.analyze_message(message.content, message.role)
        # Pending messages are rejected, already visible ones deleted.
        removal = BotActionType.REJECT_MESSAGE if message.is_pending else BotActionType.DELETE_MESSAGE
        actions: List[BotAction] = []

        if config.detect_private_messaging and analysis.contains_private_messaging:
            actions = [
                BotAction(removal, message_id=message.id, reason="Private messaging mention"),
                BotAction(BotActionType.CLOSE_CHAT, reason="Private messaging mention"),
                BotAction(
                    BotActionType.SEND_EVENT,
                    content=f"⚠️ Chat closed automatically: private messaging mention detected ({message.username})",
                ),
            ]
        elif config.auto_moderation and analysis.contains_insults:
            actions = [
                BotAction(removal, message_id=message.id, reason="Insult"),
                BotAction(
                    BotActionType.SEND_WARNING,
                    content=f"⚠️ Message from {message.username} blocked for inappropriate content",
                ),
            ]
        elif config.auto_moderation and analysis.should_moderate:
            actions = [BotAction(removal, message_id=message.id, reason=analysis.suggested_action or "")]

        if not actions:
            return None

        summary = analysis.suggested_action or f"Moderate message from {message.username}"
        proposal = self._remember(BotProposal(summary=summary, actions=actions, source="auto"))
        logger.info("[BOT] Proposed %d actions for message %s: %s", len(actions), message.id, summary)
        return proposal

    async def plan_command(self, command: str, context: Mapping[str, Any]) -> BotProposal:
        """Ask the provider to plan an admin command."""
        reply = await self.provider.plan_command(command, context)
        summary = reply.reply or "No action planned."
        proposal = self._remember(
            BotProposal(summary=summary, actions=reply.actions, source="command", reply=reply.reply)
        )
        logger.info("[BOT] Planned %d actions for command %r", len(reply.actions), command)
        return proposal

    async def respond(self, message: Message, config: BotConfig) -> Optional[str]:
        """Return a chat reply when the config asks the bot to answer this sender."""
        if not config.enabled or message.role is Role.BOT:
            return None
        if is_admin(message.role):
            if not config.respond_to_admins:
                return None
        elif not config.respond_to_users:
            return None

        reply = (await self.provider.respond(message.content, message.role)).strip()
        return reply or None

    async def close(self) -> None:
        await self.provider.close()
