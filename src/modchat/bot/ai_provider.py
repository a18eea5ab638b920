"""Pluggable AI backends for the moderation bot.

Two providers share the `AIProvider` contract:

- `OpenAICompatibleProvider` talks to any OpenAI compatible chat completions
  server (vLLM, Ollama, LM Studio) through ``AsyncOpenAI`` and requests JSON
  schema structured output for verdicts and command plans.
- `KeywordProvider` runs offline with fixed keyword lists and a tiny command
  grammar. It is the default and what the test suite uses.

Providers never raise on backend failure: errors are logged and degrade to an
empty verdict, an empty plan or no reply.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping

from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam
from openai.types.shared_params.response_format_json_schema import ResponseFormatJSONSchema

from modchat.bot import bot_parsing
from modchat.configuration.ai_settings import AISettings
from modchat.datatypes.action_datatypes import BotAction, BotActionType, BotReply, MessageAnalysis
from modchat.datatypes.chat_datatypes import Role, is_admin
from modchat.util.logger import get_logger

logger = get_logger("ai_provider")


class AIProvider(ABC):
    """Contract between the moderation bot and an AI backend."""

    @abstractmethod
    async def analyze_message(self, content: str, sender_role: Role) -> MessageAnalysis:
        """Return a verdict for one chat message."""

    @abstractmethod
    async def plan_command(self, command: str, context: Mapping[str, Any]) -> BotReply:
        """Turn an admin's natural-language command into typed action intents."""

    @abstractmethod
    async def respond(self, content: str, sender_role: Role) -> str:
        """Return a chat reply to ``content``; empty means stay silent."""

    async def close(self) -> None:
        return None


# --------------------------------------------------------------------------
# OpenAI compatible backend
# --------------------------------------------------------------------------

ANALYSIS_PROMPT = """You moderate a live chat. Analyse the user's message and decide:
1. whether it mentions a private messaging app or asks to move the conversation
   private (Instagram, Snapchat, WhatsApp, Telegram, Discord, DMs...);
2. whether it contains insults or inappropriate content;
3. whether it should be moderated.
Answer with the JSON object described by the response schema and nothing else."""

COMMAND_PROMPT = """The chat administrator gives you a command. Reply briefly and list the
actions needed to carry it out. Available actions: approve_message,
reject_message, delete_message (need messageId), close_chat, open_chat,
set_timer (minutes, 0 clears), mute_user (handle and minutes >= 1),
send_event and send_warning (content, at most 500 characters).
Use only message ids and handles present in the context. Nothing runs until
the administrator confirms your plan."""


def _response_format(name: str, schema: Dict[str, Any]) -> ResponseFormatJSONSchema:
    return ResponseFormatJSONSchema(
        type="json_schema",
        json_schema={"name": name, "strict": True, "schema": schema},
    )


class OpenAICompatibleProvider(AIProvider):
    """
    Provider backed by an OpenAI compatible chat completions API.

    Args:
        settings: Bot settings holding base URL, model name, timeout and persona prompt.
        client: Optional pre-built client, injectable for tests.
    """

    def __init__(self, settings: AISettings, client: AsyncOpenAI | None = None) -> None:
        self._client = client or AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.request_timeout,
        )
        self._model_name = settings.model_name
        self._persona = settings.system_prompt
        logger.info(
            "[AI PROVIDER] Initialized with base_url=%s, model=%s",
            settings.base_url,
            self._model_name,
        )

    def _system_prompt(self, task_prompt: str) -> str:
        return f"{self._persona.strip()}\n\n{task_prompt}" if self._persona else task_prompt

    async def _complete(
        self,
        messages: List[ChatCompletionMessageParam],
        response_format: ResponseFormatJSONSchema | None = None,
    ) -> str | None:
        try:
            if response_format is None:
                response = await self._client.chat.completions.create(
                    model=self._model_name,
                    messages=messages,
                )
            else:
                response = await self._client.chat.completions.create(
                    model=self._model_name,
                    messages=messages,
                    response_format=response_format,
                )
        except Exception as exc:
            logger.error("[AI PROVIDER] API request failed: %s", exc)
            return None
        return response.choices[0].message.content or ""

    async def analyze_message(self, content: str, sender_role: Role) -> MessageAnalysis:
        raw = await self._complete(
            [
                {"role": "system", "content": self._system_prompt(ANALYSIS_PROMPT)},
                {"role": "user", "content": content},
            ],
            _response_format("message_analysis", bot_parsing.ANALYSIS_SCHEMA),
        )
        if raw is None:
            return MessageAnalysis()
        analysis = bot_parsing.parse_analysis(raw)
        logger.debug("[AI PROVIDER] Verdict for %s message: %s", sender_role, analysis)
        return analysis

    async def plan_command(self, command: str, context: Mapping[str, Any]) -> BotReply:
        user_prompt = (
            f"Context:\n{json.dumps(dict(context), ensure_ascii=False, indent=2)}\n\n"
            f"Command:\n{command}"
        )
        raw = await self._complete(
            [
                {"role": "system", "content": self._system_prompt(COMMAND_PROMPT)},
                {"role": "user", "content": user_prompt},
            ],
            _response_format("command_plan", bot_parsing.REPLY_SCHEMA),
        )
        if raw is None:
            return BotReply()
        return bot_parsing.parse_reply(raw)

    async def respond(self, content: str, sender_role: Role) -> str:
        audience = "the administrator" if is_admin(sender_role) else "a regular user"
        raw = await self._complete(
            [
                {"role": "system", "content": self._system_prompt(f"You are answering {audience}.")},
                {"role": "user", "content": content},
            ]
        )
        return (raw or "").strip()

    async def close(self) -> None:
        await self._client.close()


# --------------------------------------------------------------------------
# Offline keyword backend
# --------------------------------------------------------------------------

PRIVATE_MESSAGING_PATTERN = re.compile(
    r"\b(insta|instagram|snap|snapchat|whatsapp|telegram|discord|messenger|dms?|pms?|private message)\b",
    re.IGNORECASE,
)
INSULT_PATTERN = re.compile(r"\b(idiot|moron|stupid|jerk|loser|dumbass)\b", re.IGNORECASE)

MUTE_COMMAND = re.compile(r"^mute\s+(?P<handle>\S+)(?:\s+(?P<minutes>\d+))?", re.IGNORECASE)
TIMER_COMMAND = re.compile(r"^(?:timer|close in)\s+(?P<minutes>\d+)", re.IGNORECASE)
DEFAULT_MUTE_MINUTES = 5


class KeywordProvider(AIProvider):
    """Offline provider: keyword verdicts and a small fixed command grammar.

    Commands understood (case-insensitive):
    ``close``, ``open``, ``timer <minutes>``, ``mute <handle> [minutes]``,
    ``approve all``, ``reject all``, ``announce <text>``, ``warn <text>``.
    """

    async def analyze_message(self, content: str, sender_role: Role) -> MessageAnalysis:
        private = PRIVATE_MESSAGING_PATTERN.search(content) is not None
        insults = INSULT_PATTERN.search(content) is not None
        if private:
            suggestion = "Close the chat: private messaging mention detected"
        elif insults:
            suggestion = "Block the message: insult detected"
        else:
            suggestion = None
        return MessageAnalysis(
            contains_private_messaging=private,
            contains_insults=insults,
            should_moderate=private or insults,
            suggested_action=suggestion,
        )

    async def plan_command(self, command: str, context: Mapping[str, Any]) -> BotReply:
        text = command.strip()
        lowered = text.lower()
        pending = [str(mid) for mid in context.get("pendingMessageIds", [])]
        actions: List[BotAction] = []

        if lowered in ("close", "close chat"):
            actions.append(BotAction(BotActionType.CLOSE_CHAT, reason="Requested by admin"))
        elif lowered in ("open", "open chat"):
            actions.append(BotAction(BotActionType.OPEN_CHAT, reason="Requested by admin"))
        elif match := TIMER_COMMAND.match(text):
            actions.append(BotAction(BotActionType.SET_TIMER, minutes=int(match["minutes"])))
        elif match := MUTE_COMMAND.match(text):
            minutes = int(match["minutes"]) if match["minutes"] else DEFAULT_MUTE_MINUTES
            actions.append(BotAction(BotActionType.MUTE_USER, handle=match["handle"], minutes=max(minutes, 1)))
        elif lowered == "approve all":
            actions.extend(BotAction(BotActionType.APPROVE_MESSAGE, message_id=mid) for mid in pending)
        elif lowered == "reject all":
            actions.extend(BotAction(BotActionType.REJECT_MESSAGE, message_id=mid) for mid in pending)
        elif lowered.startswith("announce "):
            content = text[len("announce "):].strip()[: bot_parsing.MAX_ACTION_CONTENT]
            if content:
                actions.append(BotAction(BotActionType.SEND_EVENT, content=content))
        elif lowered.startswith("warn "):
            content = text[len("warn "):].strip()[: bot_parsing.MAX_ACTION_CONTENT]
            if content:
                actions.append(BotAction(BotActionType.SEND_WARNING, content=content))

        if not actions:
            return BotReply(reply="I did not understand that command.")
        return BotReply(reply="Sure, I'm on it.", actions=actions)

    async def respond(self, content: str, sender_role: Role) -> str:
        if is_admin(sender_role):
            return "On it!"
        return "Message received."


def create_provider(settings: AISettings) -> AIProvider:
    """Return the provider selected by ``ai_settings.provider``."""
    if settings.provider == "openai":
        return OpenAICompatibleProvider(settings)
    if settings.provider != "keyword":
        logger.warning("[AI PROVIDER] Unknown provider '%s', using keyword provider", settings.provider)
    return KeywordProvider()
