"""Schemas and parsing for structured moderation bot responses."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import jsonschema
from jsonschema import ValidationError

from modchat.datatypes.action_datatypes import (
    MESSAGE_ACTIONS,
    BotAction,
    BotActionType,
    BotReply,
    MessageAnalysis,
)
from modchat.util.logger import get_logger

logger = get_logger("bot_parsing")

MAX_ACTION_CONTENT = 500

ANALYSIS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "containsPrivateMessaging": {"type": "boolean"},
        "containsInsults": {"type": "boolean"},
        "shouldModerate": {"type": "boolean"},
        "suggestedAction": {"type": ["string", "null"]},
    },
    "required": ["containsPrivateMessaging", "containsInsults", "shouldModerate", "suggestedAction"],
    "additionalProperties": False,
}

ACTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "enum": [a.value for a in BotActionType]},
        "messageId": {"type": ["string", "null"]},
        "handle": {"type": ["string", "null"]},
        "minutes": {"type": "integer", "minimum": 0},
        "content": {"type": "string"},
        "reason": {"type": "string"},
    },
    "required": ["action", "messageId", "handle", "minutes", "content", "reason"],
    "additionalProperties": False,
}

REPLY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "reply": {"type": "string"},
        "actions": {"type": "array", "items": ACTION_SCHEMA},
    },
    "required": ["reply", "actions"],
    "additionalProperties": False,
}


def _extract_json_payload(raw: str) -> Any:
    """Extract JSON object from raw text using json.loads()."""
    try:
        return json.loads(raw.strip())
    except json.JSONDecodeError as exc:
        logger.warning("[EXTRACT] Parsing failed: %s", exc)
        raise ValueError("Failed to extract JSON payload") from exc


def _validated(raw: str, schema: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        payload = _extract_json_payload(raw)
    except ValueError:
        return None

    if not isinstance(payload, dict):
        logger.error("[PARSE] Payload is not a dict, got %s", type(payload))
        return None

    try:
        jsonschema.validate(instance=payload, schema=schema)
    except ValidationError as exc:
        logger.error("[PARSE] Schema validation failed: %s", exc.message)
        return None
    return payload


def parse_analysis(raw: str) -> MessageAnalysis:
    """Parse a verdict; anything invalid yields the empty verdict."""
    payload = _validated(raw, ANALYSIS_SCHEMA)
    if payload is None:
        return MessageAnalysis()

    suggested = str(payload.get("suggestedAction") or "").strip()
    return MessageAnalysis(
        contains_private_messaging=payload["containsPrivateMessaging"],
        contains_insults=payload["containsInsults"],
        should_moderate=payload["shouldModerate"],
        suggested_action=suggested or None,
    )


def build_action(item: Dict[str, Any]) -> Optional[BotAction]:
    """Turn one validated action item into a `BotAction`, or None if it lacks its target."""
    action_type = BotActionType(item["action"])
    action = BotAction(
        action=action_type,
        message_id=(item.get("messageId") or "").strip() or None,
        handle=(item.get("handle") or "").strip() or None,
        minutes=int(item.get("minutes") or 0),
        content=str(item.get("content") or "").strip(),
        reason=str(item.get("reason") or "").strip(),
    )

    if action_type in MESSAGE_ACTIONS and not action.message_id:
        return None
    if action_type is BotActionType.MUTE_USER and (not action.handle or action.minutes < 1):
        return None
    if action_type in (BotActionType.SEND_EVENT, BotActionType.SEND_WARNING):
        if not action.content or len(action.content) > MAX_ACTION_CONTENT:
            return None
    return action


def parse_reply(raw: str) -> BotReply:
    """Parse a command plan. Actions missing their target are dropped with a warning."""
    payload = _validated(raw, REPLY_SCHEMA)
    if payload is None:
        return BotReply()

    actions: List[BotAction] = []
    for item in payload["actions"]:
        action = build_action(item)
        if action is None:
            logger.warning("[PARSE] Dropping incomplete action %s", item.get("action"))
            continue
        actions.append(action)

    logger.debug("[PARSE] Parsed reply with %d actions", len(actions))
    return BotReply(reply=payload["reply"].strip(), actions=actions)
