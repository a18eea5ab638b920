import json

import pytest

from modchat.bot.bot_parsing import build_action, parse_analysis, parse_reply
from modchat.datatypes.action_datatypes import BotActionType


def _action(**overrides):
    item = {
        "action": "close_chat",
        "messageId": None,
        "handle": None,
        "minutes": 0,
        "content": "",
        "reason": "",
    }
    item.update(overrides)
    return item


def test_parse_analysis_valid_payload() -> None:
    raw = json.dumps(
        {
            "containsPrivateMessaging": True,
            "containsInsults": False,
            "shouldModerate": True,
            "suggestedAction": "  Close the chat  ",
        }
    )

    analysis = parse_analysis(raw)

    assert analysis.contains_private_messaging is True
    assert analysis.should_moderate is True
    assert analysis.suggested_action == "Close the chat"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        json.dumps({"containsPrivateMessaging": True}),
        json.dumps(
            {
                "containsPrivateMessaging": "yes",
                "containsInsults": False,
                "shouldModerate": False,
                "suggestedAction": None,
            }
        ),
    ],
)
def test_parse_analysis_invalid_payload_is_empty_verdict(raw: str) -> None:
    analysis = parse_analysis(raw)

    assert analysis.contains_private_messaging is False
    assert analysis.contains_insults is False
    assert analysis.should_moderate is False
    assert analysis.suggested_action is None


def test_parse_reply_keeps_complete_actions() -> None:
    raw = json.dumps(
        {
            "reply": " Muting bob. ",
            "actions": [
                _action(action="mute_user", handle="bob", minutes=10, reason="spam"),
                _action(action="reject_message", messageId="m1"),
                _action(action="set_timer", minutes=15),
            ],
        }
    )

    reply = parse_reply(raw)

    assert reply.reply == "Muting bob."
    assert [a.action for a in reply.actions] == [
        BotActionType.MUTE_USER,
        BotActionType.REJECT_MESSAGE,
        BotActionType.SET_TIMER,
    ]
    assert reply.actions[0].handle == "bob"
    assert reply.actions[0].minutes == 10


def test_parse_reply_drops_actions_without_target() -> None:
    raw = json.dumps(
        {
            "reply": "ok",
            "actions": [
                _action(action="approve_message"),
                _action(action="mute_user", handle="bob", minutes=0),
                _action(action="send_event", content="   "),
                _action(action="send_warning", content="x" * 501),
                _action(action="open_chat"),
            ],
        }
    )

    reply = parse_reply(raw)

    assert [a.action for a in reply.actions] == [BotActionType.OPEN_CHAT]


def test_parse_reply_rejects_unknown_action() -> None:
    raw = json.dumps({"reply": "ok", "actions": [_action(action="ban_forever")]})

    reply = parse_reply(raw)

    assert reply.reply == ""
    assert reply.actions == []


def test_parse_reply_rejects_extra_fields() -> None:
    raw = json.dumps({"reply": "ok", "actions": [], "mood": "happy"})

    assert parse_reply(raw).reply == ""


def test_build_action_strips_target_fields() -> None:
    action = build_action(_action(action="delete_message", messageId="  m9 ", reason=" dup "))

    assert action.message_id == "m9"
    assert action.reason == "dup"
