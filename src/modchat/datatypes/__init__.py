"""
Typed data structures for Modchat.

- **chat_datatypes.py**: Roles, users, messages, chat configuration, mutes,
  blocked words and typing entries, with their camelCase wire encoding.
- **event_datatypes.py**: Client and server event type names.
- **action_datatypes.py**: Structured contract between the moderation bot and
  its AI provider (analysis verdicts, action intents, proposals).
"""
