"""Authoritative in-memory chat state."""

from modchat.store.moderation_store import ModerationStore

__all__ = ["ModerationStore"]
