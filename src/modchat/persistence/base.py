"""Abstract persistence backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

# {messages[], mutedUsers[], blockedWords[], config, botConfig}
StateDocument = Dict[str, Any]


class PersistenceBackend(ABC):
    """Load/save the full moderation state as one document.

    Saves are last-writer-wins. Implementations raise
    :class:`modchat.errors.PersistenceError` on failure; callers decide
    whether the failure matters.
    """

    name: str = "abstract"

    async def open(self) -> None:
        """Acquire resources. Called once before the first load."""

    async def close(self) -> None:
        """Release resources. Safe to call more than once."""

    @abstractmethod
    async def load(self) -> Optional[StateDocument]:
        """Return the stored document, or None when nothing was saved yet."""

    @abstractmethod
    async def save(self, document: StateDocument) -> None:
        """Replace the stored document."""

    def describe(self) -> str:
        return self.name
