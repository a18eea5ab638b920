"""In-process persistence backend."""

from __future__ import annotations

import copy
from typing import Optional

from modchat.persistence.base import PersistenceBackend, StateDocument


class MemoryBackend(PersistenceBackend):
    """Keeps a deep copy of the last saved document."""

    name = "memory"

    def __init__(self, initial: Optional[StateDocument] = None) -> None:
        self.document: Optional[StateDocument] = copy.deepcopy(initial)
        self.save_count = 0

    async def load(self) -> Optional[StateDocument]:
        return copy.deepcopy(self.document)

    async def save(self, document: StateDocument) -> None:
        self.document = copy.deepcopy(document)
        self.save_count += 1
