"""Local JSON file persistence backend."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Optional

from modchat.errors import PersistenceError
from modchat.persistence.base import PersistenceBackend, StateDocument
from modchat.util.logger import get_logger

logger = get_logger("file_backend")


class JsonFileBackend(PersistenceBackend):
    """Stores the document as pretty-printed JSON on disk.

    Writes go to a sibling temporary file that is then renamed over the
    target, so a crash mid-write never leaves a truncated document.
    Blocking file I/O runs in a worker thread.
    """

    name = "file"

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def describe(self) -> str:
        return f"file:{self.path}"

    async def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> Optional[StateDocument]:
        if not self.path.exists():
            return None
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise PersistenceError(f"{self.path} does not contain a JSON object")
        return data

    def _write(self, document: StateDocument) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)

    async def load(self) -> Optional[StateDocument]:
        try:
            return await asyncio.to_thread(self._read)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read {self.path}: {exc}") from exc

    async def save(self, document: StateDocument) -> None:
        try:
            await asyncio.to_thread(self._write, document)
        except OSError as exc:
            raise PersistenceError(f"Failed to write {self.path}: {exc}") from exc
        logger.debug("[FILE BACKEND] Saved state to %s", self.path)
