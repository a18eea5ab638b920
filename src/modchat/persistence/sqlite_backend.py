"""
SQLite persistence backend.

One long-lived aiosqlite connection holds a single-row ``chat_state`` table
whose ``document`` column is the JSON state document. WAL mode keeps the
occasional save from blocking readers.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import aiosqlite

from modchat.errors import PersistenceError
from modchat.persistence.base import PersistenceBackend, StateDocument
from modchat.util.logger import get_logger

logger = get_logger("sqlite_backend")

_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",    # safe with WAL; faster than FULL
]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    document TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

_UPSERT = """
INSERT INTO chat_state (id, document, updated_at)
VALUES (1, ?, CURRENT_TIMESTAMP)
ON CONFLICT(id) DO UPDATE SET document = excluded.document, updated_at = CURRENT_TIMESTAMP
"""


class SQLiteBackend(PersistenceBackend):
    """Stores the document in a single SQLite row."""

    name = "sqlite"

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._conn: aiosqlite.Connection | None = None

    def describe(self) -> str:
        return f"sqlite:{self.path}"

    async def open(self) -> None:
        if self._conn is not None:
            logger.warning("[SQLITE BACKEND] open() called but connection already exists; ignoring")
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await aiosqlite.connect(self.path)
            for pragma in _PRAGMAS:
                await self._conn.execute(pragma)
            await self._conn.execute(_SCHEMA)
            await self._conn.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to open {self.path}: {exc}") from exc
        logger.info("[SQLITE BACKEND] Opened connection to %s", self.path)

    async def close(self) -> None:
        if self._conn is None:
            return
        try:
            await self._conn.close()
        finally:
            self._conn = None
            logger.info("[SQLITE BACKEND] Connection closed")

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("SQLite backend is not open")
        return self._conn

    async def load(self) -> Optional[StateDocument]:
        try:
            async with self.connection.execute("SELECT document FROM chat_state WHERE id = 1") as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to read chat state: {exc}") from exc

        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Stored chat state is not valid JSON: {exc}") from exc

    async def save(self, document: StateDocument) -> None:
        conn = self.connection
        try:
            await conn.execute(_UPSERT, (json.dumps(document, ensure_ascii=False),))
            await conn.commit()
        except aiosqlite.Error as exc:
            await conn.rollback()
            raise PersistenceError(f"Failed to write chat state: {exc}") from exc
