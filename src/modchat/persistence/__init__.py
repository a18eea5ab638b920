"""
Persistence port for Modchat.

The store saves and loads its whole state as one JSON document through a
`PersistenceBackend`. Backends are interchangeable:

- **memory_backend.py**: keeps the document in process (tests, ephemeral runs).
- **file_backend.py**: local JSON file with atomic replace.
- **sqlite_backend.py**: single-row document table in SQLite via aiosqlite.
- **github_backend.py**: file in a GitHub repository through the contents API.

Use `create_backend` to build the backend selected in the app configuration.
"""

from modchat.persistence.base import PersistenceBackend, StateDocument
from modchat.persistence.factory import create_backend

__all__ = ["PersistenceBackend", "StateDocument", "create_backend"]
