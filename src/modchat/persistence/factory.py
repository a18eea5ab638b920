"""Build the configured persistence backend."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

from modchat.errors import PersistenceConfigurationError
from modchat.persistence.base import PersistenceBackend
from modchat.persistence.file_backend import JsonFileBackend
from modchat.persistence.github_backend import GitHubBackend
from modchat.persistence.memory_backend import MemoryBackend
from modchat.persistence.sqlite_backend import SQLiteBackend


def create_backend(settings: Mapping[str, Any]) -> PersistenceBackend:
    """Return the backend described by the ``persistence`` config section.

    Raises:
        PersistenceConfigurationError: the backend name is unknown or a
            required credential is missing. This is the only fatal boot error.
    """
    kind = str(settings.get("backend", "file")).lower()

    if kind == "memory":
        return MemoryBackend()
    if kind == "file":
        return JsonFileBackend(Path(settings.get("path", "./data/chat-storage.json")))
    if kind == "sqlite":
        return SQLiteBackend(Path(settings.get("path", "./data/chat.db")))
    if kind == "github":
        github = settings.get("github") or {}
        return GitHubBackend(
            token=os.getenv("GITHUB_TOKEN"),
            repo=str(github.get("repo", "")),
            branch=str(github.get("branch", "main")),
            file_path=str(github.get("file", "chat-storage.json")),
        )

    raise PersistenceConfigurationError(f"Unknown persistence backend '{kind}'")
