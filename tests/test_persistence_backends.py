import base64
import json
from pathlib import Path

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from modchat.errors import PersistenceConfigurationError, PersistenceError
from modchat.persistence import create_backend
from modchat.persistence.file_backend import JsonFileBackend
from modchat.persistence.github_backend import GitHubBackend
from modchat.persistence.memory_backend import MemoryBackend
from modchat.persistence.sqlite_backend import SQLiteBackend

DOCUMENT = {
    "messages": [{"id": "m1", "content": "héllo"}],
    "mutedUsers": [],
    "blockedWords": [{"word": "spam", "addedAt": 1}],
    "config": {"enabled": True, "cooldown": 0},
    "botConfig": {"enabled": True},
}


@pytest.mark.asyncio
async def test_memory_backend_returns_copies() -> None:
    backend = MemoryBackend()
    assert await backend.load() is None

    await backend.save(DOCUMENT)
    loaded = await backend.load()
    loaded["messages"].clear()

    assert (await backend.load())["messages"] == DOCUMENT["messages"]
    assert backend.save_count == 1


@pytest.mark.asyncio
async def test_file_backend_round_trip(tmp_path: Path) -> None:
    backend = JsonFileBackend(tmp_path / "nested" / "chat-storage.json")
    await backend.open()

    assert await backend.load() is None
    await backend.save(DOCUMENT)

    assert await backend.load() == DOCUMENT
    assert not (tmp_path / "nested" / "chat-storage.json.tmp").exists()


@pytest.mark.asyncio
async def test_file_backend_rejects_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "chat-storage.json"
    path.write_text("{not json", encoding="utf-8")
    backend = JsonFileBackend(path)

    with pytest.raises(PersistenceError):
        await backend.load()


@pytest.mark.asyncio
async def test_sqlite_backend_keeps_single_row(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "chat.db")
    await backend.open()
    try:
        assert await backend.load() is None
        await backend.save(DOCUMENT)
        await backend.save({**DOCUMENT, "messages": []})

        assert (await backend.load())["messages"] == []
        async with backend.connection.execute("SELECT COUNT(*) FROM chat_state") as cursor:
            (count,) = await cursor.fetchone()
        assert count == 1
    finally:
        await backend.close()


@pytest.mark.asyncio
async def test_sqlite_backend_requires_open(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "chat.db")

    with pytest.raises(PersistenceError):
        await backend.load()


def test_github_backend_requires_token() -> None:
    with pytest.raises(PersistenceConfigurationError):
        GitHubBackend(token=None, repo="owner/repo")
    with pytest.raises(PersistenceConfigurationError):
        GitHubBackend(token="t", repo="")


def test_factory_builds_backends(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    assert isinstance(create_backend({"backend": "memory"}), MemoryBackend)
    assert isinstance(create_backend({"backend": "file", "path": str(tmp_path / "s.json")}), JsonFileBackend)
    assert isinstance(create_backend({"backend": "sqlite", "path": str(tmp_path / "s.db")}), SQLiteBackend)

    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    with pytest.raises(PersistenceConfigurationError):
        create_backend({"backend": "github", "github": {"repo": "owner/repo"}})

    monkeypatch.setenv("GITHUB_TOKEN", "secret")
    assert isinstance(create_backend({"backend": "github", "github": {"repo": "owner/repo"}}), GitHubBackend)

    with pytest.raises(PersistenceConfigurationError):
        create_backend({"backend": "redis"})


class FakeContentsAPI:
    """Minimal GitHub contents endpoint keeping one file and its SHA."""

    def __init__(self) -> None:
        self.content: str | None = None
        self.sha = 0
        self.puts: list[dict] = []
        self.conflict_once = False

    async def get(self, request: web.Request) -> web.Response:
        assert request.headers["Authorization"] == "token secret"
        if self.content is None:
            return web.json_response({"message": "Not Found"}, status=404)
        return web.json_response({"sha": f"sha{self.sha}", "content": self.content})

    async def put(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.puts.append(body)
        if self.conflict_once:
            self.conflict_once = False
            return web.json_response({"message": "sha mismatch"}, status=409)
        if self.content is not None and body.get("sha") != f"sha{self.sha}":
            return web.json_response({"message": "sha mismatch"}, status=409)
        self.content = body["content"]
        self.sha += 1
        return web.json_response({"content": {"sha": f"sha{self.sha}"}}, status=201)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/repos/owner/repo/contents/chat-storage.json", self.get)
        app.router.add_put("/repos/owner/repo/contents/chat-storage.json", self.put)
        return app


@pytest.mark.asyncio
async def test_github_backend_round_trip_tracks_sha() -> None:
    api = FakeContentsAPI()
    async with TestServer(api.app()) as server:
        backend = GitHubBackend(token="secret", repo="owner/repo", api_base=str(server.make_url("")))
        await backend.open()
        try:
            assert await backend.load() is None
            await backend.save(DOCUMENT)
            await backend.save({**DOCUMENT, "messages": []})

            assert "sha" not in api.puts[0]
            assert api.puts[1]["sha"] == "sha1"
            stored = json.loads(base64.b64decode(api.content).decode("utf-8"))
            assert stored["messages"] == []
            assert (await backend.load())["blockedWords"] == DOCUMENT["blockedWords"]
        finally:
            await backend.close()


@pytest.mark.asyncio
async def test_github_backend_retries_once_on_conflict() -> None:
    api = FakeContentsAPI()
    async with TestServer(api.app()) as server:
        backend = GitHubBackend(token="secret", repo="owner/repo", api_base=str(server.make_url("")))
        await backend.open()
        try:
            await backend.save(DOCUMENT)
            api.conflict_once = True

            await backend.save({**DOCUMENT, "mutedUsers": [{"username": "bob", "mutedUntil": 5}]})

            assert len(api.puts) == 3
            assert api.sha == 2
        finally:
            await backend.close()
