"""
Pytest configuration and fixtures for Modchat tests.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from modchat.auth.credentials import CredentialAuthority, hash_secret  # noqa: E402
from modchat.persistence.memory_backend import MemoryBackend  # noqa: E402
from modchat.server.connection_registry import Connection, ConnectionRegistry  # noqa: E402
from modchat.server.protocol_handler import SessionProtocolHandler  # noqa: E402
from modchat.store.moderation_store import ModerationStore  # noqa: E402

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now: int = START_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeSocket:
    """Stand-in for aiohttp's WebSocketResponse that records every frame."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.pings = 0

    async def send_str(self, text: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(json.loads(text))

    async def ping(self, message: bytes = b"") -> None:
        self.pings += 1

    async def close(self, **kwargs: Any) -> bool:
        self.closed = True
        return True

    def events(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [e for e in self.sent if event_type is None or e["type"] == event_type]

    def last(self, event_type: str) -> Dict[str, Any]:
        matching = self.events(event_type)
        assert matching, f"no {event_type} event received; got {[e['type'] for e in self.sent]}"
        return matching[-1]

    def clear(self) -> None:
        self.sent.clear()


CREDENTIAL_TABLE = {
    "admin": {"role": "admin", "password_sha256": hash_secret("admin-pw")},
    "alice": {"role": "regular", "password_sha256": hash_secret("alice-pw")},
    "bob": {"role": "regular", "password_sha256": hash_secret("bob-pw")},
}


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture()
def store(backend: MemoryBackend, clock: FakeClock) -> ModerationStore:
    return ModerationStore(backend, clock=clock, save_delay=0.01)


@pytest.fixture()
def credentials() -> CredentialAuthority:
    return CredentialAuthority.from_config(CREDENTIAL_TABLE)


@pytest.fixture()
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture()
def handler(store: ModerationStore, registry: ConnectionRegistry, credentials: CredentialAuthority) -> SessionProtocolHandler:
    return SessionProtocolHandler(store, registry, credentials)


async def connect(handler: SessionProtocolHandler, handle: Optional[str] = None, **extra: Any) -> tuple[Connection, FakeSocket]:
    """Open a fake socket and, when ``handle`` is given, authenticate it."""
    socket = FakeSocket()
    conn = handler.registry.register(socket)
    if handle is not None:
        await handler.handle_event(conn, {"type": "auth", "handle": handle, **extra})
    return conn, socket
