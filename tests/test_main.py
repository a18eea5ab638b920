"""Tests for the entry point wiring."""

import hashlib
import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import yaml

from modchat import main as main_module
from modchat.configuration.app_configuration import AppConfig
from modchat.errors import CredentialConfigurationError, PersistenceConfigurationError
from modchat.persistence.memory_backend import MemoryBackend


def _write_config(tmp_path: Path, **sections) -> AppConfig:
    payload = {
        "persistence": {"backend": "memory"},
        "credentials": {
            "admin": {"role": "admin", "password_sha256": hashlib.sha256(b"pw").hexdigest()},
        },
        "ai_settings": {"enabled": True, "provider": "keyword", "bot_handle": "helper"},
    }
    payload.update(sections)
    path = tmp_path / "app_config.yml"
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")
    return AppConfig(path)


class TestResolveBaseDir:
    """resolve_base_dir."""

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MODCHAT_HOME", str(tmp_path))

        assert main_module.resolve_base_dir() == tmp_path.resolve()

    def test_source_checkout(self, monkeypatch):
        monkeypatch.delenv("MODCHAT_HOME", raising=False)

        assert (main_module.resolve_base_dir() / "src" / "modchat").is_dir()


class TestBuildServer:
    """build_server."""

    def test_wires_components(self, tmp_path):
        config = _write_config(tmp_path, chat={"max_message_length": 50})

        server = main_module.build_server(config)

        assert isinstance(server.store.backend, MemoryBackend)
        assert server.bot.user.username == "helper"
        assert server.handler.limits.max_message_length == 50
        assert server.handler.registry is server.registry

    def test_bot_disabled(self, tmp_path):
        config = _write_config(tmp_path, ai_settings={"enabled": False})

        assert main_module.build_server(config).bot is None

    def test_missing_token_is_fatal(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        config = _write_config(tmp_path, persistence={"backend": "github", "github": {"repo": "o/r"}})

        with pytest.raises(PersistenceConfigurationError):
            main_module.build_server(config)

    def test_missing_credentials_is_fatal(self, tmp_path):
        config = _write_config(tmp_path, credentials={})

        with pytest.raises(CredentialConfigurationError):
            main_module.build_server(config)


class TestAsyncMain:
    """async_main exit codes."""

    @pytest.mark.asyncio
    async def test_configuration_error_returns_one(self, tmp_path, monkeypatch):
        _write_config(tmp_path, credentials={})
        monkeypatch.setenv("MODCHAT_HOME", str(tmp_path))
        monkeypatch.setenv("MODCHAT_CONFIG", str(tmp_path / "app_config.yml"))
        monkeypatch.chdir(tmp_path)

        with patch.object(main_module, "run_server", new_callable=AsyncMock) as run_server:
            assert await main_module.async_main() == 1

        run_server.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_runs_server_with_configured_address(self, tmp_path, monkeypatch):
        _write_config(tmp_path, server={"host": "127.0.0.1", "port": 6123})
        monkeypatch.setenv("MODCHAT_HOME", str(tmp_path))
        monkeypatch.setenv("MODCHAT_CONFIG", str(tmp_path / "app_config.yml"))
        monkeypatch.chdir(tmp_path)

        with patch.object(main_module, "run_server", new_callable=AsyncMock) as run_server:
            assert await main_module.async_main() == 0

        _, host, port = run_server.await_args.args
        assert (host, port) == ("127.0.0.1", 6123)


def test_main_returns_async_main_code(monkeypatch):
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    with patch.object(main_module, "async_main", new_callable=AsyncMock, return_value=1):
        assert main_module.main() == 1
