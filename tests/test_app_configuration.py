from pathlib import Path

import pytest
import yaml

from modchat.configuration.ai_settings import AISettings
from modchat.configuration.app_configuration import AppConfig, resolve_config_path


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "app_config.yml"


def test_app_config_reload_parses_yaml(config_path: Path) -> None:
    config_payload = {
        "server": {"host": "127.0.0.1", "port": 8080},
        "chat": {"max_message_length": 200},
        "intervals": {"heartbeat_seconds": 10, "save_debounce_seconds": 0.5},
        "persistence": {"backend": "sqlite", "path": "./data/chat.db"},
        "ai_settings": {
            "enabled": True,
            "provider": "OpenAI",
            "base_url": "http://localhost:8000/v1",
            "model_name": "test-model",
        },
    }
    config_path.write_text(yaml.safe_dump(config_payload), encoding="utf-8")

    config = AppConfig(config_path)

    assert config.host == "127.0.0.1"
    assert config.port == 8080
    assert config.max_message_length == 200
    assert config.heartbeat_interval == pytest.approx(10.0)
    assert config.save_debounce == pytest.approx(0.5)
    assert config.persistence == {"backend": "sqlite", "path": "./data/chat.db"}

    ai_settings = config.ai_settings
    assert ai_settings.enabled is True
    assert ai_settings.provider == "openai"
    assert ai_settings.base_url == "http://localhost:8000/v1"
    assert ai_settings.model_name == "test-model"


def test_app_config_missing_file_returns_defaults(tmp_path: Path) -> None:
    config = AppConfig(tmp_path / "does_not_exist.yml")

    assert config.data == {}
    assert config.port == 5000
    assert config.max_message_length == 1000
    assert config.max_broadcast_length == 500
    assert config.max_flash_seconds == 60
    assert config.closure_check_interval == pytest.approx(1.0)
    assert config.typing_stale_ms == 5000
    assert config.credentials == {}
    assert config.ai_settings.enabled is False


def test_app_config_ignores_non_mapping_sections(config_path: Path) -> None:
    config_path.write_text("server: [1, 2]\ncredentials: nope\n", encoding="utf-8")

    config = AppConfig(config_path)

    assert config.port == 5000
    assert config.credentials == {}


def test_app_config_reload_picks_up_changes(config_path: Path) -> None:
    config_path.write_text("server:\n  port: 1\n", encoding="utf-8")
    config = AppConfig(config_path)
    config_path.write_text("server:\n  port: 2\n", encoding="utf-8")

    config.reload()

    assert config.port == 2


def test_resolve_config_path_honours_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MODCHAT_CONFIG", str(tmp_path / "custom.yml"))
    assert resolve_config_path() == (tmp_path / "custom.yml").resolve()

    monkeypatch.delenv("MODCHAT_CONFIG")
    assert resolve_config_path().name == "app_config.yml"


def test_ai_settings_defaults_and_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MODCHAT_AI_API_KEY", raising=False)
    settings = AISettings({"extra_field": "value"})

    assert settings.provider == "keyword"
    assert settings.base_url is None
    assert settings.model_name == "mistral"
    assert settings.bot_handle == "modbot"
    assert settings.system_prompt == ""
    assert settings.api_key == "not-needed"
    assert settings.get("extra_field") == "value"
    assert settings.as_dict() == {"extra_field": "value"}

    monkeypatch.setenv("MODCHAT_AI_API_KEY", "sk-test")
    assert settings.api_key == "sk-test"


def test_shipped_config_is_valid() -> None:
    shipped = Path(__file__).parent.parent / "config" / "app_config.yml"

    config = AppConfig(shipped)

    assert config.port == 5000
    assert set(config.credentials) == {"admin", "alice", "bob"}
    assert config.ai_settings.provider == "keyword"
