from __future__ import annotations
from pathlib import Path
import fcntl
import os
from typing import Any, Dict
import yaml

from modchat.configuration.ai_settings import AISettings
from modchat.util.logger import get_logger

logger = get_logger("app_configuration")


DEFAULT_CONFIG_PATH = Path("./config/app_config.yml")


def resolve_config_path() -> Path:
    """Return ``MODCHAT_CONFIG`` when set, otherwise ``./config/app_config.yml``."""
    if env_path := os.getenv("MODCHAT_CONFIG"):
        return Path(env_path).resolve()
    return DEFAULT_CONFIG_PATH.resolve()


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches the contents of the config file, exposes dictionary-like
    access helpers, and resolves bot settings through :class:`AISettings`.
    Uses fcntl file locks for safe concurrent access across processes.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                # Acquire a shared lock for reading
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    def _section(self, key: str) -> Dict[str, Any]:
        value = self._data.get(key, {})
        return value if isinstance(value, dict) else {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns the raw mapping that was loaded (an empty dict on error).
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping.

        The returned dict is the internal cache. Callers should not mutate it.
        """
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def host(self) -> str:
        return str(self._section("server").get("host", "0.0.0.0"))

    @property
    def port(self) -> int:
        return int(self._section("server").get("port", 5000))

    @property
    def heartbeat_interval(self) -> float:
        """Seconds between heartbeat pings. Default is 30 seconds."""
        return float(self._section("intervals").get("heartbeat_seconds", 30.0))

    @property
    def closure_check_interval(self) -> float:
        """Seconds between closure-timer checks. Default is 1 second."""
        return float(self._section("intervals").get("closure_check_seconds", 1.0))

    @property
    def save_debounce(self) -> float:
        """Quiet window of the debounced saver in seconds. Default is 2 seconds."""
        return float(self._section("intervals").get("save_debounce_seconds", 2.0))

    @property
    def typing_stale_ms(self) -> int:
        return int(self._section("intervals").get("typing_stale_ms", 5000))

    @property
    def max_message_length(self) -> int:
        return int(self._section("chat").get("max_message_length", 1000))

    @property
    def max_broadcast_length(self) -> int:
        """Upper bound for event, warning and flash content."""
        return int(self._section("chat").get("max_broadcast_length", 500))

    @property
    def max_flash_seconds(self) -> int:
        return int(self._section("chat").get("max_flash_seconds", 60))

    @property
    def persistence(self) -> Dict[str, Any]:
        """Return the raw ``persistence`` section handed to the backend factory."""
        return self._section("persistence")

    @property
    def credentials(self) -> Dict[str, Any]:
        return self._section("credentials")

    @property
    def ai_settings(self) -> AISettings:
        """Return the bot settings wrapped in an AISettings helper."""
        return AISettings(self._section("ai_settings"))
