import os
from typing import Any, Dict


class AISettings:
    """Helper exposing typed accessors for the moderation bot configuration.

    This class intentionally provides a minimal, explicit API (`get`,
    `as_dict`, and convenience properties). The API key is never read from
    the YAML file; it comes from the ``MODCHAT_AI_API_KEY`` environment
    variable.
    """

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for `key` or `default` if missing."""
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        """Return the underlying mapping."""
        return self.data

    @property
    def enabled(self) -> bool:
        return bool(self.data.get("enabled", False))

    @property
    def provider(self) -> str:
        """Either ``openai`` for an OpenAI compatible server or ``keyword``."""
        return str(self.data.get("provider", "keyword")).lower()

    @property
    def base_url(self) -> str | None:
        val = self.data.get("base_url")
        return str(val) if val else None

    @property
    def api_key(self) -> str:
        # Local servers (vLLM, Ollama, LM Studio) accept any non-empty key.
        return os.getenv("MODCHAT_AI_API_KEY") or "not-needed"

    @property
    def model_name(self) -> str:
        return str(self.data.get("model_name", "mistral"))

    @property
    def request_timeout(self) -> float:
        return float(self.data.get("request_timeout", 30.0))

    @property
    def bot_handle(self) -> str:
        return str(self.data.get("bot_handle", "modbot"))

    @property
    def system_prompt(self) -> str:
        return str(self.data.get("system_prompt") or "")
