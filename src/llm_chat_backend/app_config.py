from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from llm_chat_backend.engine_config import ChatEngineConfig
from llm_chat_backend.errors import ConfigError

CONFIG_PATH_ENV = "LLM_CHAT_CONFIG"
MOCK_MODE_ENV = "LLM_CHAT_MOCK_MODE"

_API_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str
    mock_mode: bool


@dataclass
class AppConfig:
    provider_name: str
    model: str
    mock_mode: bool
    max_context_tokens: int
    target_context_tokens: int
    max_response_tokens: int
    chunk_size: int
    chunk_queue_size: int
    db_path: str
    host: str
    port: int
    log_level: str
    log_consumers: list | None

    def engine_config(self) -> ChatEngineConfig:
        return ChatEngineConfig(
            max_context_tokens=self.max_context_tokens,
            target_context_tokens=self.target_context_tokens,
            max_response_tokens=self.max_response_tokens,
            chunk_size=self.chunk_size,
            chunk_queue_size=self.chunk_queue_size,
        )


def load_json_config(path: str | None = None) -> dict:
    """Read ``config.json`` from the working directory (or ``$LLM_CHAT_CONFIG``).

    A missing file means all defaults.
    """
    config_path = Path(path or os.environ.get(CONFIG_PATH_ENV) or Path.cwd() / "config.json")
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as ex:
        raise ConfigError(f"{config_path} is not valid JSON: {ex}") from ex
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a JSON object")
    return data


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _int(config: dict, key: str, default: int) -> int:
    value = config.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError) as ex:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from ex


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        provider_name=str(config.get("Provider", "anthropic")).strip().lower(),
        model=str(config.get("Model", "claude-sonnet-4-5-20250929")),
        mock_mode=_to_bool(config.get("MockMode"), default=False),
        max_context_tokens=_int(config, "MaxContextTokens", 16_000),
        target_context_tokens=_int(config, "TargetContextTokens", 12_000),
        max_response_tokens=_int(config, "MaxResponseTokens", 1_000),
        chunk_size=_int(config, "ChunkSize", 50),
        chunk_queue_size=_int(config, "ChunkQueueSize", 16),
        db_path=str(config.get("DbPath", ".llm_chat/chat.db")),
        host=str(config.get("Host", "127.0.0.1")),
        port=_int(config, "Port", 7007),
        log_level=str(config.get("LogLevel", "INFO")).upper(),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    env_var = _API_KEY_ENV.get(provider_name, _API_KEY_ENV["anthropic"])
    return RuntimeEnv(
        provider_api_key=os.environ.get(env_var, ""),
        provider_env_var=env_var,
        mock_mode=_to_bool(os.environ.get(MOCK_MODE_ENV), default=False),
    )
