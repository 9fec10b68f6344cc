from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from llm_chat_backend.app_config import AppConfig, RuntimeEnv
from llm_chat_backend.chat_engine import StreamingChatEngine
from llm_chat_backend.errors import ConfigError
from llm_chat_backend.logging_config import setup_logging
from llm_chat_backend.memory import MemoryStore, SessionStore
from llm_chat_backend.provider import ModelProvider, create_provider


@dataclass
class AppRuntime:
    memory_store: MemoryStore
    session_store: SessionStore
    provider: ModelProvider
    engine: StreamingChatEngine
    log_descriptions: list[str]

    def close(self) -> None:
        self.memory_store.close()


def resolve_provider_name(app: AppConfig, env: RuntimeEnv) -> str:
    if app.mock_mode or env.mock_mode:
        return "mock"
    return app.provider_name


def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    engine_config = app.engine_config()

    provider_name = resolve_provider_name(app, env)
    if provider_name != "mock" and not env.provider_api_key:
        raise ConfigError(f"{env.provider_env_var} environment variable is required (or set MockMode).")
    provider = create_provider(provider_name, env.provider_api_key, app.model)

    db_path = Path(app.db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    memory_store = MemoryStore(str(db_path))
    session_store = SessionStore(memory_store)
    session_store.ensure_default_session()

    engine = StreamingChatEngine(store=session_store, provider=provider, config=engine_config)

    return AppRuntime(
        memory_store=memory_store,
        session_store=session_store,
        provider=provider,
        engine=engine,
        log_descriptions=log_descriptions,
    )
