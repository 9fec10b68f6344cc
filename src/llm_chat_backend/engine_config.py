from dataclasses import dataclass

from llm_chat_backend.errors import ConfigError


@dataclass(frozen=True)
class ChatEngineConfig:
    max_context_tokens: int = 16_000
    target_context_tokens: int = 12_000
    max_response_tokens: int = 1_000
    chunk_size: int = 50
    chunk_queue_size: int = 16

    def __post_init__(self) -> None:
        if self.target_context_tokens >= self.max_context_tokens:
            raise ConfigError(
                f"target_context_tokens ({self.target_context_tokens}) must be lower than "
                f"max_context_tokens ({self.max_context_tokens})"
            )
        if self.target_context_tokens <= 0:
            raise ConfigError("target_context_tokens must be positive")
        if self.max_response_tokens <= 0:
            raise ConfigError("max_response_tokens must be positive")
        if self.chunk_size < 1:
            raise ConfigError("chunk_size must be at least 1")
        if self.chunk_queue_size < 1:
            raise ConfigError("chunk_queue_size must be at least 1")
