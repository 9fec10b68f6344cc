from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable


@runtime_checkable
class ModelProvider(Protocol):
    def stream_text(self, messages: list[dict], max_tokens: int) -> AsyncIterator[str]:
        """Stream the model's reply to ``messages`` as incremental text fragments.

        ``messages`` are ``{"role", "content"}`` dicts in chronological order,
        ending with the user turn. ``max_tokens`` caps the response length.
        """
        ...


def create_provider(provider_name: str, api_key: str, model: str) -> ModelProvider:
    """Factory: create a ModelProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from llm_chat_backend.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key, model)
    if name == "openai":
        from llm_chat_backend.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key, model)
    if name == "mock":
        from llm_chat_backend.providers.mock_provider import MockProvider
        return MockProvider()
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai', 'mock'")
