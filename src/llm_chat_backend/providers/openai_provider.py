from collections.abc import AsyncIterator

import openai
from loguru import logger
from tenacity import retry

from llm_chat_backend.providers.common import default_retry_kwargs


class OpenAIProvider:
    def __init__(self, api_key: str, model: str):
        self._client = openai.AsyncOpenAI(api_key=api_key)
        self._model = model

    @retry(**default_retry_kwargs((
        openai.RateLimitError,
        openai.APIConnectionError,
        openai.APITimeoutError,
    )))
    async def _open_stream(self, messages: list[dict], max_tokens: int):
        logger.debug(f"API request: model={self._model}, max_tokens={max_tokens}, messages={len(messages)}")
        return await self._client.chat.completions.create(
            model=self._model,
            max_tokens=max_tokens,
            messages=messages,
            stream=True,
        )

    async def stream_text(self, messages: list[dict], max_tokens: int) -> AsyncIterator[str]:
        """Yield content deltas from a streamed chat completion."""
        stream = await self._open_stream(messages, max_tokens)
        finish_reason: str | None = None
        try:
            async for chunk in stream:
                choice = chunk.choices[0] if chunk.choices else None
                if choice is None:
                    continue
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
                delta = choice.delta
                if delta is not None and delta.content:
                    yield delta.content
        finally:
            await stream.close()

        logger.debug(f"API response: finish_reason={finish_reason}")
