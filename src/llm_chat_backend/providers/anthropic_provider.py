from collections.abc import AsyncIterator

import anthropic
from loguru import logger
from tenacity import retry

from llm_chat_backend.providers.common import default_retry_kwargs


class AnthropicProvider:
    def __init__(self, api_key: str, model: str):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model

    @retry(**default_retry_kwargs((
        anthropic.RateLimitError,
        anthropic.APIConnectionError,
        anthropic.APITimeoutError,
    )))
    async def _open_stream(self, messages: list[dict], max_tokens: int):
        logger.debug(f"API request: model={self._model}, max_tokens={max_tokens}, messages={len(messages)}")
        return await self._client.messages.create(
            model=self._model,
            max_tokens=max_tokens,
            messages=messages,
            stream=True,
        )

    async def stream_text(self, messages: list[dict], max_tokens: int) -> AsyncIterator[str]:
        """Yield text deltas from a streamed Messages API call."""
        stream = await self._open_stream(messages, max_tokens)
        input_tokens = 0
        output_tokens = 0
        stop_reason: str | None = None
        try:
            async for event in stream:
                if event.type == "content_block_delta":
                    if event.delta.type == "text_delta" and event.delta.text:
                        yield event.delta.text
                elif event.type == "message_start":
                    input_tokens = event.message.usage.input_tokens
                elif event.type == "message_delta":
                    output_tokens = event.usage.output_tokens
                    stop_reason = event.delta.stop_reason
        finally:
            await stream.close()

        logger.debug(
            f"API response: stop_reason={stop_reason}, "
            f"input_tokens={input_tokens}, output_tokens={output_tokens}"
        )
