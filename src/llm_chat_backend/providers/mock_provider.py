import asyncio
import random
from collections.abc import AsyncIterator

from loguru import logger

from llm_chat_backend.providers.common import last_user_text

_STARTERS = (
    "I understand your question. Based on the context, ",
    "Let me analyze that for you. ",
    "That's an interesting question. Here's what I think: ",
    "I can help you with that. ",
    "From my analysis, ",
)


class MockProvider:
    """Offline stand-in that echoes the question back in small pieces."""

    def __init__(self, *, delay_seconds: float = 0.01, piece_size: int = 3, rng: random.Random | None = None):
        self._delay_seconds = delay_seconds
        self._piece_size = max(1, piece_size)
        self._rng = rng or random.Random()

    def build_response(self, messages: list[dict]) -> str:
        starter = self._rng.choice(_STARTERS)
        return f'{starter}Your message was "{last_user_text(messages)}"...'

    async def stream_text(self, messages: list[dict], max_tokens: int) -> AsyncIterator[str]:
        response = self.build_response(messages)
        logger.debug(f"Mock response: {len(response)} chars, max_tokens={max_tokens}")
        for i in range(0, len(response), self._piece_size):
            yield response[i : i + self._piece_size]
            if self._delay_seconds > 0:
                await asyncio.sleep(self._delay_seconds)
