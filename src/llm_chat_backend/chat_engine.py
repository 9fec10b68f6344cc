from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass

from loguru import logger

from llm_chat_backend.engine_config import ChatEngineConfig
from llm_chat_backend.errors import UpstreamError
from llm_chat_backend.memory.models import Message
from llm_chat_backend.memory.session_store import SessionStore, now_ms
from llm_chat_backend.provider import ModelProvider
from llm_chat_backend.truncation import TokenBudgetTruncator, TruncationStrategy

_END = object()


@dataclass(frozen=True)
class _Failure:
    error: Exception


def split_chunks(text: str, size: int) -> Iterator[str]:
    """Split ``text`` left to right into ``size``-character pieces; the last may be shorter."""
    if size < 1:
        raise ValueError(f"chunk size must be at least 1, got {size}")
    for start in range(0, len(text), size):
        yield text[start : start + size]


class StreamingChatEngine:
    """Runs one chat turn: load, truncate, stream, persist.

    No session state is kept between calls. Two turns running against the same
    session at once are not serialized, so their appends may interleave.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        provider: ModelProvider,
        config: ChatEngineConfig,
        truncator: TruncationStrategy | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._config = config
        self._truncator = truncator or TokenBudgetTruncator(config)

    async def chat(self, message: str, session_id: str) -> AsyncIterator[str]:
        """Stream the model's answer to ``message`` as fixed-size chunks.

        Raises SessionNotFoundError before any chunk for an unknown session and
        UpstreamError after the chunks already delivered when the model fails.
        The user message is stored when the turn starts; the answer is stored
        only when the stream completes.
        """
        session = self._store.get_session(session_id)
        submission = self._truncator.truncate(session.messages)
        submission.append({"role": "user", "content": message})

        self._store.append_message(session_id, Message(role="user", content=message, timestamp=now_ms()))
        logger.info(f"Chat turn started: session={session_id}, submitted_messages={len(submission)}")

        queue: asyncio.Queue = asyncio.Queue(maxsize=self._config.chunk_queue_size)
        producer = asyncio.create_task(self._produce(submission, queue))
        producer.add_done_callback(_log_producer_crash)
        parts: list[str] = []
        completed = False
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                if isinstance(item, _Failure):
                    logger.error(f"Model stream failed for session {session_id}: {item.error!r}")
                    raise UpstreamError(str(item.error) or type(item.error).__name__) from item.error
                parts.append(item)
                yield item
            completed = True
        finally:
            if not producer.done():
                producer.cancel()
                await asyncio.wait({producer})
            if not completed:
                logger.warning(
                    f"Chat turn ended early: session={session_id}, "
                    f"{len(parts)} chunks delivered, response not stored"
                )

        response = "".join(parts)
        self._store.append_message(session_id, Message(role="assistant", content=response, timestamp=now_ms()))
        logger.info(f"Chat turn completed: session={session_id}, chunks={len(parts)}, chars={len(response)}")

    async def _produce(self, submission: list[dict], queue: asyncio.Queue) -> None:
        # Unless cancelled, ends with exactly one terminal item on the queue.
        try:
            await self._pump(submission, queue)
        except Exception as ex:
            await queue.put(_Failure(ex))
        else:
            await queue.put(_END)

    async def _pump(self, submission: list[dict], queue: asyncio.Queue) -> None:
        fragments = self._provider.stream_text(submission, self._config.max_response_tokens)
        try:
            async for fragment in fragments:
                for chunk in split_chunks(fragment, self._config.chunk_size):
                    await queue.put(chunk)
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()


def _log_producer_crash(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.opt(exception=task.exception()).error("Chat producer stopped unexpectedly")
