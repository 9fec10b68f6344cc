"""Server-Sent Events framing for chat turns.

Every event carries one ``data:`` line:

- ``{"chunk": "..."}`` for each piece of the answer,
- ``[DONE]`` once the answer is complete,
- ``{"error": "..."}`` instead of ``[DONE]`` when the turn failed.

The consume side is what the front-end does with the stream: concatenate the
chunks, stop at ``[DONE]``, and fail on an error event.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Literal

from loguru import logger
from sse_starlette.sse import ServerSentEvent

from llm_chat_backend.errors import StreamError

DONE_DATA = "[DONE]"


@dataclass(frozen=True)
class StreamEvent:
    kind: Literal["chunk", "done", "error"]
    text: str = ""


# json.dumps keeps its ASCII escaping: a raw U+2028, U+2029 or U+0085 would end the data line.
def encode_chunk(chunk: str) -> ServerSentEvent:
    return ServerSentEvent(data=json.dumps({"chunk": chunk}))


def encode_done() -> ServerSentEvent:
    return ServerSentEvent(data=DONE_DATA)


def encode_error(message: str) -> ServerSentEvent:
    return ServerSentEvent(data=json.dumps({"error": message}))


def parse_event(data: str) -> StreamEvent:
    if data == DONE_DATA:
        return StreamEvent("done")
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as ex:
        raise StreamError(f"Malformed event payload: {data[:200]!r}") from ex
    if not isinstance(payload, dict):
        raise StreamError(f"Unexpected event payload: {data[:200]!r}")
    if "error" in payload:
        return StreamEvent("error", str(payload["error"]))
    if "chunk" in payload:
        if not isinstance(payload["chunk"], str):
            raise StreamError(f"Chunk payload is not text: {data[:200]!r}")
        return StreamEvent("chunk", payload["chunk"])
    raise StreamError(f"Unrecognized event payload: {data[:200]!r}")


class SSEDecoder:
    """Line-at-a-time SSE parser that returns the data of each completed event."""

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> str | None:
        line = line.rstrip("\r\n")
        if not line:
            return self.flush()
        if line.startswith(":"):
            # comment, e.g. a keep-alive ping
            return None
        field, _, value = line.partition(":")
        if field == "data":
            self._data.append(value[1:] if value.startswith(" ") else value)
        return None

    def flush(self) -> str | None:
        if not self._data:
            return None
        data = "\n".join(self._data)
        self._data.clear()
        return data


class ChatTransportAdapter:
    async def emit(self, chunks: AsyncIterable[str]) -> AsyncIterator[ServerSentEvent]:
        """Frame a chunk stream as events, ending in exactly one terminator or error event."""
        try:
            async for chunk in chunks:
                yield encode_chunk(chunk)
        except Exception as ex:
            logger.error(f"Chat stream failed: {type(ex).__name__}: {ex}")
            yield encode_error(str(ex) or type(ex).__name__)
            return
        finally:
            # Stops the producer when the client goes away mid-stream.
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        yield encode_done()

    async def consume(self, lines: AsyncIterable[str]) -> AsyncIterator[str]:
        """Yield chunk texts from an event stream; raise StreamError on an error event."""
        async for event in self._events(lines):
            if event.kind == "done":
                return
            if event.kind == "error":
                raise StreamError(event.text)
            yield event.text
        raise StreamError("Event stream ended without a terminator")

    async def collect(self, lines: AsyncIterable[str]) -> str:
        return "".join([chunk async for chunk in self.consume(lines)])

    async def _events(self, lines: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
        decoder = SSEDecoder()
        async for line in lines:
            data = decoder.feed(line)
            if data is not None:
                yield parse_event(data)
        data = decoder.flush()
        if data is not None:
            yield parse_event(data)
