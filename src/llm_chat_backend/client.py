"""Async HTTP client for the chat backend, mirroring the front-end plugin's calls."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
from loguru import logger

from llm_chat_backend.transport import ChatTransportAdapter

_TIMEOUT = 60.0  # seconds


class ChatClientError(Exception):
    def __init__(self, action: str, status_code: int, detail: str = ""):
        super().__init__(f"Failed to {action}: HTTP {status_code} {detail}".rstrip())
        self.status_code = status_code


class ChatClient:
    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = _TIMEOUT,
    ):
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self._adapter = ChatTransportAdapter()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def get_sessions(self) -> list[dict]:
        return await self._get("/sessions", action="fetch sessions")

    async def get_session(self, session_id: str) -> dict:
        return await self._get(f"/sessions/{session_id}", action="fetch session")

    async def search_sessions(self, query: str) -> list[dict]:
        return await self._get("/sessions/search", params={"query": query}, action="search sessions")

    async def create_session(self) -> dict:
        resp = await self._client.post("/sessions")
        _raise_for_status(resp, "create session")
        return resp.json()

    async def delete_session(self, session_id: str) -> None:
        resp = await self._client.delete(f"/sessions/{session_id}")
        _raise_for_status(resp, "delete session")

    async def chat(self, message: str, session_id: str) -> AsyncIterator[str]:
        """Stream answer chunks; raises StreamError if the server reports a failure."""
        async with self._client.stream(
            "POST",
            "/chat",
            json={"message": message, "sessionId": session_id},
            headers={"Accept": "text/event-stream"},
        ) as resp:
            if resp.is_error:
                await resp.aread()
                _raise_for_status(resp, "chat")
            async for chunk in self._adapter.consume(resp.aiter_lines()):
                yield chunk

    async def chat_text(self, message: str, session_id: str) -> str:
        return "".join([chunk async for chunk in self.chat(message, session_id)])

    async def _get(self, path: str, *, action: str, params: dict | None = None) -> Any:
        resp = await self._client.get(path, params=params)
        _raise_for_status(resp, action)
        return resp.json()


def _raise_for_status(resp: httpx.Response, action: str) -> None:
    if resp.is_success:
        return
    detail = resp.reason_phrase
    try:
        body = resp.json()
    except ValueError:
        body = None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        detail = str(error.get("message", detail))
    logger.warning(f"Chat backend request failed: {action} -> {resp.status_code} {detail}")
    raise ChatClientError(action, resp.status_code, detail)
