from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from sse_starlette.sse import EventSourceResponse

from llm_chat_backend.bootstrap import AppRuntime
from llm_chat_backend.errors import ChatBackendError
from llm_chat_backend.transport import ChatTransportAdapter


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    session_id: str = Field(alias="sessionId", min_length=1)


def create_app(runtime: AppRuntime) -> FastAPI:
    sessions = runtime.session_store
    engine = runtime.engine
    adapter = ChatTransportAdapter()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        runtime.close()

    app = FastAPI(title="LLM Chat Backend", lifespan=lifespan)

    @app.exception_handler(ChatBackendError)
    async def handle_backend_error(request: Request, exc: ChatBackendError) -> JSONResponse:
        logger.warning(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"name": type(exc).__name__, "message": str(exc)}},
        )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/sessions")
    async def list_sessions() -> list[dict]:
        return [s.to_dict() for s in sessions.list_sessions()]

    # Declared before /sessions/{session_id} so "search" is not taken as an id.
    @app.get("/sessions/search")
    async def search_sessions(query: str = "") -> list[dict]:
        return [s.to_dict() for s in sessions.search_sessions(query)]

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str) -> dict:
        return sessions.get_session(session_id).to_dict()

    @app.post("/sessions")
    async def create_session() -> dict:
        return sessions.create_session().to_dict()

    @app.delete("/sessions/{session_id}", status_code=204)
    async def delete_session(session_id: str) -> Response:
        sessions.delete_session(session_id)
        return Response(status_code=204)

    @app.post("/chat")
    async def chat(request: ChatRequest) -> EventSourceResponse:
        # Unknown sessions get a 404 instead of an opened stream.
        sessions.get_session(request.session_id)
        chunks = engine.chat(request.message, request.session_id)
        return EventSourceResponse(
            adapter.emit(chunks),
            headers={"Cache-Control": "no-cache"},
        )

    return app
