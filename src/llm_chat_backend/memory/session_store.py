from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

from loguru import logger

from llm_chat_backend.errors import SessionNotFoundError, StoreError
from llm_chat_backend.memory.models import DEFAULT_TITLE, WELCOME_MESSAGE, Message, Session
from llm_chat_backend.memory.store import MemoryStore

DEFAULT_SESSION_ID = "default"


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SessionStore:
    """Sessions and their append-only message logs, backed by SQLite.

    ``last_message`` / ``last_message_time`` on a session row are rewritten in
    the same transaction as every message insert, so they always mirror the
    newest message.
    """

    def __init__(self, store: MemoryStore):
        self._store = store

    def get_session(self, session_id: str) -> Session:
        with self._store_errors("load session"):
            row = self._store.execute(
                "SELECT * FROM chat_sessions WHERE id = ? LIMIT 1",
                (session_id,),
            ).fetchone()
            if row is None:
                raise SessionNotFoundError(session_id)
            return self._to_session(row)

    def list_sessions(self) -> list[Session]:
        with self._store_errors("list sessions"):
            rows = self._store.execute(
                """
                SELECT * FROM chat_sessions
                ORDER BY last_message_time DESC, rowid DESC
                """
            ).fetchall()
            return [self._to_session(row) for row in rows]

    def search_sessions(self, query: str) -> list[Session]:
        normalized = (query or "").strip().casefold()
        if not normalized:
            return self.list_sessions()

        pattern = f"%{_escape_like(normalized)}%"
        with self._store_errors("search sessions"):
            rows = self._store.execute(
                """
                SELECT * FROM chat_sessions
                WHERE casefold(title) LIKE ? ESCAPE '\\'
                   OR casefold(last_message) LIKE ? ESCAPE '\\'
                ORDER BY last_message_time DESC, rowid DESC
                """,
                (pattern, pattern),
            ).fetchall()
            return [self._to_session(row) for row in rows]

    def create_session(self, session_id: str | None = None) -> Session:
        sid = session_id or str(uuid4())
        welcome = Message(role="assistant", content=WELCOME_MESSAGE, timestamp=now_ms())
        with self._store_errors("create session"), self._store.transaction():
            self._store.execute(
                """
                INSERT INTO chat_sessions (id, title, last_message, last_message_time)
                VALUES (?, ?, ?, ?)
                """,
                (sid, DEFAULT_TITLE, welcome.content, welcome.timestamp),
            )
            self._insert_message(sid, welcome)
        logger.debug(f"Created session {sid}")
        return Session(
            id=sid,
            title=DEFAULT_TITLE,
            last_message=welcome.content,
            last_message_time=welcome.timestamp,
            messages=(welcome,),
        )

    def ensure_default_session(self) -> Session:
        try:
            return self.get_session(DEFAULT_SESSION_ID)
        except SessionNotFoundError:
            return self.create_session(DEFAULT_SESSION_ID)

    def delete_session(self, session_id: str) -> None:
        with self._store_errors("delete session"), self._store.transaction():
            # Explicit delete keeps the cascade independent of the FK pragma.
            self._store.execute("DELETE FROM chat_messages WHERE session_id = ?", (session_id,))
            self._store.execute("DELETE FROM chat_sessions WHERE id = ?", (session_id,))
        logger.debug(f"Deleted session {session_id}")

    def append_message(self, session_id: str, message: Message) -> None:
        with self._store_errors("append message"), self._store.transaction():
            cursor = self._store.execute(
                "UPDATE chat_sessions SET last_message = ?, last_message_time = ? WHERE id = ?",
                (message.content, message.timestamp, session_id),
            )
            if cursor.rowcount == 0:
                raise SessionNotFoundError(session_id)
            self._insert_message(session_id, message)

    def load_messages(self, session_id: str) -> list[Message]:
        rows = self._store.execute(
            """
            SELECT role, content, timestamp
            FROM chat_messages
            WHERE session_id = ?
            ORDER BY timestamp ASC, id ASC
            """,
            (session_id,),
        ).fetchall()
        return [Message(role=row["role"], content=row["content"], timestamp=int(row["timestamp"])) for row in rows]

    def _insert_message(self, session_id: str, message: Message) -> None:
        self._store.execute(
            """
            INSERT INTO chat_messages (session_id, role, content, timestamp)
            VALUES (?, ?, ?, ?)
            """,
            (session_id, message.role, message.content, message.timestamp),
        )

    def _to_session(self, row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            title=row["title"],
            last_message=row["last_message"],
            last_message_time=int(row["last_message_time"]),
            messages=tuple(self.load_messages(row["id"])),
        )

    @contextmanager
    def _store_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as ex:
            logger.error(f"Failed to {action}: {ex}")
            raise StoreError(f"Failed to {action}: {ex}") from ex
