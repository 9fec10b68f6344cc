import asyncio
import unittest

from llm_chat_backend.chat_engine import StreamingChatEngine, split_chunks
from llm_chat_backend.engine_config import ChatEngineConfig
from llm_chat_backend.errors import SessionNotFoundError, StoreError, UpstreamError
from llm_chat_backend.memory import SessionStore
from llm_chat_backend.memory.models import WELCOME_MESSAGE, Message
from llm_chat_backend.truncation import TRUNCATION_NOTICE
from tests.memory.base import MemoryStoreTestCase


class _ScriptedProvider:
    def __init__(self, fragments: list[str], *, fail_with: Exception | None = None):
        self._fragments = fragments
        self._fail_with = fail_with
        self.calls: list[dict] = []

    async def stream_text(self, messages, max_tokens):
        self.calls.append({"messages": [dict(m) for m in messages], "max_tokens": max_tokens})
        for fragment in self._fragments:
            yield fragment
        if self._fail_with is not None:
            raise self._fail_with


class _EndlessProvider:
    def __init__(self) -> None:
        self.requested = 0
        self.closed = False

    async def stream_text(self, messages, max_tokens):
        try:
            while True:
                self.requested += 1
                yield f"piece-{self.requested} "
                await asyncio.sleep(0)
        finally:
            self.closed = True


class _RefusingProvider:
    """Fails when called, before handing back any iterator."""

    def __init__(self) -> None:
        self.calls = 0

    def stream_text(self, messages, max_tokens):
        self.calls += 1
        raise RuntimeError("invalid api key")


class _BrokenCloseStream:
    def __init__(self, fragments: list[str]):
        self._iter = iter(fragments)

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration

    async def aclose(self):
        raise RuntimeError("close failed")


class _BrokenCloseProvider:
    def stream_text(self, messages, max_tokens):
        return _BrokenCloseStream(["all ", "text"])


class _FailingAppendStore(SessionStore):
    def __init__(self, store, fail_role: str):
        super().__init__(store)
        self._fail_role = fail_role

    def append_message(self, session_id, message):
        if message.role == self._fail_role:
            raise StoreError("disk full")
        super().append_message(session_id, message)


async def _collect(chunks) -> list[str]:
    return [chunk async for chunk in chunks]


class SplitChunksTests(unittest.TestCase):
    def test_concatenation_reproduces_text(self) -> None:
        text = "The quick brown fox jumps over the lazy dog. " * 7
        chunks = list(split_chunks(text, 50))
        self.assertEqual(text, "".join(chunks))
        self.assertTrue(all(len(c) == 50 for c in chunks[:-1]))
        self.assertLessEqual(len(chunks[-1]), 50)

    def test_short_text_is_single_chunk(self) -> None:
        self.assertEqual(["hello"], list(split_chunks("hello", 50)))

    def test_exact_multiple_has_no_short_tail(self) -> None:
        self.assertEqual(["ab", "cd"], list(split_chunks("abcd", 2)))

    def test_empty_text_yields_nothing(self) -> None:
        self.assertEqual([], list(split_chunks("", 50)))

    def test_rejects_non_positive_size(self) -> None:
        with self.assertRaises(ValueError):
            list(split_chunks("abc", 0))


class StreamingChatEngineTests(MemoryStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._session = self._sessions.create_session("chat")

    def _engine(self, provider, **config) -> StreamingChatEngine:
        return StreamingChatEngine(store=self._sessions, provider=provider, config=ChatEngineConfig(**config))

    def test_streams_rechunked_answer_and_persists_exchange(self) -> None:
        provider = _ScriptedProvider(["Hello, ", "x" * 120])
        engine = self._engine(provider, chunk_size=50)

        chunks = asyncio.run(_collect(engine.chat("hi there", "chat")))

        self.assertEqual(["Hello, ", "x" * 50, "x" * 50, "x" * 20], chunks)
        session = self._sessions.get_session("chat")
        self.assertEqual(
            [("assistant", WELCOME_MESSAGE), ("user", "hi there"), ("assistant", "Hello, " + "x" * 120)],
            [(m.role, m.content) for m in session.messages],
        )
        self.assertEqual("Hello, " + "x" * 120, session.last_message)
        self.assertEqual(session.messages[-1].timestamp, session.last_message_time)

    def test_submission_is_history_plus_new_user_message(self) -> None:
        provider = _ScriptedProvider(["ok"])
        engine = self._engine(provider, max_response_tokens=321)

        asyncio.run(_collect(engine.chat("question", "chat")))

        self.assertEqual(1, len(provider.calls))
        self.assertEqual(321, provider.calls[0]["max_tokens"])
        self.assertEqual(
            [
                {"role": "assistant", "content": WELCOME_MESSAGE},
                {"role": "user", "content": "question"},
            ],
            provider.calls[0]["messages"],
        )

    def test_long_history_is_truncated_but_new_message_always_sent(self) -> None:
        start = self._session.last_message_time
        for i in range(4):
            role = "user" if i % 2 == 0 else "assistant"
            self._sessions.append_message("chat", Message(role, f"{i}" * 400, start + 1 + i))
        provider = _ScriptedProvider(["ok"])
        engine = self._engine(provider, max_context_tokens=300, target_context_tokens=250)
        new_message = "n" * 4_000

        asyncio.run(_collect(engine.chat(new_message, "chat")))

        sent = provider.calls[0]["messages"]
        self.assertEqual(TRUNCATION_NOTICE, sent[0])
        self.assertEqual(["2" * 400, "3" * 400], [m["content"] for m in sent[1:3]])
        self.assertEqual({"role": "user", "content": new_message}, sent[-1])

    def test_missing_session_fails_before_any_chunk(self) -> None:
        provider = _ScriptedProvider(["never"])
        engine = self._engine(provider)

        async def run():
            stream = engine.chat("hi", "missing-session")
            with self.assertRaises(SessionNotFoundError):
                await stream.__anext__()

        asyncio.run(run())
        self.assertEqual([], provider.calls)

    def test_failure_after_two_chunks_surfaces_error_and_keeps_user_message_only(self) -> None:
        provider = _ScriptedProvider(["first", "second"], fail_with=RuntimeError("connection reset"))
        engine = self._engine(provider)
        received: list[str] = []

        async def run():
            async for chunk in engine.chat("hi", "chat"):
                received.append(chunk)

        with self.assertRaises(UpstreamError) as ctx:
            asyncio.run(run())

        self.assertEqual(["first", "second"], received)
        self.assertIn("connection reset", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        session = self._sessions.get_session("chat")
        self.assertEqual(
            [("assistant", WELCOME_MESSAGE), ("user", "hi")],
            [(m.role, m.content) for m in session.messages],
        )
        self.assertEqual("hi", session.last_message)

    def test_provider_failing_on_call_is_an_upstream_error(self) -> None:
        provider = _RefusingProvider()
        engine = self._engine(provider)

        with self.assertRaises(UpstreamError) as ctx:
            asyncio.run(asyncio.wait_for(_collect(engine.chat("hi", "chat")), timeout=2))

        self.assertEqual(1, provider.calls)
        self.assertIn("invalid api key", str(ctx.exception))
        roles = [m.role for m in self._sessions.get_session("chat").messages]
        self.assertEqual(["assistant", "user"], roles)

    def test_failure_closing_the_model_stream_is_an_upstream_error(self) -> None:
        engine = self._engine(_BrokenCloseProvider())
        received: list[str] = []

        async def run():
            async for chunk in engine.chat("hi", "chat"):
                received.append(chunk)

        with self.assertRaises(UpstreamError):
            asyncio.run(asyncio.wait_for(run(), timeout=2))
        self.assertEqual(["all ", "text"], received)
        roles = [m.role for m in self._sessions.get_session("chat").messages]
        self.assertEqual(["assistant", "user"], roles)

    def test_user_message_is_stored_before_streaming(self) -> None:
        provider = _ScriptedProvider(["a", "b"])
        engine = self._engine(provider)

        async def run():
            stream = engine.chat("early", "chat")
            await stream.__anext__()
            stored = self._sessions.get_session("chat")
            await stream.aclose()
            return stored

        stored = asyncio.run(run())
        self.assertEqual(("user", "early"), (stored.messages[-1].role, stored.messages[-1].content))

    def test_abandoned_stream_stops_upstream_and_stores_no_answer(self) -> None:
        provider = _EndlessProvider()
        engine = self._engine(provider, chunk_queue_size=1)

        async def run():
            stream = engine.chat("go on forever", "chat")
            first = await stream.__anext__()
            await stream.aclose()
            requested = provider.requested
            for _ in range(5):
                await asyncio.sleep(0)
            return first, requested

        first, requested_at_close = asyncio.run(run())

        self.assertEqual("piece-1 ", first)
        self.assertTrue(provider.closed)
        self.assertEqual(requested_at_close, provider.requested)
        roles = [m.role for m in self._sessions.get_session("chat").messages]
        self.assertEqual(["assistant", "user"], roles)

    def test_store_failure_on_user_append_aborts_turn(self) -> None:
        sessions = _FailingAppendStore(self._store, fail_role="user")
        provider = _ScriptedProvider(["never"])
        engine = StreamingChatEngine(store=sessions, provider=provider, config=ChatEngineConfig())

        with self.assertRaises(StoreError):
            asyncio.run(_collect(engine.chat("hi", "chat")))
        self.assertEqual([], provider.calls)

    def test_store_failure_on_answer_append_propagates(self) -> None:
        sessions = _FailingAppendStore(self._store, fail_role="assistant")
        engine = StreamingChatEngine(store=sessions, provider=_ScriptedProvider(["done"]), config=ChatEngineConfig())
        received: list[str] = []

        async def run():
            async for chunk in engine.chat("hi", "chat"):
                received.append(chunk)

        with self.assertRaises(StoreError):
            asyncio.run(run())
        self.assertEqual(["done"], received)

    def test_engine_holds_no_state_between_turns(self) -> None:
        provider = _ScriptedProvider(["answer"])
        engine = self._engine(provider)

        asyncio.run(_collect(engine.chat("one", "chat")))
        asyncio.run(_collect(engine.chat("two", "chat")))

        second_submission = [m["content"] for m in provider.calls[1]["messages"]]
        self.assertEqual([WELCOME_MESSAGE, "one", "answer", "two"], second_submission)


if __name__ == "__main__":
    unittest.main()
