from llm_chat_backend.memory.models import Message, Session
from llm_chat_backend.memory.session_store import SessionStore
from llm_chat_backend.memory.store import MemoryStore

__all__ = [
    "MemoryStore",
    "Message",
    "Session",
    "SessionStore",
]
