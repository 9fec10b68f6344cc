from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Role = Literal["user", "assistant"]

WELCOME_MESSAGE = "Welcome! How can I help you today?"
DEFAULT_TITLE = "New Chat"


@dataclass(frozen=True)
class Message:
    role: Role
    content: str
    timestamp: int

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}


@dataclass(frozen=True)
class Session:
    id: str
    title: str
    last_message: str
    last_message_time: int
    messages: tuple[Message, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        """Wire shape used by the front-end (camelCase keys)."""
        return {
            "id": self.id,
            "title": self.title,
            "lastMessage": self.last_message,
            "lastMessageTime": self.last_message_time,
            "messages": [m.to_dict() for m in self.messages],
        }
