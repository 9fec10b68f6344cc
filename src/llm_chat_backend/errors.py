from __future__ import annotations


class ChatBackendError(Exception):
    """Base class for errors surfaced to the HTTP boundary."""

    status_code = 500


class SessionNotFoundError(ChatBackendError):
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Session with id {session_id} not found")
        self.session_id = session_id


class UpstreamError(ChatBackendError):
    """The model invocation or its stream failed."""

    status_code = 502


class StoreError(ChatBackendError):
    status_code = 500


class StreamError(Exception):
    """Raised by stream consumers on an error event or a broken event stream."""


class ConfigError(ValueError):
    pass
