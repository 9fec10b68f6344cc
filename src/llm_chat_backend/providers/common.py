from __future__ import annotations

from loguru import logger
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential


def _on_retry(retry_state):
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason} while opening model stream. Retrying in {wait:.1f}s (attempt {attempt})...")


def default_retry_kwargs(
    exception_types: tuple[type[Exception], ...],
    *,
    attempts: int = 3,
    max_wait: float = 8,
) -> dict:
    """Retry settings for establishing an upstream stream.

    Only the request that opens the stream is retried. Once text has been
    delivered a failure ends the turn.
    """
    return {
        "retry": retry_if_exception_type(exception_types),
        "wait": wait_exponential(multiplier=1, min=1, max=max_wait),
        "stop": stop_after_attempt(attempts),
        "before_sleep": _on_retry,
        "reraise": True,
    }


def last_user_text(messages: list[dict]) -> str:
    for msg in reversed(messages):
        if msg.get("role") == "user":
            return str(msg.get("content", ""))
    return ""
