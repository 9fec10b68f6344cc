import math
from collections.abc import Mapping, Sequence
from typing import Protocol, runtime_checkable

from loguru import logger

from llm_chat_backend.engine_config import ChatEngineConfig
from llm_chat_backend.memory.models import Message

TRUNCATION_NOTICE = {
    "role": "assistant",
    "content": "Note: Some older messages have been removed to maintain conversation length.",
}


@runtime_checkable
class TruncationStrategy(Protocol):
    def truncate(self, history: Sequence[Message | Mapping]) -> list[dict]: ...


def estimate_tokens(text: str) -> int:
    """Roughly four characters per token. Monotone in length, not a tokenizer."""
    return math.ceil(len(text) / 4)


def _project(message: Message | Mapping) -> dict:
    if isinstance(message, Message):
        return {"role": message.role, "content": message.content}
    return {"role": message["role"], "content": message["content"]}


def total_tokens(history: Sequence[Message | Mapping]) -> int:
    return sum(estimate_tokens(_project(m)["content"]) for m in history)


def truncate_messages(
    history: Sequence[Message | Mapping],
    max_tokens: int,
    target_tokens: int,
) -> list[dict]:
    """Bound ``history`` to a token budget, newest question/answer pairs first.

    Returns the role/content projection of ``history`` untouched when it fits in
    ``max_tokens``. Otherwise returns the truncation notice followed by as many
    of the newest pairs as fit in ``target_tokens``. Pairs are taken whole, and
    scanning stops at the first pair that does not fit.
    """
    projected = [_project(m) for m in history]
    if sum(estimate_tokens(m["content"]) for m in projected) <= max_tokens:
        return projected

    kept: list[dict] = []
    token_count = estimate_tokens(TRUNCATION_NOTICE["content"])

    for i in range(len(projected) - 1, -1, -2):
        current = projected[i]
        previous = projected[i - 1] if i >= 1 else None
        pair_tokens = estimate_tokens(current["content"]) + estimate_tokens(
            previous["content"] if previous is not None else ""
        )
        if token_count + pair_tokens > target_tokens:
            break
        kept[:0] = [current] if previous is None else [previous, current]
        token_count += pair_tokens

    return [dict(TRUNCATION_NOTICE), *kept]


class TokenBudgetTruncator:
    def __init__(self, config: ChatEngineConfig):
        self._max_tokens = config.max_context_tokens
        self._target_tokens = config.target_context_tokens

    def truncate(self, history: Sequence[Message | Mapping]) -> list[dict]:
        estimated = total_tokens(history)
        logger.info(f"Conversation has approximately {estimated:,} tokens")

        result = truncate_messages(history, self._max_tokens, self._target_tokens)

        if estimated > self._max_tokens:
            logger.info(
                f"Truncated conversation from {len(history)} to {len(result) - 1} messages,"
                f" ~{total_tokens(result):,} tokens (target {self._target_tokens:,})"
            )
        return result
