# tokens.py
# Token estimation and context-window truncation.
#
# Counts use tiktoken (cl100k_base). When the encoding cannot be loaded (its
# BPE ranks are fetched on first use) a 4-chars-per-token estimate is used
# instead. Counts only decide which history to drop, never billing.

import functools
import json
import logging
import math

import tiktoken

from tiny_agent.models import ContextStats, Message

logger = logging.getLogger(__name__)

ENCODING_NAME = "cl100k_base"
CHARS_PER_TOKEN = 4
RESPONSE_RESERVE = 1000


@functools.lru_cache(maxsize=1)
def _encoding() -> tiktoken.Encoding | None:
    try:
        return tiktoken.get_encoding(ENCODING_NAME)
    except Exception as exc:
        logger.warning(
            "tiktoken encoding %s unavailable, using character estimate: %s", ENCODING_NAME, exc
        )
        return None


def count_tokens(text: str) -> int:
    if not text:
        return 0
    encoding = _encoding()
    if encoding is None:
        return math.ceil(len(text) / CHARS_PER_TOKEN)
    return len(encoding.encode(text, disallowed_special=()))


def tail_tokens(text: str, max_tokens: int) -> str:
    """The trailing part of `text` that fits in `max_tokens`."""
    if max_tokens <= 0 or not text:
        return ""
    encoding = _encoding()
    if encoding is None:
        return text[-max_tokens * CHARS_PER_TOKEN :]
    ids = encoding.encode(text, disallowed_special=())
    return encoding.decode(ids[-max_tokens:])


def count_message_tokens(message: Message) -> int:
    total = count_tokens(message.content)
    for call in message.tool_calls or []:
        total += count_tokens(json.dumps(call.model_dump()))
    if message.tool_call_id:
        total += count_tokens(message.tool_call_id)
    return total


def count_messages_tokens(messages: list[Message]) -> int:
    return sum(count_message_tokens(m) for m in messages)


def context_budget(
    max_context_tokens: int | None,
    system_prompt: str,
    response_reserve: int = RESPONSE_RESERVE,
) -> int | None:
    """
    Tokens left for conversation history.

    Returns None when truncation is disabled: no limit configured, or the
    system prompt and response reserve already consume the whole window.
    """
    if not max_context_tokens:
        return None
    available = max_context_tokens - count_tokens(system_prompt) - response_reserve
    if available <= 0:
        return None
    return available


def truncate_messages(messages: list[Message], max_tokens: int) -> list[Message]:
    """
    Keep the most recent messages that fit in `max_tokens`.

    Walks newest → oldest. A message larger than the remaining budget keeps
    only its trailing tokens. The newest message is always retained.
    Input messages are never mutated.
    """
    kept: list[Message] = []
    remaining = max_tokens

    for message in reversed(messages):
        cost = count_tokens(message.content)
        if cost > remaining:
            tail = tail_tokens(message.content, remaining)
            message = message.model_copy(update={"content": tail})
            cost = count_tokens(tail)

        kept.append(message)
        remaining -= cost
        if remaining <= 0:
            break

    kept.reverse()
    return kept


def context_stats(
    system_prompt: str,
    messages: list[Message],
    max_context_tokens: int | None,
    truncation_applied: bool = False,
) -> ContextStats:
    system_tokens = count_tokens(system_prompt)
    conversation_tokens = sum(count_tokens(m.content) for m in messages)
    return ContextStats(
        system_prompt_tokens=system_tokens,
        conversation_tokens=conversation_tokens,
        total_tokens=system_tokens + conversation_tokens,
        max_context_tokens=max_context_tokens or 0,
        truncation_applied=truncation_applied,
    )
