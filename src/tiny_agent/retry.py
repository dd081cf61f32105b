# retry.py
# Exponential backoff with jitter for outbound model calls.
#
# Only rate-limit and transient network failures are retried. Everything else
# propagates on the first attempt.

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
import openai
from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    openai.RateLimitError,
    openai.APIConnectionError,  # includes APITimeoutError
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)

_RETRYABLE_MARKERS = (
    "rate limit",
    "429",
    "too many requests",
    "econnreset",
    "etimedout",
    "enotfound",
    "econnrefused",
)


class RetryPolicy(BaseModel):
    max_retries: int = 5
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt + 1`, in seconds."""
        delay = min(self.initial_delay * self.multiplier**attempt, self.max_delay)
        if self.jitter:
            spread = delay * 0.25
            delay = delay - spread / 2 + random.random() * spread
        return delay


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, _RETRYABLE_TYPES):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    should_retry: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Await `fn()` until it succeeds, a non-retryable error, or the budget runs out."""
    policy = policy or RetryPolicy()

    for attempt in range(policy.max_retries + 1):
        try:
            return await fn()
        except Exception as exc:
            if attempt == policy.max_retries or not should_retry(exc):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.2fs",
                attempt + 1,
                policy.max_retries + 1,
                exc,
                delay,
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
