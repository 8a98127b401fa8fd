"""Retry policy for AI provider calls.

Transient failures and rate limits are retried with exponential backoff
plus up to 10% jitter, capped at ``retry_max_delay_ms``. A rate limit that
carries a retry-after hint waits exactly that long instead. Every other
provider error surfaces on the first attempt so the analysis can be
failed and refunded without delay.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from messagemind.providers.errors import RateLimitError, TransientError

__all__ = ["backoff_delay", "with_retries"]

if TYPE_CHECKING:
    from messagemind.providers.config import ProviderConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (TransientError, RateLimitError)


def backoff_delay(attempt: int, error: Exception, config: "ProviderConfig") -> float:
    """Seconds to wait before retry number ``attempt + 1``."""
    if isinstance(error, RateLimitError) and error.retry_after_seconds:
        return error.retry_after_seconds
    base_ms = config.retry_base_delay_ms * (2**attempt)
    jitter_ms = random.uniform(0, base_ms * 0.1)  # nosec B311
    return min(base_ms + jitter_ms, config.retry_max_delay_ms) / 1000


async def with_retries(
    func: Callable[[], Awaitable[T]],
    config: "ProviderConfig",
    retryable_errors: tuple[type[Exception], ...] = RETRYABLE_ERRORS,
    *,
    label: str = "provider call",
) -> T:
    """Run ``func`` until it succeeds or the retry budget is spent.

    Args:
        func: Zero-argument coroutine factory (called once per attempt).
        config: Provider configuration with the retry settings.
        retryable_errors: Error types worth another attempt.
        label: Identifies the call in retry log lines (never the payload).

    Returns:
        The first successful result.

    Raises:
        Exception: The last retryable error once ``max_retries`` retries
            have failed, or any non-retryable error immediately.
    """
    attempts = config.max_retries + 1
    attempt = 0
    while True:
        try:
            return await func()
        except retryable_errors as e:
            if attempt + 1 >= attempts:
                raise
            delay = backoff_delay(attempt, e, config)
            logger.warning(
                "%s failed (attempt %d/%d, %s); retrying in %.2fs",
                label,
                attempt + 1,
                attempts,
                type(e).__name__,
                delay,
            )
            await asyncio.sleep(delay)
            attempt += 1
