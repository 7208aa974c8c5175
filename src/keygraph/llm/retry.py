"""Exponential backoff retry for async calls.

Only failures classified as retryable consume a retry attempt; anything else
is re-raised on the spot. ``asyncio.CancelledError`` is never caught.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from keygraph.core.logging import get_logger
from keygraph.llm.errors import LLMError, classify_error

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        initial_delay: Delay before the first retry, in seconds
        max_delay: Ceiling on any single delay, in seconds
        multiplier: Growth factor applied after each retry
        jitter: Random +/- fraction applied to each delay (0 disables)
        max_same_error_type: Give up after this many consecutive failures of the
            same error type (0 disables)
    """

    max_retries: int = 3
    initial_delay: float = 0.5
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: float = 0.1
    max_same_error_type: int = 0

    def delay_for(self, retry_number: int) -> float:
        """Base delay (without jitter) before the given retry, counted from 0."""
        return min(self.initial_delay * self.multiplier**retry_number, self.max_delay)


def apply_jitter(delay: float, jitter: float) -> float:
    if jitter <= 0:
        return delay
    return max(0.0, delay + delay * jitter * random.uniform(-1.0, 1.0))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    classify: Callable[[BaseException], LLMError] = classify_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds, fails permanently, or retries run out.

    Args:
        fn: Zero-argument coroutine function performing one attempt
        config: Backoff parameters (defaults to RetryConfig())
        classify: Maps an exception to a classified LLMError
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The value returned by the first successful attempt

    Raises:
        LLMError: The classified error of the last failed attempt, chained to
            the original exception
    """
    config = config or RetryConfig()
    last_type: str | None = None
    same_type_count = 0

    for attempt in range(config.max_retries + 1):
        try:
            return await fn()
        except Exception as e:
            classified = classify(e)

            if not classified.retryable:
                logger.warning(
                    "llm_call_failed_permanently",
                    error_type=classified.error_type.value,
                    attempt=attempt + 1,
                    error=str(e),
                )
                raise classified

            if classified.error_type.value == last_type:
                same_type_count += 1
            else:
                last_type = classified.error_type.value
                same_type_count = 1
            if config.max_same_error_type and same_type_count >= config.max_same_error_type:
                logger.warning(
                    "llm_call_repeated_error",
                    error_type=last_type,
                    occurrences=same_type_count,
                )
                raise classified

            if attempt >= config.max_retries:
                logger.warning(
                    "llm_call_retries_exhausted",
                    error_type=classified.error_type.value,
                    attempts=attempt + 1,
                    error=str(e),
                )
                raise classified

            delay = apply_jitter(config.delay_for(attempt), config.jitter)
            logger.info(
                "llm_call_retrying",
                error_type=classified.error_type.value,
                attempt=attempt + 1,
                delay_seconds=round(delay, 3),
            )
            await sleep(delay)

    raise AssertionError("unreachable")
