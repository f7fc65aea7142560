"""
nova_session.resilience.retry

Bounded exponential backoff for fallible async operations (RetryPolicy).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from nova_session.errors import is_retryable
from nova_session.observability.logging import get_logger

T = TypeVar("T")

log = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay_ms(attempt: int, *, base_delay_ms: int, max_delay_ms: int) -> int:
    # attempt is zero-based: the first retry waits base_delay_ms.
    return min(base_delay_ms * (2**attempt), max_delay_ms)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 2,
    base_delay_ms: int = 1000,
    max_delay_ms: int = 8000,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    sleep: Sleep = asyncio.sleep,
    operation: str = "call",
) -> T:
    """
    Invoke `fn`, retrying retryable failures up to `max_retries` times.

    The final failure (or the first non-retryable one) propagates unchanged.
    """

    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_retries or not should_retry(exc):
                raise
            delay_ms = backoff_delay_ms(
                attempt, base_delay_ms=base_delay_ms, max_delay_ms=max_delay_ms
            )
            log.warning(
                "retry.scheduled",
                operation=operation,
                attempt=attempt + 1,
                max_retries=max_retries,
                delay_ms=delay_ms,
                error=type(exc).__name__,
            )
            await sleep(delay_ms / 1000)
            attempt += 1


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay_ms: int = 1000
    max_delay_ms: int = 8000
    sleep: Sleep = asyncio.sleep

    async def run(self, fn: Callable[[], Awaitable[T]], *, operation: str = "call") -> T:
        return await retry_with_backoff(
            fn,
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            sleep=self.sleep,
            operation=operation,
        )


# --- Module Notes -----------------------------------------------------------
# Retry attempts are counted here only; the circuit breaker sees the final outcome.
