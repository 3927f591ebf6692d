"""Retry with exponential backoff for async API calls."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from front_gmail_migration.config.settings import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff envelope applied to every outbound call of a client."""

    attempts: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 20.0
    jitter_s: float = 0.1

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        """Build a policy from validated settings.

        Args:
            settings: Retry settings.

        Returns:
            RetryPolicy instance.
        """
        return cls(
            attempts=settings.attempts,
            base_delay_s=settings.base_delay_s,
            max_delay_s=settings.max_delay_s,
            jitter_s=settings.jitter_s,
        )

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before the attempt after ``attempt`` (1-based)."""
        delay = min(self.max_delay_s, self.base_delay_s * (2 ** (attempt - 1)))
        if self.jitter_s > 0:
            delay += random.uniform(0, self.jitter_s)
        return delay


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retry_if: Callable[[BaseException], bool],
    description: str = "call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Retry an async function with exponential backoff.

    Only exceptions accepted by ``retry_if`` are retried; anything else
    propagates on the first occurrence.

    Args:
        fn: Async callable to execute.
        policy: Attempt cap and delay parameters.
        retry_if: Predicate deciding whether a failure is transient.
        description: Short label used in log lines.
        sleep: Awaitable sleep, replaceable in tests.

    Returns:
        Result of the callable.

    Raises:
        Exception: The last exception if retries are exhausted, or the first
            non-retryable one.
    """
    attempts = max(1, policy.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as exc:
            if attempt >= attempts or not retry_if(exc):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                description,
                attempt,
                attempts,
                delay,
                exc,
            )
            await sleep(delay)
    raise AssertionError("unreachable")
