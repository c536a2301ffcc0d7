"""
Retry with exponential back-off.

Single implementation shared by the blob download, embedding calls, vector
upserts, metadata writes and similarity search. Call sites differ only in
their RetryPolicy and retryable-error predicate.

Delay before attempt n (n ≥ 2):  min(base_delay × 2^(n-2), max_delay)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from drillrag.core.exceptions import is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts:   int   = 3      # total attempts, including the first
    base_delay: float = 0.5    # seconds
    max_delay:  float = 5.0

    def delay_for(self, retry_number: int) -> float:
        """Back-off before the Nth retry (1-based)."""
        return min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    policy:    RetryPolicy = RetryPolicy(),
    retryable: Callable[[BaseException], bool] = is_retryable,
    label:     str = "operation",
    sleep:     Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await `operation()` until it succeeds, a terminal error occurs, or
    `policy.attempts` is exhausted.

    Terminal errors (per `retryable`) propagate immediately. After the last
    attempt the final error propagates unchanged so callers can classify it.
    """
    attempts = max(1, policy.attempts)

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not retryable(exc):
                logger.debug("Retry | label=%s terminal error=%s", label, exc)
                raise
            if attempt == attempts:
                logger.warning(
                    "Retry | label=%s exhausted attempts=%d error=%s",
                    label, attempts, exc,
                )
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                "Retry | label=%s attempt=%d/%d delay=%.2fs error=%s %s",
                label, attempt, attempts, delay, type(exc).__name__, exc,
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
