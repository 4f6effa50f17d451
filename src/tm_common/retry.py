"""Async retry with exponential backoff and jitter.

Used for escrow round-trips: a bounded number of attempts, then the last
error propagates so the caller can turn it into a durable queue entry.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff_seconds(
    attempt: int, base: float = 0.5, cap: float = 8.0, jitter: bool = True
) -> float:
    """Delay before retry number `attempt` (1-based): base * 2^(attempt-1), capped."""
    delay = min(cap, base * (2 ** max(0, attempt - 1)))
    if jitter:
        delay *= 0.7 + random.random() * 0.6
    return delay


def next_attempt_delay(attempts: int, base_seconds: int = 30, cap_seconds: int = 3600) -> timedelta:
    """Spacing for durable queue replays (reconciliation items)."""
    return timedelta(seconds=compute_backoff_seconds(attempts, base_seconds, cap_seconds))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    retry_on: tuple[type[BaseException], ...],
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    timeout: float | None = None,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run `fn` up to `attempts` times.

    Exceptions outside `retry_on` propagate immediately. A per-attempt
    `timeout` turns a hung call into TimeoutError, which is retried only if
    listed in `retry_on`.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    for attempt in range(1, attempts + 1):
        try:
            if timeout is None:
                return await fn()
            return await asyncio.wait_for(fn(), timeout=timeout)
        except retry_on as exc:
            if attempt >= attempts:
                logger.warning(
                    "%s failed after %d attempts: %s: %s",
                    label, attempt, type(exc).__name__, exc,
                )
                raise
            delay = compute_backoff_seconds(attempt, base_delay, max_delay)
            logger.info(
                "%s attempt %d/%d failed (%s), retrying in %.2fs",
                label, attempt, attempts, type(exc).__name__, delay,
            )
            await sleep(delay)
    raise AssertionError("unreachable")
