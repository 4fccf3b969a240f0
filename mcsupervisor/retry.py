"""Shared exponential-backoff executor."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, TypeVar

from .errors import RetryExhausted

logger = logging.getLogger("mcsupervisor.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 10
    initial_delay: float = 2.0
    max_delay: float = 30.0
    backoff_factor: float = 1.5
    total_timeout: float | None = 180.0

    def delays(self) -> Iterator[float]:
        """Delay before each retry: initial, initial*f, ... capped at max_delay."""
        delay = self.initial_delay
        for _ in range(max(self.max_attempts - 1, 0)):
            yield delay
            delay = min(delay * self.backoff_factor, self.max_delay)


@dataclass
class RetryInfo:
    attempt: int
    max_attempts: int
    error: BaseException
    next_delay: float
    elapsed: float


async def with_retry(
    fn: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    *,
    should_retry: Callable[[BaseException, int], bool] | None = None,
    on_retry: Callable[[RetryInfo], Any] | None = None,
) -> T:
    """Call ``fn(attempt)`` until it succeeds or the policy is spent.

    Raises RetryExhausted carrying the last error. Errors for which
    ``should_retry`` returns False propagate unchanged.
    """
    t0 = time.monotonic()
    delays = policy.delays()
    last_exc: BaseException | None = None

    for attempt in range(1, policy.max_attempts + 1):
        elapsed = time.monotonic() - t0
        if policy.total_timeout is not None and elapsed > policy.total_timeout:
            raise RetryExhausted(
                attempt - 1, last_exc,
                f"retry timeout exceeded ({policy.total_timeout}s): {last_exc}",
            )
        try:
            return await fn(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            last_exc = exc
            if should_retry is not None and not should_retry(exc, attempt):
                raise
            if attempt == policy.max_attempts:
                break
            delay = next(delays)
            logger.debug("Attempt %d/%d failed: %s (retrying in %.1fs)",
                         attempt, policy.max_attempts, exc, delay)
            if on_retry is not None:
                on_retry(RetryInfo(attempt, policy.max_attempts, exc, delay,
                                   time.monotonic() - t0))
            await asyncio.sleep(delay)

    raise RetryExhausted(policy.max_attempts, last_exc)
