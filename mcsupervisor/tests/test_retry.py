"""Tests for the shared backoff executor."""
from __future__ import annotations

import pytest

from mcsupervisor.errors import RetryExhausted
from mcsupervisor.retry import RetryPolicy, with_retry

FAST = RetryPolicy(max_attempts=4, initial_delay=0.001, max_delay=0.002, total_timeout=None)


def test_delays_grow_and_cap():
    policy = RetryPolicy(max_attempts=6, initial_delay=2.0, max_delay=5.0, backoff_factor=1.5)
    assert list(policy.delays()) == [2.0, 3.0, 4.5, 5.0, 5.0]


def test_single_attempt_has_no_delays():
    assert list(RetryPolicy(max_attempts=1).delays()) == []


@pytest.mark.asyncio
async def test_succeeds_after_failures():
    calls = []
    retries = []

    async def flaky(attempt: int) -> str:
        calls.append(attempt)
        if attempt < 3:
            raise OSError("refused")
        return "ok"

    assert await with_retry(flaky, FAST, on_retry=retries.append) == "ok"
    assert calls == [1, 2, 3]
    assert [(r.attempt, r.max_attempts) for r in retries] == [(1, 4), (2, 4)]
    assert isinstance(retries[0].error, OSError)


@pytest.mark.asyncio
async def test_exhaustion_carries_last_error():
    async def always(attempt: int) -> None:
        raise OSError(f"attempt {attempt}")

    with pytest.raises(RetryExhausted) as excinfo:
        await with_retry(always, FAST)
    assert excinfo.value.attempts == 4
    assert str(excinfo.value.last_error) == "attempt 4"


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_unchanged():
    calls = []

    async def denied(attempt: int) -> None:
        calls.append(attempt)
        raise PermissionError("bad password")

    with pytest.raises(PermissionError):
        await with_retry(denied, FAST, should_retry=lambda exc, n: not isinstance(exc, PermissionError))
    assert calls == [1]


@pytest.mark.asyncio
async def test_total_timeout_stops_retrying():
    policy = RetryPolicy(max_attempts=100, initial_delay=0.02, max_delay=0.02, total_timeout=0.05)
    calls = []

    async def always(attempt: int) -> None:
        calls.append(attempt)
        raise OSError("refused")

    with pytest.raises(RetryExhausted, match="timeout"):
        await with_retry(always, policy)
    assert 1 < len(calls) < 100
