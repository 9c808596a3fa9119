from __future__ import annotations

import httpx
import pytest

from ciresults.config import RetryConfig
from ciresults.infra.rate_counter import RateCounter
from ciresults.infra.rate_limiter import AsyncTokenBucket
from ciresults.infra.retry import is_retryable, with_retry

FAST_RETRY = RetryConfig(min_seconds=0.01, max_seconds=0.02, attempts=3)


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_rate_counter_slides_over_one_second() -> None:
    clock = _Clock()
    counter = RateCounter(clock=clock)

    counter.incr(3)
    clock.now = 0.5
    counter.incr(2)
    assert counter.rate() == 5

    clock.now = 1.0
    assert counter.rate() == 2
    clock.now = 1.6
    assert counter.rate() == 0
    assert counter.total == 5


def test_rate_counter_rejects_empty_window() -> None:
    with pytest.raises(ValueError):
        RateCounter(window_sec=0)


def test_token_bucket_allows_burst_then_waits() -> None:
    bucket = AsyncTokenBucket(rate_per_sec=1.0, burst=2)

    assert bucket._take() == 0.0
    assert bucket._take() == 0.0
    assert bucket._take() > 0.5


@pytest.mark.asyncio
async def test_token_bucket_acquire_within_burst() -> None:
    bucket = AsyncTokenBucket(rate_per_sec=1000.0, burst=3)

    for _ in range(3):
        async with bucket:
            pass


@pytest.mark.parametrize(("rate", "burst"), [(0, 1), (-1, 1), (1, 0)])
def test_token_bucket_validates_arguments(rate: float, burst: int) -> None:
    with pytest.raises(ValueError):
        AsyncTokenBucket(rate, burst)


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://testgrid.k8s.io/dash/summary")
    return httpx.HTTPStatusError("bad status", request=request, response=httpx.Response(code, request=request))


def test_retryable_errors() -> None:
    assert is_retryable(httpx.ConnectError("refused"))
    assert is_retryable(httpx.ReadTimeout("slow"))
    assert is_retryable(_status_error(429))
    assert is_retryable(_status_error(502))
    assert not is_retryable(_status_error(404))
    assert not is_retryable(ValueError("bad payload"))


@pytest.mark.asyncio
async def test_with_retry_recovers_from_transient_errors() -> None:
    calls = 0

    async def flaky() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise httpx.ConnectError("refused")
        return "ok"

    assert await with_retry(flaky, FAST_RETRY) == "ok"
    assert calls == 3


@pytest.mark.asyncio
async def test_with_retry_gives_up_after_attempts() -> None:
    calls = 0

    async def down() -> str:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("refused")

    with pytest.raises(httpx.ConnectError):
        await with_retry(down, FAST_RETRY)
    assert calls == 3


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_other_errors() -> None:
    calls = 0

    async def broken() -> str:
        nonlocal calls
        calls += 1
        raise ValueError("bad payload")

    with pytest.raises(ValueError):
        await with_retry(broken, FAST_RETRY)
    assert calls == 1
