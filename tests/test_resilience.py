"""Tests for the caller-side retry helper."""
import pytest

from tasksync.core.exceptions import NetworkFailure
from tasksync.services.resilience import call_with_retry, is_retryable


class FlakyCall:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        self.last_args = (args, kwargs)
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_is_retryable():
    assert is_retryable(NetworkFailure("timeout", retryable=True)) is True
    assert is_retryable(NetworkFailure("bad request", status_code=400)) is False
    assert is_retryable(ValueError("nope")) is False


@pytest.mark.asyncio
async def test_retries_retryable_failures_until_success():
    call = FlakyCall([NetworkFailure("503", status_code=503, retryable=True)] * 2)

    result = await call_with_retry(call, 7, attempts=3, min_wait=0, max_wait=0, flag=True)

    assert result == "ok"
    assert call.calls == 3
    assert call.last_args == ((7,), {"flag": True})


@pytest.mark.asyncio
async def test_gives_up_after_attempts():
    call = FlakyCall([NetworkFailure("429", status_code=429, retryable=True)] * 5)

    with pytest.raises(NetworkFailure) as exc_info:
        await call_with_retry(call, attempts=2, min_wait=0, max_wait=0)

    assert exc_info.value.status_code == 429
    assert call.calls == 2


@pytest.mark.asyncio
async def test_non_retryable_failures_propagate_immediately():
    call = FlakyCall([NetworkFailure("401", status_code=401)])

    with pytest.raises(NetworkFailure):
        await call_with_retry(call, attempts=5, min_wait=0, max_wait=0)

    assert call.calls == 1
