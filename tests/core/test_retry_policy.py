import pytest

from file_lifecycle.config import Settings
from file_lifecycle.core.exceptions import (
    CopyInterruptedError,
    ObjectNotFoundError,
    TransientStoreError,
)
from file_lifecycle.core.retry_policy import RetryPolicy


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_policy(**overrides):
    values = {"max_retry_attempts": 3, "retry_delay_seconds": 1.0, "retry_backoff_factor": 2.0}
    values.update(overrides)
    sleep = RecordingSleep()
    return RetryPolicy(Settings(_env_file=None, **values), sleep=sleep), sleep


def flaky(failures, result="ok", error=TransientStoreError):
    calls = {"count": 0}

    async def operation():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error(f"failure {calls['count']}")
        return result

    return operation, calls


@pytest.mark.asyncio
async def test_success_first_attempt_does_not_sleep():
    policy, sleep = make_policy()
    operation, calls = flaky(0)

    assert await policy.run(operation, "size check") == "ok"
    assert calls["count"] == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_transient_errors_retried_with_backoff():
    policy, sleep = make_policy()
    operation, calls = flaky(2)

    assert await policy.run(operation, "copy") == "ok"
    assert calls["count"] == 3
    assert sleep.delays == [1.0, 2.0]
    assert policy.stats.retries_performed == 2


@pytest.mark.asyncio
async def test_exhausted_retries_reraise_last_error():
    policy, sleep = make_policy(max_retry_attempts=2)
    operation, calls = flaky(5)

    with pytest.raises(TransientStoreError, match="failure 2"):
        await policy.run(operation, "delete")

    assert calls["count"] == 2
    assert policy.stats.exhausted == 1


@pytest.mark.asyncio
async def test_non_transient_errors_are_not_retried():
    policy, sleep = make_policy()

    async def operation():
        raise ObjectNotFoundError("inbound/missing.txt")

    with pytest.raises(ObjectNotFoundError):
        await policy.run(operation, "size check")
    assert sleep.delays == []


def test_delay_for_attempt():
    policy, _ = make_policy(retry_delay_seconds=0.5, retry_backoff_factor=3.0)
    assert policy.delay_for(1) == 0.5
    assert policy.delay_for(2) == 1.5
    assert policy.delay_for(3) == 4.5


def test_at_least_one_attempt():
    policy, _ = make_policy(max_retry_attempts=0)
    assert policy.max_attempts == 1
    assert policy.get_retry_info()["max_attempts"] == 1


@pytest.mark.asyncio
async def test_retry_on_selects_the_retried_errors():
    policy, sleep = make_policy()
    interrupted, calls = flaky(2, error=CopyInterruptedError)

    assert await policy.run(interrupted, "copy", retry_on=(CopyInterruptedError,)) == "ok"
    assert calls["count"] == 3

    transient, transient_calls = flaky(1)
    with pytest.raises(TransientStoreError):
        await policy.run(transient, "copy", retry_on=(CopyInterruptedError,))
    assert transient_calls["count"] == 1
