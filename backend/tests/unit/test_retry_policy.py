import asyncio

import pytest

from dmengine.domain.common.errors import Conflict, NotFound, PermissionDenied, RateLimited, Transient
from dmengine.infra.retry import RetryPolicy


class Recorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_retries_conflicts_until_success():
    sleeper = Recorder()
    policy = RetryPolicy(max_attempts=4, base_delay=0.1, max_delay=1.0, sleep=sleeper, rand=lambda: 1.0)
    calls = {"n": 0}

    async def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise Conflict()
        return "ok"

    assert await policy.run("op", flaky) == "ok"
    assert calls["n"] == 3
    assert sleeper.delays == [0.1, 0.2]


@pytest.mark.asyncio
async def test_raises_last_error_after_ceiling():
    sleeper = Recorder()
    policy = RetryPolicy(max_attempts=3, base_delay=0.1, max_delay=1.0, sleep=sleeper)
    calls = {"n": 0}

    async def always_down():
        calls["n"] += 1
        raise Transient(Transient.TIMEOUT)

    with pytest.raises(Transient) as exc_info:
        await policy.run("op", always_down)
    assert exc_info.value.reason == "timeout"
    assert calls["n"] == 3
    assert len(sleeper.delays) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [PermissionDenied(PermissionDenied.BLOCKED), RateLimited(), NotFound(NotFound.CONVERSATION)],
)
async def test_terminal_errors_are_not_retried(error):
    sleeper = Recorder()
    policy = RetryPolicy(max_attempts=5, sleep=sleeper)
    calls = {"n": 0}

    async def denied():
        calls["n"] += 1
        raise error

    with pytest.raises(type(error)):
        await policy.run("op", denied)
    assert calls["n"] == 1
    assert sleeper.delays == []


def test_backoff_is_capped_and_jittered():
    policy = RetryPolicy(base_delay=0.1, max_delay=0.5, rand=lambda: 1.0)
    assert [policy.backoff(i) for i in range(5)] == [0.1, 0.2, 0.4, 0.5, 0.5]
    jittered = RetryPolicy(base_delay=0.1, max_delay=0.5, rand=lambda: 0.5)
    assert jittered.backoff(2) == pytest.approx(0.2)


def test_rejects_invalid_configuration():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay=-1)


@pytest.mark.asyncio
async def test_cancellation_is_not_retried():
    policy = RetryPolicy(max_attempts=5, sleep=Recorder())
    calls = {"n": 0}

    async def cancelled():
        calls["n"] += 1
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await policy.run("op", cancelled)
    assert calls["n"] == 1
