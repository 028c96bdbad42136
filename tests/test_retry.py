import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from gopro_fleet.errors import Unreachable
from gopro_fleet.retry import NO_RETRY, RetryPolicy


def _flaky(failures):
    """Operation that raises each of failures in turn, then returns 'ok'"""
    calls = []
    errors = list(failures)

    async def operation():
        calls.append(len(calls) + 1)
        if errors:
            raise errors.pop(0)
        return "ok"

    return operation, calls


@pytest.mark.unit
class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.delay == 2.0

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"delay": -1}])
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    @pytest.mark.asyncio
    async def test_succeeds_on_third_attempt(self):
        operation, calls = _flaky([Unreachable("cam", "down"), Unreachable("cam", "down")])

        with patch("gopro_fleet.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await RetryPolicy().run(operation, "Start")

        assert result == "ok"
        assert calls == [1, 2, 3]
        assert [c.args for c in sleep.await_args_list] == [(2.0,), (2.0,)]

    @pytest.mark.asyncio
    async def test_third_failure_is_raised_unchanged(self):
        third = Unreachable("cam", "third")
        operation, calls = _flaky([Unreachable("cam", "first"), Unreachable("cam", "second"), third])

        with patch("gopro_fleet.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(Unreachable) as ei:
                await RetryPolicy().run(operation, "Start")

        assert ei.value is third
        assert len(calls) == 3
        # no sleep after the final attempt
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_first_success_does_not_sleep(self):
        operation, calls = _flaky([])
        with patch("gopro_fleet.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await RetryPolicy().run(operation) == "ok"
        assert calls == [1]
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_retry_policy_runs_once(self):
        operation, calls = _flaky([RuntimeError("boom")])
        with pytest.raises(RuntimeError):
            await NO_RETRY.run(operation)
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_really_waits_between_attempts(self):
        operation, _ = _flaky([RuntimeError("boom")])
        loop = asyncio.get_running_loop()
        started = loop.time()
        await RetryPolicy(max_attempts=2, delay=0.05).run(operation)
        assert loop.time() - started >= 0.04
