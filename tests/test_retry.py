"""Tests for the exponential-backoff retry helper."""

from unittest.mock import AsyncMock

import pytest

from visibility_report.pipeline.retry import with_retry


class _Flaky:
    def __init__(self, failures: int, exc: Exception | None = None):
        self.failures = failures
        self.calls = 0
        self.exc = exc or RuntimeError("transient")

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return "ok"


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try_does_not_sleep(self):
        sleep = AsyncMock()
        fn = _Flaky(failures=0)
        assert await with_retry(fn, max_retries=3, sleep=sleep) == "ok"
        assert fn.calls == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backoff_schedule_is_1_2_4_seconds(self):
        sleep = AsyncMock()
        fn = _Flaky(failures=3)
        assert await with_retry(fn, max_retries=3, base_delay=0.5, sleep=sleep) == "ok"
        assert fn.calls == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_budget_and_reraises_last_error(self):
        sleep = AsyncMock()
        fn = _Flaky(failures=10)
        with pytest.raises(RuntimeError, match="transient"):
            await with_retry(fn, max_retries=3, sleep=sleep)
        assert fn.calls == 4
        assert sleep.await_count == 3

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self):
        fn = _Flaky(failures=1)
        with pytest.raises(RuntimeError):
            await with_retry(fn, max_retries=0, sleep=AsyncMock())
        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_errors_outside_retry_on_propagate_immediately(self):
        fn = _Flaky(failures=1, exc=KeyError("fatal"))
        with pytest.raises(KeyError):
            await with_retry(fn, max_retries=3, retry_on=(RuntimeError,), sleep=AsyncMock())
        assert fn.calls == 1
