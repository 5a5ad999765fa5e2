"""Tests for the retry policy."""

import asyncio

import pytest

from hybridqa.errors import BackendUnavailableError, PhaseTimeoutError
from hybridqa.models.config import RetryConfig
from hybridqa.scheduler.retry import backoff_delay, with_retries


class TestBackoffDelay:
    """Tests for backoff_delay."""

    def test_linear(self):
        policy = RetryConfig(backoff="linear", base_delay_ms=200)
        assert [backoff_delay(policy, n) for n in (1, 2, 3)] == pytest.approx([0.2, 0.4, 0.6])

    def test_exponential(self):
        policy = RetryConfig(backoff="exponential", base_delay_ms=200)
        assert [backoff_delay(policy, n) for n in (1, 2, 3)] == pytest.approx([0.2, 0.4, 0.8])


class _Flaky:
    def __init__(self, failures: list[Exception]):
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


@pytest.mark.asyncio
class TestWithRetries:
    """Tests for with_retries."""

    async def test_succeeds_after_failures(self):
        call = _Flaky([RuntimeError("rate limited"), RuntimeError("rate limited")])
        result = await with_retries(call, RetryConfig(count=3, base_delay_ms=0))
        assert result == "ok"
        assert call.calls == 3

    async def test_gives_up_after_count(self):
        call = _Flaky([RuntimeError("1"), RuntimeError("2"), RuntimeError("3")])
        with pytest.raises(RuntimeError, match="3"):
            await with_retries(call, RetryConfig(count=2, base_delay_ms=0))
        assert call.calls == 3

    async def test_zero_count_runs_once(self):
        call = _Flaky([ValueError("bad json")])
        with pytest.raises(ValueError):
            await with_retries(call, RetryConfig(count=0))
        assert call.calls == 1

    @pytest.mark.parametrize("error", [
        BackendUnavailableError("no client"),
        PhaseTimeoutError("visual", 100),
        asyncio.TimeoutError(),
    ])
    async def test_not_retried(self, error):
        call = _Flaky([error])
        with pytest.raises(type(error)):
            await with_retries(call, RetryConfig(count=3, base_delay_ms=0))
        assert call.calls == 1
