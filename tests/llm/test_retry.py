"""Tests for exponential backoff retry."""

import pytest

from keygraph.llm.errors import LLMError, LLMErrorType
from keygraph.llm.retry import RetryConfig, apply_jitter, retry_async


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _failing(errors, result="ok"):
    """Coroutine function raising each error in turn, then returning result."""
    remaining = list(errors)
    calls = []

    async def fn():
        calls.append(1)
        if remaining:
            raise remaining.pop(0)
        return result

    fn.calls = calls
    return fn


NO_JITTER = RetryConfig(max_retries=3, initial_delay=0.5, max_delay=10.0, jitter=0.0)


class TestRetryConfig:
    def test_delays_grow_exponentially(self):
        assert [NO_JITTER.delay_for(n) for n in range(4)] == [0.5, 1.0, 2.0, 4.0]

    def test_delay_capped(self):
        config = RetryConfig(initial_delay=4.0, max_delay=10.0, multiplier=3.0)
        assert config.delay_for(2) == 10.0

    def test_jitter_stays_within_fraction(self):
        for _ in range(50):
            assert 0.9 <= apply_jitter(1.0, 0.1) <= 1.1

    def test_zero_jitter_is_identity(self):
        assert apply_jitter(2.5, 0.0) == 2.5


class TestRetryAsync:
    async def test_success_first_attempt(self):
        sleep = RecordingSleep()
        fn = _failing([])

        assert await retry_async(fn, NO_JITTER, sleep=sleep) == "ok"
        assert len(fn.calls) == 1
        assert sleep.delays == []

    async def test_retries_transient_errors(self):
        sleep = RecordingSleep()
        fn = _failing([TimeoutError("slow"), ConnectionError("reset")])

        assert await retry_async(fn, NO_JITTER, sleep=sleep) == "ok"
        assert len(fn.calls) == 3
        assert sleep.delays == [0.5, 1.0]

    async def test_non_retryable_aborts_immediately(self):
        sleep = RecordingSleep()
        auth = LLMError(LLMErrorType.AUTH, "authentication failed", False, 401)
        fn = _failing([auth])

        with pytest.raises(LLMError) as exc_info:
            await retry_async(fn, NO_JITTER, sleep=sleep)

        assert exc_info.value.error_type == LLMErrorType.AUTH
        assert len(fn.calls) == 1
        assert sleep.delays == []

    async def test_exhausted_retries_raise_last_error(self):
        sleep = RecordingSleep()
        fn = _failing([TimeoutError("slow")] * 10)

        with pytest.raises(LLMError) as exc_info:
            await retry_async(fn, NO_JITTER, sleep=sleep)

        assert exc_info.value.retryable
        assert len(fn.calls) == 4
        assert len(sleep.delays) == 3
        assert isinstance(exc_info.value.__cause__, TimeoutError)

    async def test_same_error_type_limit(self):
        sleep = RecordingSleep()
        config = RetryConfig(max_retries=5, jitter=0.0, max_same_error_type=2)
        fn = _failing([TimeoutError("slow")] * 10)

        with pytest.raises(LLMError):
            await retry_async(fn, config, sleep=sleep)

        assert len(fn.calls) == 2
