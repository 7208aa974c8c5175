"""Tests for the resilient LLM client."""

from unittest.mock import AsyncMock

import pytest

from keygraph.core.logging import end_run_metrics, start_run_metrics
from keygraph.llm.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from keygraph.llm.errors import LLMError, LLMErrorType
from keygraph.llm.providers.base import LLMRequest, LLMResponse
from keygraph.llm.resilience import ResilientLLMClient
from keygraph.llm.retry import RetryConfig

FAST_RETRY = RetryConfig(max_retries=2, initial_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture
def provider():
    provider = AsyncMock()
    provider.generate_response = AsyncMock(
        return_value=LLMResponse(content="{}", model="m", input_tokens=10, output_tokens=5)
    )
    return provider


@pytest.fixture
def request_():
    return LLMRequest(prompt="hello")


class TestResilientLLMClient:
    async def test_success_records_metrics(self, provider, request_):
        client = ResilientLLMClient(provider, CircuitBreaker(), FAST_RETRY)
        metrics = start_run_metrics("run-1")
        try:
            response = await client.generate_response(request_)
        finally:
            end_run_metrics()

        assert response.content == "{}"
        assert metrics.llm_calls == 1
        assert metrics.llm_input_tokens == 10
        assert metrics.llm_output_tokens == 5

    async def test_transient_failure_is_retried(self, provider, request_):
        provider.generate_response.side_effect = [
            TimeoutError("slow"),
            LLMResponse(content="{}", model="m"),
        ]
        breaker = CircuitBreaker()
        client = ResilientLLMClient(provider, breaker, FAST_RETRY)

        await client.generate_response(request_)

        assert provider.generate_response.await_count == 2
        assert breaker.consecutive_failures == 0

    async def test_failed_call_counts_once_on_breaker(self, provider, request_):
        provider.generate_response.side_effect = TimeoutError("slow")
        breaker = CircuitBreaker(threshold=5)
        client = ResilientLLMClient(provider, breaker, FAST_RETRY)

        with pytest.raises(LLMError):
            await client.generate_response(request_)

        assert provider.generate_response.await_count == 3
        assert breaker.consecutive_failures == 1

    async def test_breaker_opens_and_short_circuits(self, provider, request_):
        provider.generate_response.side_effect = LLMError(
            LLMErrorType.AUTH, "authentication failed", False, 401
        )
        breaker = CircuitBreaker(threshold=2, reset_after=60)
        client = ResilientLLMClient(provider, breaker, FAST_RETRY)

        for _ in range(2):
            with pytest.raises(LLMError):
                await client.generate_response(request_)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await client.generate_response(request_)
        # Non-retryable: one attempt per call, none once open
        assert provider.generate_response.await_count == 2
