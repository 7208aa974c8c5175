"""Circuit breaker and retry wrapped around an LLM provider.

ResilientLLMClient exposes the provider interface, so call sites stay
unaware of the resilience policy:

    client = ResilientLLMClient(provider, CircuitBreaker(threshold=5), RetryConfig())
    response = await client.generate_response(request)
"""

from __future__ import annotations

import asyncio

from keygraph.core.logging import get_logger, increment_llm_call
from keygraph.llm.circuit_breaker import CircuitBreaker
from keygraph.llm.errors import LLMError
from keygraph.llm.providers.base import LLMProvider, LLMRequest, LLMResponse
from keygraph.llm.retry import RetryConfig, retry_async

logger = get_logger(__name__)


class ResilientLLMClient(LLMProvider):
    """LLM provider decorator adding circuit breaking and retry.

    ``allow()`` is checked once per call, before any attempt. The outcome of
    the whole retried call (not of each attempt) is recorded on the breaker.
    """

    def __init__(
        self,
        provider: LLMProvider,
        circuit_breaker: CircuitBreaker | None = None,
        retry_config: RetryConfig | None = None,
    ):
        self.provider = provider
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.retry_config = retry_config or RetryConfig()

    async def generate_response(self, request: LLMRequest) -> LLMResponse:
        """Call the provider under the breaker and retry policy.

        Raises:
            CircuitOpenError: The breaker rejected the call; the provider was not called
            LLMError: The call failed permanently or exhausted its retries
        """
        self.circuit_breaker.allow()

        try:
            response = await retry_async(
                lambda: self.provider.generate_response(request), self.retry_config
            )
        except LLMError as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "llm_call_failed",
                error_type=e.error_type.value,
                retryable=e.retryable,
                consecutive_failures=self.circuit_breaker.consecutive_failures,
            )
            raise
        except asyncio.CancelledError:
            self.circuit_breaker.release_probe()
            raise

        self.circuit_breaker.record_success()
        increment_llm_call(response.input_tokens, response.output_tokens)
        return response

    def get_model_for_tier(self, tier: str) -> str:
        return self.provider.get_model_for_tier(tier)
