"""LLM integration: providers, prompts, error classification and resilience."""

from keygraph.llm.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from keygraph.llm.config import LLMConfig, load_llm_config
from keygraph.llm.errors import LLMError, LLMErrorType, classify_error, is_retryable
from keygraph.llm.prompts import PromptRenderer, PromptTemplate
from keygraph.llm.providers import LLMProvider, LLMRequest, LLMResponse, create_provider
from keygraph.llm.resilience import ResilientLLMClient
from keygraph.llm.retry import RetryConfig, retry_async

__all__ = [
    # Config
    "LLMConfig",
    "load_llm_config",
    # Providers
    "LLMProvider",
    "LLMRequest",
    "LLMResponse",
    "create_provider",
    # Prompts
    "PromptRenderer",
    "PromptTemplate",
    # Errors
    "LLMError",
    "LLMErrorType",
    "classify_error",
    "is_retryable",
    # Resilience
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "ResilientLLMClient",
    "RetryConfig",
    "retry_async",
]
