"""Anthropic Claude provider implementation."""

import os
from typing import Any, cast

import anthropic
from anthropic.types import MessageParam
from pydantic import BaseModel

from keygraph.llm.errors import LLMError, LLMErrorType, classify_error
from keygraph.llm.providers.base import LLMProvider, LLMRequest, LLMResponse

# Extended thinking requires a budget below max_tokens
_THINKING_BUDGET_TOKENS = 2048

_JSON_INSTRUCTION = (
    "Respond with valid JSON only. "
    "Do not use markdown code blocks or any other formatting. "
    "Your entire response should be parseable as JSON."
)


class AnthropicConfig(BaseModel):
    """Configuration for Anthropic provider."""

    api_key_env: str
    default_model: str
    models: dict[str, str]
    model_tier: str | None = None


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider using the async client."""

    def __init__(self, config: AnthropicConfig, client: anthropic.AsyncAnthropic | None = None):
        """Initialize Anthropic provider.

        Args:
            config: Provider configuration
            client: Pre-built client; created from the API key env var if None

        Raises:
            ValueError: If API key environment variable not set
        """
        self.config = config
        self.model = (
            self.get_model_for_tier(config.model_tier)
            if config.model_tier
            else config.default_model
        )

        if client is None:
            api_key = os.getenv(config.api_key_env)
            if not api_key:
                raise ValueError(
                    f"Missing environment variable: {config.api_key_env}. "
                    f"Set your Anthropic API key in .env file."
                )
            client = anthropic.AsyncAnthropic(api_key=api_key)
        self.client = client

    async def generate_response(self, request: LLMRequest) -> LLMResponse:
        """Send a request to the Messages API.

        Raises:
            LLMError: Classified API failure, chained to the SDK exception
        """
        system_parts = [request.system] if request.system else []
        if request.response_format == "json":
            system_parts.append(_JSON_INSTRUCTION)

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": request.max_tokens,
            "messages": [cast(MessageParam, {"role": "user", "content": request.prompt})],
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        if request.thinking:
            # Temperature must stay at its default when thinking is enabled
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": _THINKING_BUDGET_TOKENS}
            kwargs["max_tokens"] = max(request.max_tokens, _THINKING_BUDGET_TOKENS + 1024)
        else:
            kwargs["temperature"] = request.temperature

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise classify_error(e) from e

        content = "".join(block.text for block in response.content if block.type == "text")
        if not content:
            raise LLMError(
                LLMErrorType.UNKNOWN,
                f"No text content in response. Content blocks: "
                f"{[b.type for b in response.content]}",
                retryable=False,
                model=response.model,
            )

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    def get_model_for_tier(self, tier: str) -> str:
        """Get Claude model name for tier, falling back to the default model."""
        return self.config.models.get(tier, self.config.default_model)
