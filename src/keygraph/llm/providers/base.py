"""Abstract base class for LLM providers.

This module defines the interface that all LLM providers must implement.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class LLMRequest(BaseModel):
    """Request to LLM provider."""

    prompt: str
    system: str | None = None
    max_tokens: int = 4000
    temperature: float = 0.0
    thinking: bool = False
    response_format: str = "json"  # "json" or "text"


class LLMResponse(BaseModel):
    """Response from LLM provider."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMProvider(ABC):
    """Abstract base for LLM providers."""

    @abstractmethod
    async def generate_response(self, request: LLMRequest) -> LLMResponse:
        """Send a completion request to the provider.

        Args:
            request: The LLM request with prompt and parameters

        Returns:
            The model's response

        Raises:
            LLMError: Classified provider failure
        """

    @abstractmethod
    def get_model_for_tier(self, tier: str) -> str:
        """Get model name for a given tier ('fast', 'balanced')."""
