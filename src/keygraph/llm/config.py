"""LLM configuration models and loader.

Loads configuration from config/llm.yaml and provides typed access to
providers, features, limits, resilience and evaluation settings.
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from keygraph.core.config import get_settings
from keygraph.llm.retry import RetryConfig


class ProviderConfig(BaseModel):
    """Configuration for a single LLM provider."""

    api_key_env: str
    default_model: str
    models: dict[str, str]


class FeatureConfig(BaseModel):
    """Configuration for an LLM feature."""

    enabled: bool = True
    model_tier: str = "balanced"
    prompt_file: str | None = None
    description: str = ""


class LLMFeatures(BaseModel):
    """All LLM features configuration."""

    fk_semantic_evaluation: FeatureConfig = Field(
        default_factory=lambda: FeatureConfig(prompt_file="fk_semantic_evaluation")
    )


class LLMLimits(BaseModel):
    """Request size limits."""

    max_output_tokens_per_request: int = 4000
    max_sample_values: int = 5


class RetrySettings(BaseModel):
    """Exponential backoff for judge calls."""

    max_retries: int = 3
    initial_delay_seconds: float = 0.5
    max_delay_seconds: float = 10.0
    multiplier: float = 2.0
    jitter: float = 0.1
    max_same_error_type: int = 0

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            initial_delay=self.initial_delay_seconds,
            max_delay=self.max_delay_seconds,
            multiplier=self.multiplier,
            jitter=self.jitter,
            max_same_error_type=self.max_same_error_type,
        )


class CircuitBreakerSettings(BaseModel):
    """Consecutive-failure breaker for judge calls."""

    threshold: int = 5
    reset_after_seconds: float = 30.0


class LLMResilience(BaseModel):
    retry: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)


class EvaluationSettings(BaseModel):
    """Batching and acceptance settings for semantic evaluation."""

    batch_size: int = Field(default=20, ge=1)
    max_concurrent: int = Field(default=4, ge=1)
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    temperature: float = 0.3


class LLMConfig(BaseModel):
    """Complete LLM configuration from llm.yaml."""

    version: str = "1.0.0"
    providers: dict[str, ProviderConfig]
    active_provider: str
    features: LLMFeatures = Field(default_factory=LLMFeatures)
    limits: LLMLimits = Field(default_factory=LLMLimits)
    resilience: LLMResilience = Field(default_factory=LLMResilience)
    evaluation: EvaluationSettings = Field(default_factory=EvaluationSettings)


def load_llm_config(config_path: Path | None = None) -> LLMConfig:
    """Load LLM configuration from YAML.

    Args:
        config_path: Path to llm.yaml. If None, uses llm.yaml in the settings config path

    Returns:
        Parsed LLM configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        pydantic.ValidationError: If config doesn't match schema
    """
    if config_path is None:
        config_path = get_settings().config_path / "llm.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"LLM config not found: {config_path}. Create config/llm.yaml from the template."
        )

    with open(config_path) as f:
        data = yaml.safe_load(f)

    return LLMConfig(**data)
