"""Configuration management.

Uses pydantic-settings for type-safe configuration from environment variables.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_config_dir() -> Path:
    """Find the config directory by walking up from the package location.

    Looks for a 'config/' directory containing llm.yaml and prompts/.
    Falls back to relative Path("config") if not found.
    """
    # config.py -> core/ -> keygraph/ -> src/ -> root/
    package_dir = Path(__file__).resolve().parent.parent.parent.parent
    candidate = package_dir / "config"
    if candidate.is_dir():
        return candidate

    return Path("config")


class Settings(BaseSettings):
    """Application settings.

    All settings can be overridden via environment variables.
    Prefix: KEYGRAPH_
    """

    model_config = SettingsConfigDict(
        env_prefix="KEYGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars (like ANTHROPIC_API_KEY)
    )

    # Metadata store (SQLAlchemy)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./keygraph.db",
        description="SQLAlchemy database URL for ontology, schema and relationship records",
    )

    # Configuration paths
    config_path: Path = Field(
        default_factory=_find_config_dir,
        description="Path to configuration files (llm.yaml, prompts/)",
    )

    # Discovery
    column_feature_fk_min_confidence: float = Field(
        default=0.8,
        description="Minimum identifier-feature FK confidence to preserve without judging",
    )
    default_fk_target_column: str = Field(
        default="id",
        description="Target column assumed when a column-feature FK names only a table",
    )

    # Datasource connections
    connection_pool_size: int = Field(
        default=5,
        description="Pool size for each pooled datasource engine",
    )
    max_connections_per_user: int = Field(
        default=10,
        description="Upper bound on pooled datasource connections held for one user",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")  # 'json' or 'console'


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
