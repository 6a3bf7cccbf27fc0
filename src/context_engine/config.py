"""Configuration management with pydantic-settings for the Compressed Context Engine.

Practices applied:
- pydantic-settings v2 for type-safe configuration
- Automatic .env file loading with proper precedence
- Validation with clear error messages
- SecretStr for API keys
- Frozen config (thread-safe, immutable after load)

References:
- Pydantic Settings: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

import logging
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("context_engine.config")

__all__ = [
    "DEFAULT_MAX_TOKENS",
    "EMBEDDING_DIMENSIONS",
    "EMBEDDING_MODEL",
    "MAX_TOKENS_CEILING",
    "EngineConfig",
    "get_config",
    "reset_config",
]

# Budget contract of the compressed context operation
DEFAULT_MAX_TOKENS = 2000
MAX_TOKENS_CEILING = 8000

# Embedding defaults (OpenAI text-embedding-3-small, 1536 dims)
EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMENSIONS = 1536


class EngineConfig(BaseSettings):
    """Configuration for the Compressed Context Engine.

    Loads from (in order of precedence):
    1. Environment variables (highest priority)
    2. .env file in working directory
    3. Default values (lowest priority)

    Attributes:
        qdrant_host: Qdrant server hostname
        qdrant_port: Qdrant server port
        qdrant_api_key: Optional API key for Qdrant authentication
        collection_documents: Collection holding L2 document summaries
        collection_topics: Collection holding L3 topic summaries
        collection_concepts: Collection holding L4 concepts
        embedding_base_url: Base URL of the OpenAI-compatible embedding API
        embedding_model: Embedding model name
        embedding_dimensions: Expected vector length
        default_max_tokens: Budget used when the caller omits max_tokens
        max_tokens_ceiling: Hard budget ceiling, caller values are clamped to it
        candidate_pool_size: Top-K candidates fetched per layer before allocation
        similarity_threshold: Minimum similarity for a candidate to be returned
        retrieval_workers: Thread pool size for per-layer fan-out
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        validate_default=True,
        frozen=True,
        extra="ignore",
    )

    # Vector store
    qdrant_host: str = Field(default="localhost", description="Qdrant server hostname")

    qdrant_port: int = Field(
        default=6333, ge=1, le=65535, description="Qdrant server port"
    )

    qdrant_api_key: SecretStr | None = Field(
        default=None, description="Optional API key for Qdrant authentication"
    )

    qdrant_use_https: bool = Field(
        default=False, description="Use HTTPS for Qdrant connections"
    )

    qdrant_timeout: int = Field(
        default=10, ge=1, le=120, description="Qdrant client timeout in seconds"
    )

    collection_documents: str = Field(
        default="document-summaries", description="L2 document summary collection"
    )

    collection_topics: str = Field(
        default="knowledge-topics", description="L3 topic summary collection"
    )

    collection_concepts: str = Field(
        default="knowledge-concepts", description="L4 concept collection"
    )

    # Embedding service
    embedding_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible embeddings endpoint",
    )

    embedding_model: str = Field(default=EMBEDDING_MODEL, description="Embedding model")

    embedding_dimensions: int = Field(
        default=EMBEDDING_DIMENSIONS,
        ge=64,
        le=4096,
        description="Vector dimensionality returned by the embedding model",
    )

    embedding_api_key: SecretStr | None = Field(
        default=None, description="API key for the embedding service"
    )

    embedding_timeout: float = Field(
        default=15.0, gt=0, le=120, description="Embedding read timeout in seconds"
    )

    # Budget and retrieval
    default_max_tokens: int = Field(
        default=DEFAULT_MAX_TOKENS,
        ge=0,
        description="Token budget used when the request omits max_tokens",
    )

    max_tokens_ceiling: int = Field(
        default=MAX_TOKENS_CEILING,
        ge=0,
        le=MAX_TOKENS_CEILING,
        description="Hard ceiling applied to every requested budget",
    )

    candidate_pool_size: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Top-K candidates fetched per layer before budget allocation",
    )

    similarity_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Minimum similarity for a candidate to enter the pool",
    )

    retrieval_workers: int = Field(
        default=3, ge=1, le=16, description="Worker threads for per-layer fan-out"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    log_format: str = Field(default="json", description="Log format: json or text")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in {"json", "text"}:
            raise ValueError(f"Invalid log format: {v} (expected json or text)")
        return fmt

    @model_validator(mode="after")
    def validate_budget_config(self) -> "EngineConfig":
        if self.default_max_tokens > self.max_tokens_ceiling:
            raise ValueError(
                f"default_max_tokens ({self.default_max_tokens}) must not exceed "
                f"max_tokens_ceiling ({self.max_tokens_ceiling})"
            )
        return self

    def get_qdrant_url(self) -> str:
        """Get full Qdrant URL."""
        scheme = "https" if self.qdrant_use_https else "http"
        return f"{scheme}://{self.qdrant_host}:{self.qdrant_port}"


@lru_cache(maxsize=1)
def get_config() -> EngineConfig:
    """Get global configuration singleton.

    First call loads from environment + .env file, subsequent calls return
    the cached instance.

    Returns:
        EngineConfig singleton instance.

    Raises:
        ValidationError: If configuration values are invalid.
    """
    return EngineConfig()


def reset_config() -> None:
    """Reset configuration singleton for testing.

    Warning:
        Only use in test code. Production code should not reset config.
    """
    get_config.cache_clear()
