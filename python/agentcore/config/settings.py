"""
Configuration management using Pydantic Settings.

All values can be supplied through ``AGENTCORE_*`` environment variables or
a ``.env`` file. Services never read settings themselves: the container
builds them from one ``Settings`` instance at startup.
"""
import logging
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PricingOverride(BaseModel):
    """Per-model price override, USD per 1M tokens."""

    input_cost_per_1m_tokens: float = Field(ge=0.0)
    output_cost_per_1m_tokens: float = Field(ge=0.0)
    currency: str = "USD"


class Settings(BaseSettings):
    """Engine settings with validation and environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="AGENTCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="agentcore", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="development, staging, production")

    # API
    cors_origins: List[str] = Field(default=["*"], description="Allowed CORS origins")

    # Providers
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    anthropic_base_url: str = Field(default="https://api.anthropic.com", description="Anthropic API base URL")
    anthropic_version: str = Field(default="2023-06-01", description="anthropic-version header")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API base URL")
    provider_timeout: float = Field(default=120.0, gt=0, description="Provider HTTP timeout in seconds")
    default_model: str = Field(default="gpt-4o", description="Model used when an agent names none")
    embedding_model: str = Field(default="text-embedding-ada-002", description="Embedding model")

    # Execution
    cache_enabled: bool = Field(default=True, description="Enable execution caching")
    cache_ttl_seconds: int = Field(default=3600, ge=1, description="Default cache TTL")
    max_retries: int = Field(default=3, ge=0, le=10, description="Provider retries per execution")
    retry_base_delay: float = Field(default=1.0, ge=0.0, description="Backoff base delay in seconds")
    retry_max_delay: float = Field(default=30.0, ge=0.0, description="Backoff delay cap in seconds")
    history_max_records: int = Field(default=10_000, ge=100, description="Execution records kept in memory")

    # Pricing
    pricing_overrides: Dict[str, PricingOverride] = Field(
        default_factory=dict, description="Model -> price overrides merged over the built-in table"
    )
    default_input_cost_per_1m: float = Field(default=1.0, ge=0.0, description="Fallback input price")
    default_output_cost_per_1m: float = Field(default=2.0, ge=0.0, description="Fallback output price")

    # Orchestration
    max_parallel_tasks: int = Field(default=4, ge=1, le=256, description="Default parallel-mode bound")
    default_task_timeout_ms: Optional[int] = Field(default=None, ge=1000, description="Task timeout when unset")
    message_request_timeout: float = Field(default=60.0, gt=0, description="Request/response wait in seconds")
    max_finished_runs: int = Field(default=1000, ge=1, description="Finished runs kept for polling")

    # Retrieval
    search_top_k: int = Field(default=10, ge=1, le=100, description="Default top_k")
    search_similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="Default threshold")
    search_vector_weight: float = Field(default=0.7, ge=0.0, description="Default vector weight")
    search_keyword_weight: float = Field(default=0.3, ge=0.0, description="Default keyword weight")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format: json or text")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of allowed values."""
        allowed = ["development", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is valid."""
        allowed = ["json", "text"]
        if v not in allowed:
            raise ValueError(f"Log format must be one of {allowed}")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_log_level(self) -> int:
        """Get logging level as integer."""
        return getattr(logging, self.log_level)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Only the composition root (container / app factory) should call this.

    Returns:
        Settings: Engine settings
    """
    return Settings()
