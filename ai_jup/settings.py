"""Application settings using pydantic-settings.

Loads configuration from environment variables with .env file support.
"""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,  # Allow both field name and alias
    )

    # Environment
    environment: Literal["development", "staging", "production", "testing"] = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # LLM Configuration
    # Supports: anthropic, openai, openrouter, ollama, together, groq, or custom
    llm_provider: Literal[
        "anthropic", "openai", "openrouter", "ollama", "together", "groq", "custom"
    ] = Field(
        default="anthropic",
        description="LLM provider used for prompt cells",
    )
    llm_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Default model when the request does not name one",
    )
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=4096, ge=1, le=64000)
    llm_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key for the LLM provider",
        validation_alias=AliasChoices("llm_api_key", "anthropic_api_key", "openai_api_key"),
    )
    llm_base_url: str | None = Field(
        default=None,
        description="Custom base URL for OpenAI-compatible APIs",
    )

    # Upstream streaming
    # - "async": use the model client's native async stream
    # - "thread": run the blocking stream in a worker thread with a bounded hand-off
    llm_stream_mode: Literal["async", "thread"] = "async"
    llm_stream_queue_size: int = Field(default=64, ge=1, le=4096)
    model_turn_timeout_seconds: float = Field(default=120.0, gt=0, le=1800)
    llm_max_retries: int = Field(default=3, ge=1, le=10)
    llm_retry_delays: list[float] = Field(default_factory=lambda: [1.0, 2.0, 4.0])
    stream_timeout_seconds: float = Field(
        default=900.0,
        gt=0,
        description="Upper bound for one whole conversation stream",
    )
    disconnect_poll_seconds: float = Field(default=0.5, gt=0, le=10)

    # Conversation loop
    default_max_steps: int = Field(default=5, ge=0)
    max_steps_limit: int = Field(default=10, ge=0, le=100)
    step_unit: Literal["round_trips", "tool_calls"] = Field(
        default="round_trips",
        description="What one step of the step bound counts",
    )

    # Context bundle caps
    max_prompt_chars: int = Field(default=20_000, ge=1)
    max_context_chars: int = Field(default=100_000, ge=0)
    max_context_items: int = Field(default=200, ge=0)

    # Tools
    tool_timeout_seconds: float = Field(default=60.0, gt=0, le=3600)
    tool_settle_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=600,
        description="How long a timed-out call may take to stop before its session is quarantined",
    )
    max_tool_argument_depth: int = Field(default=32, ge=1, le=256)

    # Execution backend
    execution_backend: Literal["local", "http"] = "local"
    execution_backend_url: str = Field(
        default="http://localhost:8888/ai-jup/exec",
        description="Base URL of the remote execution service (http backend)",
    )
    execution_backend_token: SecretStr = Field(default=SecretStr(""))

    # API
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key for authentication (empty = auth disabled outside production)",
    )
    jwt_secret: SecretStr = Field(default=SecretStr(""))
    jwt_expiry_hours: int = Field(default=72, ge=1, le=720)
    allowed_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins",
    )
    prompt_rate_limit: str = Field(default="30/minute")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded once and reused.
    """
    return Settings()
