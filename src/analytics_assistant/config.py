"""
Configuration management for Analytics Assistant

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["anthropic", "openai", "openrouter"]
ModelRef = Literal["router", "specialist", "orchestrator", "orchestrator_max"]


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: ProviderName = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    timeout_seconds: float = 60.0
    max_retries: int = 2


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Analytics-Assistant"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    default_provider: ProviderName = "anthropic"
    max_tokens: int = 4096
    llm_timeout_seconds: float = Field(default=60.0, description="Timeout for a single model call")
    llm_max_retries: int = Field(default=2, description="SDK retries on rate limits and transient provider errors")

    # Model references, one per agent capability
    router_model: str = Field(default="claude-3-5-haiku-latest", description="Model used by the triage agent")
    specialist_model: str = Field(default="claude-sonnet-4-20250514", description="Model used by specialists")
    orchestrator_model: str = Field(default="claude-sonnet-4-20250514", description="Model used by reflection")
    orchestrator_max_model: str = Field(default="claude-opus-4-20250514", description="Model used by reflection_max")

    # Backend RPC
    backend_url: str = Field(default="http://localhost:3001", description="Base URL of the dashboard RPC backend")
    backend_timeout_seconds: float = Field(default=30.0, description="Timeout for a single RPC call")
    forwarded_headers: str = Field(
        default="authorization,cookie,x-api-key",
        description="Comma-separated inbound headers forwarded to backend RPC calls",
    )

    # Database (conversation history)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/assistant.db",
        description="Database connection URL"
    )

    # Agent protocol
    preview_ttl_minutes: int = Field(default=10, description="Lifetime of an unconfirmed preview")
    read_retry_attempts: int = Field(default=1, description="Extra attempts for read-only tools on transport failure")
    run_timeout_seconds: float = Field(default=180.0, description="Upper bound for a single assistant run")

    # Security
    rate_limit_requests: int = Field(default=5, description="Max assistant requests per window per user")
    rate_limit_window_seconds: int = Field(default=60, description="Rate limit window length")
    max_message_length: int = Field(default=4000, description="Max characters in an inbound message")

    @field_validator("forwarded_headers", mode="before")
    @classmethod
    def parse_forwarded_headers(cls, v: str) -> str:
        return v.strip() if v else ""

    @property
    def forwarded_headers_list(self) -> list[str]:
        """Get the lower-cased list of forwarded header names."""
        if not self.forwarded_headers:
            return []
        return [h.strip().lower() for h in self.forwarded_headers.split(",") if h.strip()]

    def get_llm_config(self, model_ref: ModelRef = "specialist", provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for one of the agent model references."""
        provider = provider or self.default_provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
        }

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        model_map = {
            "router": self.router_model,
            "specialist": self.specialist_model,
            "orchestrator": self.orchestrator_model,
            "orchestrator_max": self.orchestrator_max_model,
        }

        if provider not in api_key_map:
            raise ValueError(f"Unknown LLM provider: {provider}")
        if model_ref not in model_map:
            raise ValueError(f"Unknown model reference: {model_ref}")

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model_map[model_ref],
            api_key=api_key_map[provider],
            base_url=base_url_map[provider],
            max_tokens=self.max_tokens,
            timeout_seconds=self.llm_timeout_seconds,
            max_retries=self.llm_max_retries,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
