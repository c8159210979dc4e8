"""
Configuration management for the CorchCRM orchestrator.
Loads settings from environment variables with validation.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CORCH_",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Generation Backend Settings
    # ==========================================================================
    azure_openai_endpoint: Optional[str] = Field(
        default=None,
        description="Azure OpenAI endpoint for model inference"
    )

    azure_openai_deployment: str = Field(
        default="gpt-4o-mini",
        description="Azure OpenAI deployment (model) name"
    )

    azure_openai_api_version: str = Field(
        default="2024-08-01-preview",
        description="Azure OpenAI API version"
    )

    azure_openai_api_key: Optional[str] = Field(
        default=None,
        description="Azure OpenAI key; DefaultAzureCredential is used when unset"
    )

    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key, used when no Azure endpoint is configured"
    )

    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model identifier"
    )

    generation_temperature: float = Field(
        default=0.0,
        ge=0,
        le=2,
        description="Sampling temperature; kept low for repeatable output"
    )

    generation_max_tokens: int = Field(
        default=2048,
        description="Maximum completion tokens per call"
    )

    generation_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single generation call"
    )

    # ==========================================================================
    # Retry Settings
    # ==========================================================================
    generation_max_attempts: int = Field(
        default=1,
        ge=1,
        description="Engine-level attempts on timeout/unavailable (1 = no retry)"
    )

    retry_delay_seconds: float = Field(
        default=1.0,
        description="Initial delay between retries in seconds"
    )

    retry_backoff_factor: float = Field(
        default=2.0,
        description="Backoff multiplier for retry delays"
    )

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    app_name: str = Field(
        default="CorchCRM Orchestrator",
        description="Application name"
    )

    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )

    dry_run_mode: bool = Field(
        default=False,
        description="Skip the generation backend and return no suggestions"
    )

    ingest_min_text_length: int = Field(
        default=10,
        ge=0,
        description="Texts shorter than this are not sent to the model"
    )

    add_followup_tasks: bool = Field(
        default=True,
        description="Append companion follow-up tasks for deal stage changes"
    )

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)"
    )

    redact_pii: bool = Field(
        default=True,
        description="Redact PII from logs"
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def is_dry_run() -> bool:
    """Check if the generation backend should be bypassed."""
    settings = get_settings()
    return settings.dry_run_mode or not (
        settings.azure_openai_endpoint or settings.openai_api_key
    )
