"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """LLM API configuration."""

    model: str = Field(
        default="openai/gpt-4o-mini",
        description="LiteLLM model string, e.g. 'openai/gpt-4o', 'openai/o4-mini', "
                    "'anthropic/claude-3-5-sonnet-20241022'. The provider prefix tells "
                    "LiteLLM which API to route the request to.",
    )
    api_key: str = Field(default="", description="API key for the model's provider")
    temperature: float = Field(default=0.2, description="Default sampling temperature")
    max_output_tokens: int = Field(default=800, description="Default output token limit")
    timeout_seconds: float = Field(
        default=60.0, gt=0, description="Deadline for a single model response"
    )
    num_retries: int = Field(
        default=2,
        ge=0,
        description="LiteLLM retries for rate limits, server errors and transport timeouts",
    )
    empty_response_retries: int = Field(
        default=2,
        ge=0,
        description="Extra attempts when the model returns no content or a truncated empty reply",
    )
    retry_delay_seconds: float = Field(
        default=0.25,
        ge=0,
        description="Delay before the first empty-response retry; grows linearly per attempt",
    )

    model_config = SettingsConfigDict(env_prefix="LLM_")


class LoopSettings(BaseSettings):
    """Tool-loop limits and per-mode overrides."""

    max_tool_calls: int = Field(
        default=4, ge=0, description="Tool calls allowed per follow-up turn"
    )
    loop_settings_max_tool_calls: int = Field(
        default=20, ge=0, description="Tool calls allowed per turn in Loop Settings mode"
    )
    tool_timeout_seconds: float = Field(
        default=60.0, gt=0, description="Deadline for a single tool execution"
    )
    user_behavior_max_output_tokens: int = Field(default=1200)
    loop_settings_max_output_tokens: int = Field(default=2000)
    user_behavior_temperature: float = Field(default=0.4)
    loop_settings_temperature: float = Field(default=0.3)

    model_config = SettingsConfigDict(env_prefix="LOOP_")


class ToolSettings(BaseSettings):
    """External tool server configuration."""

    server_command: str | None = Field(
        default=None,
        description="Executable that starts an MCP tool server over stdio, e.g. 'node'. "
                    "If unset, only locally registered tools are available.",
    )
    server_args: list[str] = Field(
        default_factory=list,
        description="Arguments for the MCP server command. "
                    "Set via TOOLS__SERVER_ARGS='[\"dist/index.js\"]'",
    )

    model_config = SettingsConfigDict(env_prefix="TOOL_")


class GlucoseThresholds(BaseSettings):
    """Patient glucose thresholds (mg/dL) and overnight window."""

    severe_hypo: int = Field(default=54, description="Severe low (<=)")
    hypo: int = Field(default=70, description="Low (<)")
    hyper: int = Field(default=180, description="High (>)")
    severe_hyper: int = Field(default=250, description="Severe high (>=)")
    night_start_hour: int = Field(default=0, ge=0, le=23)
    night_end_hour: int = Field(default=6, ge=0, le=23)

    model_config = SettingsConfigDict(env_prefix="GLUCOSE_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Sub-configurations
    llm: LLMSettings = Field(default_factory=LLMSettings)
    loop: LoopSettings = Field(default_factory=LoopSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    glucose: GlucoseThresholds = Field(default_factory=GlucoseThresholds)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
