"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    gateway_api_key: str = Field(..., alias="AI_GATEWAY_API_KEY")
    gateway_model: str = Field(default="google/gemini-2.5-flash", alias="AI_GATEWAY_MODEL")
    gateway_base_url: str = Field(
        default="https://ai.gateway.lovable.dev/v1",
        alias="AI_GATEWAY_BASE_URL",
    )
    database_path: Path = Field(default=Path("taskchat.db"), alias="DATABASE_PATH")
    request_timeout_seconds: float = Field(default=30.0, alias="REQUEST_TIMEOUT_SECONDS")
    # Upper bound on model/tool round trips per chat request.
    max_tool_rounds: int = Field(default=5, ge=1, alias="MAX_TOOL_ROUNDS")
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()
