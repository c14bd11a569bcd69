"""
Configuration and settings for the homework backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (any SQLAlchemy URL, e.g. sqlite:///homework.db or Postgres)
    database_url: Optional[str] = Field(default=None)

    # Google Sign-In audience used to verify ID tokens
    google_client_id: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    cors_origins: str = Field(default="*")
    static_dir: Optional[str] = Field(default=None)
    log_level: str = Field(default="INFO")


def parse_cors_origins(value: str) -> list[str]:
    if not value:
        return []
    if value.strip() == "*":
        return ["*"]
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
