"""
Configuration and settings for the famipoints service layer.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceType(StrEnum):
    DATABASE = "database"
    REST_API = "rest-api"


# Values shipped in sample env files; treated as unset.
PLACEHOLDER_VALUES = frozenset(
    {
        "your-database-url-here",
        "your-api-base-url-here",
        "your-api-key-here",
    }
)


class Settings(BaseSettings):
    """Environment-backed settings for the services and the REST server."""

    model_config = SettingsConfigDict(
        env_prefix="FAMIPOINTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Kept as a plain string; unsupported values are rejected at first use.
    service_type: str = Field(default=ServiceType.DATABASE.value)

    # Embedded store (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Remote REST API
    api_base_url: Optional[str] = Field(default=None)
    api_key: Optional[str] = Field(default=None)
    token_file: Optional[str] = Field(default=None)
    request_timeout: Optional[float] = Field(default=None)

    # REST server
    api_prefix: str = Field(default="")
    jwt_secret: str = Field(default="change-me")
    access_token_minutes: int = Field(default=60 * 24)


def is_configured(value: Optional[str]) -> bool:
    return bool(value) and value not in PLACEHOLDER_VALUES


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
