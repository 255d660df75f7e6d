"""
Provider settings using Pydantic.

Provides environment-based configuration loading with OTC_ prefix.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Provider-wide settings."""

    # Cloud
    region: str = "eu-de"
    cloud: str = "otc.t-systems.com"
    endpoint_overrides: dict[str, str] = {}

    # Credentials, normally issued by the host
    token: str | None = None
    project_id: str | None = None
    domain_id: str | None = None

    # HTTP
    http_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=5, ge=0)
    retry_backoff: float = 1.0
    retry_backoff_max: float = 30.0

    # Operation timeouts in seconds; read has no default deadline
    default_create_timeout: float = 600.0
    default_update_timeout: float = 600.0
    default_delete_timeout: float = 600.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "OTC_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
