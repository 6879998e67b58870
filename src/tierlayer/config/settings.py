"""
Application settings using Pydantic.

Provides environment-based configuration loading with TIERLAYER_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Environment classification threaded through every resolution
    environment: str = "development"

    # Apply
    max_workers: int = 4
    executor_command: str | None = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    # External collaborators
    inventory_file: str | None = None
    secrets_file: str | None = None

    # Environment variable prefixes for variables and secret sets
    var_env_prefix: str = "TIERLAYER_VAR_"
    secret_env_prefix: str = "TIERLAYER_SECRET_"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "TIERLAYER_"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
