"""
Tally configuration module.

Loads settings from environment variables with sensible defaults.
Uses pydantic-settings for validation and type coercion.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # -------------------------------------------------------------------
    # PostgreSQL
    # -------------------------------------------------------------------
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "tally"
    postgres_user: str = "tally_user"
    postgres_password: str = "change_me"
    database_url: str = ""  # overrides the postgres_* parts when set

    # -------------------------------------------------------------------
    # Service
    # -------------------------------------------------------------------
    tally_port: int = 8082
    log_level: str = "INFO"

    # -------------------------------------------------------------------
    # Provider backends
    # -------------------------------------------------------------------
    use_live_backends: bool = True
    provider_timeout_seconds: float = 60.0
    default_lookback_days: int = 30
    simulated_seed: int = 42
    aws_default_region: str = "us-east-1"

    # -------------------------------------------------------------------
    # Derived helpers
    # -------------------------------------------------------------------
    @property
    def postgres_url(self) -> str:
        """Build a full PostgreSQL connection URL."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def sqlalchemy_url(self) -> str:
        """URL handed to the SQLAlchemy engine."""
        return self.database_url or self.postgres_url

    model_config = {
        "env_prefix": "",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
