"""Application configuration settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration values for the query engine and its http service."""

    app_name: str = "PulseQuery API"
    environment: str = "development"

    # analytical store - None means an in-memory duckdb database
    database_path: str | None = Field(default=None, description="DuckDB file path")
    bootstrap_schema: bool = Field(
        default=True,
        description="Create the event tables on start if they don't exist",
    )

    # catalog
    catalog_paths: list[Path] = Field(
        default_factory=list,
        description="Extra directories with YAML query definitions",
    )

    # execution
    query_timeout_seconds: float = Field(default=30.0, gt=0)
    default_limit: int = Field(default=100, ge=1)
    max_limit: int = Field(default=1000, ge=1)

    # tenants - website id -> domain, used by the static tenant resolver
    website_domains: dict[str, str] = Field(default_factory=dict)

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="PULSEQUERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
