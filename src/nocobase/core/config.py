"""Configuration management for the NocoBase database layer.

This module uses Pydantic Settings to load and validate configuration from
environment variables and .env files. Configuration is loaded once and is
immutable during runtime.
"""

import re
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

TABLE_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_]*$")


class Settings(BaseSettings):
    """Database layer configuration settings.

    Settings are loaded from environment variables and .env files.
    All configuration values are validated at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="NOCOBASE_",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "production", "testing"] = "development"

    # Database Settings
    database_url: str = "sqlite+aiosqlite:///./storage/db/nocobase.sqlite"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 3600
    db_echo: bool = False

    # Schema Settings
    table_prefix: str = ""
    identifier_max_length: int = Field(
        default=63,
        ge=1,
        description="Longest identifier the target database accepts (PostgreSQL: 63)",
    )

    # Logging Settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    @field_validator("table_prefix")
    @classmethod
    def validate_table_prefix(cls, v: str) -> str:
        """Table prefixes end up in unquoted identifiers."""
        if not TABLE_PREFIX_PATTERN.match(v):
            raise ValueError(
                "Table prefix may only contain alphanumeric characters and underscores"
            )
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == "testing"

    @property
    def is_memory_database(self) -> bool:
        """In-memory SQLite needs a single shared connection."""
        return self.database_url.startswith("sqlite") and ":memory:" in self.database_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Cached settings instance.
    """
    return Settings()
