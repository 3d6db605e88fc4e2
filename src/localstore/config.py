"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates fields and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional:
        STORE_PATH: SQLite database file backing the store
        DEFAULT_TTL_SECONDS: TTL used by set_cache() when none is given
        SWEEP_ON_INIT: Sweep expired cache entries when the sweeper starts
        SWEEP_INTERVAL_SECONDS: Period of the active sweep (0 disables it)
        PRODUCTS_TTL_SECONDS .. SESSIONS_TTL_SECONDS: Domain cache TTLs
        LOG_LEVEL: Logging level
        LOG_FILE: JSON-lines log file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    STORE_PATH: Path = Field(
        default=Path(".cache/localstore.db"),
        description="SQLite database file backing the store",
    )

    # Expiration
    DEFAULT_TTL_SECONDS: float = Field(
        default=3600.0, ge=0.0, description="Default cache TTL in seconds"
    )
    SWEEP_ON_INIT: bool = Field(
        default=True, description="Sweep expired cache entries at startup"
    )
    SWEEP_INTERVAL_SECONDS: float = Field(
        default=0.0, ge=0.0, description="Active sweep period in seconds (0 = off)"
    )

    # Domain cache TTLs
    PRODUCTS_TTL_SECONDS: float = Field(default=300.0, ge=0.0)
    ORDERS_TTL_SECONDS: float = Field(default=120.0, ge=0.0)
    TICKETS_TTL_SECONDS: float = Field(default=60.0, ge=0.0)
    CUSTOMERS_TTL_SECONDS: float = Field(default=600.0, ge=0.0)
    SESSIONS_TTL_SECONDS: float = Field(default=1800.0, ge=0.0)

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON-lines log file")

    @field_validator("STORE_PATH")
    @classmethod
    def validate_store_path(cls, v: Path) -> Path:
        """Reject an empty store path."""
        if not str(v).strip() or str(v) == ".":
            raise ValueError("STORE_PATH must name a database file")
        return v

    @property
    def domain_ttls(self) -> dict[str, float]:
        """TTL per domain cache name."""
        return {
            "products": self.PRODUCTS_TTL_SECONDS,
            "orders": self.ORDERS_TTL_SECONDS,
            "tickets": self.TICKETS_TTL_SECONDS,
            "customers": self.CUSTOMERS_TTL_SECONDS,
            "sessions": self.SESSIONS_TTL_SECONDS,
        }

    def display_values(self) -> dict[str, str | float | bool | None]:
        """Return settings for display."""
        return {
            "STORE_PATH": str(self.STORE_PATH),
            "DEFAULT_TTL_SECONDS": self.DEFAULT_TTL_SECONDS,
            "SWEEP_ON_INIT": self.SWEEP_ON_INIT,
            "SWEEP_INTERVAL_SECONDS": self.SWEEP_INTERVAL_SECONDS,
            "PRODUCTS_TTL_SECONDS": self.PRODUCTS_TTL_SECONDS,
            "ORDERS_TTL_SECONDS": self.ORDERS_TTL_SECONDS,
            "TICKETS_TTL_SECONDS": self.TICKETS_TTL_SECONDS,
            "CUSTOMERS_TTL_SECONDS": self.CUSTOMERS_TTL_SECONDS,
            "SESSIONS_TTL_SECONDS": self.SESSIONS_TTL_SECONDS,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
