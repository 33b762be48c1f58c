"""
Configuration module for the live server.
Loads settings from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from LIVESERVER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LIVESERVER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # HTTP
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=0, le=65535)
    root: str = Field(default=".")

    # Injection / watching
    inject: bool = Field(default=True)
    watch: bool = Field(default=True)
    reload_debounce: float = Field(default=0.2, ge=0)  # seconds

    # Worker pool for blocking file reads
    workers: int = Field(default=4, ge=1)

    # Control plane
    heartbeat_interval: float = Field(default=5.0, gt=0)  # seconds
    heartbeat_timeout: float = Field(default=10.0, gt=0)  # seconds
    outbox_size: int = Field(default=64, ge=1)

    # Logging
    log_level: str = Field(default="info")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
