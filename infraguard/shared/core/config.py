from functools import lru_cache
from threading import Lock
from typing import Annotated, List, Optional

import structlog
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for infraguard.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "infraguard"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Resource store
    INVENTORY_DB_URL: str = Field(
        default="sqlite+aiosqlite:///infraguard.db",
        description="SQLAlchemy URL or filesystem path of the inventory store",
    )
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    STORE_OPERATION_TIMEOUT_SECONDS: Optional[float] = Field(
        default=10.0,
        description="Deadline in seconds for a single store operation",
    )

    # Cloud providers
    CLOUD_API_TIMEOUT_SECONDS: float = 60.0
    AZURE_SUBSCRIPTION_IDS: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Subscriptions to provision; empty means enumerate via the API",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    @field_validator("AZURE_SUBSCRIPTION_IDS", mode="before")
    @classmethod
    def _split_subscription_ids(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @model_validator(mode="after")
    def _validate_timeouts(self) -> "Settings":
        if (
            self.STORE_OPERATION_TIMEOUT_SECONDS is not None
            and self.STORE_OPERATION_TIMEOUT_SECONDS <= 0
        ):
            raise ValueError("STORE_OPERATION_TIMEOUT_SECONDS must be positive")
        if self.CLOUD_API_TIMEOUT_SECONDS <= 0:
            raise ValueError("CLOUD_API_TIMEOUT_SECONDS must be positive")
        return self
