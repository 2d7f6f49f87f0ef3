"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="AIOCatalogs", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=7000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    addon_version: str = Field(default="1.0.0", alias="ADDON_VERSION")
    addon_description: str = Field(
        default="Combine catalogs from multiple Stremio addons into one.",
        alias="ADDON_DESCRIPTION",
    )
    default_user_id: str = Field(default="default", alias="DEFAULT_USER_ID")

    request_timeout_seconds: float = Field(
        default=10.0, alias="REQUEST_TIMEOUT", gt=0, le=120
    )

    mdblist_api_url: HttpUrl = Field(
        default="https://api.mdblist.com", alias="MDBLIST_API_URL"
    )
    mdblist_timeout_seconds: float = Field(
        default=5.0, alias="MDBLIST_TIMEOUT", gt=0, le=60
    )
    mdblist_max_items: int = Field(
        default=100, alias="MDBLIST_MAX_ITEMS", ge=1, le=1_000
    )
    mdblist_cache_seconds: int = Field(
        default=1_800, alias="MDBLIST_CACHE_TTL", ge=0
    )

    rpdb_api_url: HttpUrl = Field(
        default="https://api.ratingposterdb.com", alias="RPDB_API_URL"
    )
    rpdb_cache_days: float = Field(default=7, alias="RPDB_CACHE_DAYS", ge=0)

    database_url: str = Field(
        default="sqlite+aiosqlite:///./aiocatalogs.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        text = str(value or "INFO").strip().upper()
        if text not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return text

    @field_validator("default_user_id", mode="before")
    @classmethod
    def _strip_user_id(cls, value: object) -> str:
        text = str(value or "").strip()
        return text or "default"

    @property
    def mdblist_base_url(self) -> str:
        """Return the MDBList API root without a trailing slash."""

        return str(self.mdblist_api_url).rstrip("/")

    @property
    def rpdb_base_url(self) -> str:
        """Return the RPDB root without a trailing slash."""

        return str(self.rpdb_api_url).rstrip("/")

    @property
    def rpdb_cache_seconds(self) -> float:
        return self.rpdb_cache_days * 24 * 60 * 60

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
