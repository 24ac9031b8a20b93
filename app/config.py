"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="CineTracker", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")
    poster_base_url: str = Field(
        default="https://image.tmdb.org/t/p/w500", alias="POSTER_BASE_URL"
    )
    backdrop_base_url: str = Field(
        default="https://image.tmdb.org/t/p/original", alias="BACKDROP_BASE_URL"
    )
    placeholder_image_url: str = Field(
        default="https://via.placeholder.com/500x750/1f2937/9ca3af",
        alias="PLACEHOLDER_IMAGE_URL",
    )

    search_debounce_seconds: float = Field(
        default=0.5, alias="SEARCH_DEBOUNCE_SECONDS", ge=0, le=10
    )
    filter_debounce_seconds: float = Field(
        default=0.3, alias="FILTER_DEBOUNCE_SECONDS", ge=0, le=10
    )
    suggestion_keyword_limit: int = Field(
        default=5, alias="SUGGESTION_KEYWORD_LIMIT", ge=1, le=20
    )
    cast_limit: int = Field(default=12, alias="CAST_LIMIT", ge=0, le=100)
    session_idle_seconds: int = Field(
        default=3_600, alias="SESSION_IDLE_SECONDS", ge=60
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", mode="before")
    @classmethod
    def _strip_blank_key(cls, value: object) -> object:
        """Treat blank API keys as missing."""

        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("poster_base_url", "backdrop_base_url", "placeholder_image_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def has_credentials(self) -> bool:
        return bool(self.tmdb_api_key)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
