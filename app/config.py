"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .services.playback import QUALITY_LADDER


_ASYNC_DRIVER_PREFIXES: tuple[tuple[str, str], ...] = (
    ("postgres://", "postgresql+asyncpg://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("sqlite://", "sqlite+aiosqlite://"),
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="StreamFlix", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=5000, alias="PORT")

    database_url: str | None = Field(default=None, alias="DATABASE_URL")
    seed_catalog: bool = Field(default=True, alias="SEED_CATALOG")

    auth_user_header: str = Field(default="X-User-Id", alias="AUTH_USER_HEADER")
    auth_email_header: str = Field(
        default="X-User-Email", alias="AUTH_EMAIL_HEADER"
    )
    auth_name_header: str = Field(default="X-User-Name", alias="AUTH_NAME_HEADER")

    cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("*",), alias="CORS_ORIGINS"
    )

    max_profiles_per_user: int = Field(
        default=5, alias="MAX_PROFILES_PER_USER", ge=1, le=20
    )
    max_avatar_bytes: int = Field(
        default=5 * 1024 * 1024, alias="MAX_AVATAR_BYTES", ge=1
    )
    completion_threshold: int = Field(
        default=95, alias="COMPLETION_THRESHOLD", ge=1, le=100
    )
    continue_watching_limit: int = Field(
        default=20, alias="CONTINUE_WATCHING_LIMIT", ge=1, le=100
    )
    default_quality: str = Field(default="720p", alias="DEFAULT_QUALITY")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalise_database_url(cls, value: object) -> str | None:
        """Treat blank URLs as unset and pick async drivers for bare schemes."""

        if value is None:
            return None
        url = str(value).strip()
        if not url:
            return None
        for prefix, replacement in _ASYNC_DRIVER_PREFIXES:
            if url.startswith(prefix):
                return replacement + url[len(prefix):]
        return url

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: object) -> tuple[str, ...]:
        if value is None:
            return ("*",)
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("CORS_ORIGINS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            origin = entry.rstrip("/")
            if origin and origin not in cleaned:
                cleaned.append(origin)
        return tuple(cleaned) or ("*",)

    @field_validator("default_quality")
    @classmethod
    def _check_default_quality(cls, value: str) -> str:
        quality = value.strip().lower()
        if quality not in QUALITY_LADDER:
            raise ValueError(
                f"DEFAULT_QUALITY must be one of: {', '.join(QUALITY_LADDER)}"
            )
        return quality

    @property
    def uses_database(self) -> bool:
        """Return whether a relational store is configured."""

        return self.database_url is not None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
