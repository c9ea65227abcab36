from __future__ import annotations

from functools import cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    # SQLAlchemy URL, e.g. sqlite:///marketplace.db. Unset means in-memory mode.
    db_url: str | None = None
    db_echo: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("db_url", mode="before")
    @classmethod
    def _blank_url(cls, value: str | None) -> str | None:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


@cache
def config() -> AppSettings:
    return AppSettings()
