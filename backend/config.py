"""Configuration utilities for the funnel preview service."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from the environment."""

    environment: str = Field(
        default="development",
        description="Name of the current environment (development, staging, production).",
    )
    funnels_path: Path = Field(
        default=Path("data/funnels.json"),
        description="Filesystem location of the JSON funnel catalogue.",
    )
    debounce_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Window in which an identical text submission is dropped.",
    )
    max_conversations: int = Field(
        default=1000,
        ge=1,
        description="Live preview conversations kept in memory before the oldest is dropped.",
    )
    cors_origins: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed to call the API from a browser.",
    )

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def ensure_data_directory(path: Path) -> None:
    """Ensure the directory containing the data file exists."""

    path.parent.mkdir(parents=True, exist_ok=True)
