"""Configuration management for sheetforge using Pydantic Settings."""

import logging
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="SHEETFORGE_",
        extra="ignore",
    )

    debug: bool = Field(default=False, description="Enable debug mode (echoes SQL)")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/sheetforge.db",
        description="Database connection URL",
        alias="DATABASE_URL",
    )

    # Rules data
    skill_catalog_path: Path | None = Field(
        default=None,
        description="Override for the skill catalog YAML file",
        alias="SKILL_CATALOG_PATH",
    )
    level_up_catalog_path: Path | None = Field(
        default=None,
        description="Override for the level-up effect catalog YAML file",
        alias="LEVEL_UP_CATALOG_PATH",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level", alias="LOG_LEVEL")

    @property
    def data_dir(self) -> Path:
        """Get the directory holding the bundled rules data."""
        return Path(__file__).parent / "data"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(log_level: str | None = None) -> None:
    """Route structlog output through a level filter.

    Args:
        log_level: Level name such as ``"DEBUG"``; defaults to the configured
            ``log_level`` setting

    Raises:
        ValueError: If the level name is unknown
    """
    name = (log_level or get_settings().log_level).upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level '{name}'")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )
