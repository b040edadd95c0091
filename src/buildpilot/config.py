"""Runtime configuration loaded from environment variables and ``.env``."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

VERSION = "0.1.0"


class Settings(BaseSettings):
    """Orchestrator settings.

    External endpoints default to empty; an empty ``WEBHOOK_URL`` keeps event
    records local without attempting delivery.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    DATABASE_PATH: Path = Path(".buildpilot/buildpilot.db")
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "production"

    GENERATION_URL: str = ""
    PLANNER_URL: str = ""
    WEBHOOK_URL: str = ""
    WEBHOOK_MAX_ATTEMPTS: int = 3
    HTTP_TIMEOUT_SECONDS: float = 75.0

    MAX_PHASE_RETRIES: int = 3
    PHASE_RETRY_DELAY_SECONDS: float = 5.0


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Apply the configured log level to the root logger."""
    level_name = (settings or get_settings()).LOG_LEVEL.upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
