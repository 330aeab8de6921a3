"""Application settings and logging setup."""

from __future__ import annotations

import logging
import sys
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ALARMCLOCK_", env_file=".env", extra="ignore"
    )

    storage_path: Path = Path("data") / "event_alarms.json"
    # Triggers closer than this are pushed to the following week.
    look_ahead_minutes: int = Field(default=5, ge=0)
    snooze_minutes: int = Field(default=9, gt=0)
    max_snooze_count: int = Field(default=3, ge=0)
    default_sound: str = "default"
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stdout handler to the ``alarmclock`` logger."""
    logger = logging.getLogger("alarmclock")
    logger.setLevel(level.upper())
    if logger.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(handler)
