"""
Cadence — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from cadence/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Engine settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/cadence.db"

    # Reference zone for calendar-day boundaries
    TIMEZONE: str = "UTC"

    # Notification actions
    SNOOZE_MINUTES: int = 60

    # Habit replenishment (new instances become current after this time)
    REPLENISHMENT_HOUR: int = 6
    REPLENISHMENT_MINUTE: int = 0

    # Streaks
    DEFAULT_GRACE_PERIOD_DAYS: int = 1

    # Task completion policy: True → parent/subtask completion cascades
    CASCADE_COMPLETION: bool = False

    # Failed persistence writes are retried at most this many times
    SAVE_MAX_RETRIES: int = 5

    LOG_LEVEL: str = "INFO"

    @field_validator("TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown TIMEZONE: {v!r}") from exc
        return v

    @field_validator("REPLENISHMENT_HOUR", mode="before")
    @classmethod
    def parse_hour(cls, v: str | int) -> int:
        return max(0, min(23, int(v)))

    @field_validator("REPLENISHMENT_MINUTE", mode="before")
    @classmethod
    def parse_minute(cls, v: str | int) -> int:
        return max(0, min(59, int(v)))

    @field_validator("CASCADE_COMPLETION", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in {"1", "true", "yes", "on"}

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


def _load_settings() -> Settings:
    """Load settings from environment, validating every key."""
    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/cadence.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        SNOOZE_MINUTES=os.getenv("SNOOZE_MINUTES", "60"),
        REPLENISHMENT_HOUR=os.getenv("REPLENISHMENT_HOUR", "6"),
        REPLENISHMENT_MINUTE=os.getenv("REPLENISHMENT_MINUTE", "0"),
        DEFAULT_GRACE_PERIOD_DAYS=os.getenv("DEFAULT_GRACE_PERIOD_DAYS", "1"),
        CASCADE_COMPLETION=os.getenv("CASCADE_COMPLETION", "false"),
        SAVE_MAX_RETRIES=os.getenv("SAVE_MAX_RETRIES", "5"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton — imported by all other modules as:
#   from cadence.config import settings
settings = _load_settings()
