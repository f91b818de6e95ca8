"""
Taskmate — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_DEFAULT_COMMANDS = "help,notify,reminders,todo,note,timer,settings"


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # SQLite
    DATABASE_PATH: str = "data/taskmate.db"

    # Command routing
    COMMAND_PREFIX: str = "!"
    REPLY_UNKNOWN_COMMAND: bool = True
    REPLY_ON_DENIED: bool = True

    # Commands enabled in a group the first time the bot sees it
    DEFAULT_ALLOWED_COMMANDS: list[str] = _DEFAULT_COMMANDS.split(",")

    # Timers / reminders / users
    MAX_TIMER_MINUTES: int = 1440
    MAX_REMINDER_MINUTES: int = 525600
    DEFAULT_TIMEZONE: str = "UTC"

    @field_validator("DEFAULT_ALLOWED_COMMANDS", mode="before")
    @classmethod
    def parse_commands(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, list):
            return [c.strip().lower() for c in v if c.strip()]
        if isinstance(v, str) and v.strip():
            return [c.strip().lower() for c in v.split(",") if c.strip()]
        return _DEFAULT_COMMANDS.split(",")

    @field_validator("REPLY_UNKNOWN_COMMAND", "REPLY_ON_DENIED", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator("MAX_TIMER_MINUTES", "MAX_REMINDER_MINUTES", mode="before")
    @classmethod
    def parse_minutes(cls, v: str | int) -> int:
        return int(v)

    @field_validator("COMMAND_PREFIX")
    @classmethod
    def non_empty_prefix(cls, v: str) -> str:
        if not v:
            raise ValueError("COMMAND_PREFIX must not be empty")
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/taskmate.db"),
        COMMAND_PREFIX=os.getenv("COMMAND_PREFIX", "!"),
        REPLY_UNKNOWN_COMMAND=os.getenv("REPLY_UNKNOWN_COMMAND", "true"),
        REPLY_ON_DENIED=os.getenv("REPLY_ON_DENIED", "true"),
        DEFAULT_ALLOWED_COMMANDS=os.getenv("DEFAULT_ALLOWED_COMMANDS", _DEFAULT_COMMANDS),
        MAX_TIMER_MINUTES=os.getenv("MAX_TIMER_MINUTES", "1440"),
        MAX_REMINDER_MINUTES=os.getenv("MAX_REMINDER_MINUTES", "525600"),
        DEFAULT_TIMEZONE=os.getenv("DEFAULT_TIMEZONE", "UTC"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
