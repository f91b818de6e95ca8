"""Tests for src.config — Settings validators."""

import pytest
from pydantic import ValidationError

from src.config import Settings, settings


class TestSettings:
    def test_singleton_loaded_from_env(self):
        assert settings.TELEGRAM_BOT_TOKEN == "fake-token-for-tests"
        assert settings.COMMAND_PREFIX == "!"

    def test_command_list_parsed(self):
        s = Settings(TELEGRAM_BOT_TOKEN="t", DEFAULT_ALLOWED_COMMANDS=" Help, todo ,,note")
        assert s.DEFAULT_ALLOWED_COMMANDS == ["help", "todo", "note"]

    def test_flags_parsed(self):
        s = Settings(TELEGRAM_BOT_TOKEN="t", REPLY_UNKNOWN_COMMAND="no", REPLY_ON_DENIED="1")
        assert s.REPLY_UNKNOWN_COMMAND is False
        assert s.REPLY_ON_DENIED is True

    def test_max_timer_minutes_int(self):
        assert Settings(TELEGRAM_BOT_TOKEN="t", MAX_TIMER_MINUTES="90").MAX_TIMER_MINUTES == 90

    def test_max_reminder_minutes_default_and_override(self):
        assert Settings(TELEGRAM_BOT_TOKEN="t").MAX_REMINDER_MINUTES == 525600
        s = Settings(TELEGRAM_BOT_TOKEN="t", MAX_REMINDER_MINUTES="60")
        assert s.MAX_REMINDER_MINUTES == 60

    def test_empty_prefix_rejected(self):
        with pytest.raises(ValidationError):
            Settings(TELEGRAM_BOT_TOKEN="t", COMMAND_PREFIX="")
