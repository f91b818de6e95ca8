"""Tests for src.core.time_parser — duration grammar."""

import pytest

from src.core.errors import ValidationError
from src.core.time_parser import format_duration, parse_duration_minutes, require_duration


class TestParseDuration:
    @pytest.mark.parametrize("text,expected", [
        ("30", 30),
        ("45m", 45),
        ("2h", 120),
        ("1h30m", 90),
        ("1H30M", 90),
        (" 15m ", 15),
    ])
    def test_valid(self, text, expected):
        assert parse_duration_minutes(text) == expected

    @pytest.mark.parametrize("text", [
        "", "0", "0m", "abc", "1d", "30s", "1.5h", "h", "m30", "1 h",
        "9" * 13, "1234567890123h", "9" * 5000,
    ])
    def test_invalid(self, text):
        assert parse_duration_minutes(text) is None


class TestRequireDuration:
    def test_invalid_raises_with_usage(self):
        with pytest.raises(ValidationError) as exc_info:
            require_duration("soon", "!timer start <duration>")
        assert "!timer start <duration>" in str(exc_info.value)

    def test_max_enforced(self):
        with pytest.raises(ValidationError, match="cannot exceed"):
            require_duration("25h", "usage", max_minutes=1440)

    def test_max_boundary_allowed(self):
        assert require_duration("24h", "usage", max_minutes=1440) == 1440

    def test_huge_hours_hit_the_limit(self):
        with pytest.raises(ValidationError, match="cannot exceed 8760h"):
            require_duration("99999999999h", "usage", max_minutes=525600)


class TestFormatDuration:
    def test_forms(self):
        assert format_duration(45) == "45m"
        assert format_duration(120) == "2h"
        assert format_duration(90) == "1h 30m"
