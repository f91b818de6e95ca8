"""
Taskmate — Duration grammar.

Accepted forms (case-insensitive, no spaces):
  - 30        bare integer -> minutes
  - 45m       minutes
  - 2h        hours
  - 1h30m     hours and minutes

Anything else is rejected; a bad duration is never silently defaulted.
"""

from __future__ import annotations

import re

from src.core.errors import ValidationError

_BARE_MINUTES = re.compile(r"^\d{1,12}$")
_HOURS_MINUTES = re.compile(r"^(?:(\d{1,12})h)?(?:(\d{1,12})m)?$")

DURATION_HELP = "Examples: 30, 45m, 2h, 1h30m"


def parse_duration_minutes(text: str) -> int | None:
    """Parse a duration token into whole minutes, or None if invalid."""
    token = (text or "").strip().lower()
    if not token:
        return None

    if _BARE_MINUTES.match(token):
        minutes = int(token)
        return minutes if minutes > 0 else None

    match = _HOURS_MINUTES.match(token)
    if match is None:
        return None
    hours, mins = match.groups()
    if hours is None and mins is None:
        return None

    total = int(hours or 0) * 60 + int(mins or 0)
    return total if total > 0 else None


def require_duration(text: str, usage: str, max_minutes: int | None = None) -> int:
    """Like parse_duration_minutes but raises ValidationError with a usage hint."""
    minutes = parse_duration_minutes(text)
    if minutes is None:
        raise ValidationError(f"Invalid time format '{text}'. {DURATION_HELP}\nUsage: {usage}")
    if max_minutes is not None and minutes > max_minutes:
        raise ValidationError(
            f"Duration cannot exceed {format_duration(max_minutes)}."
        )
    return minutes


def format_duration(minutes: int) -> str:
    """Render minutes as '1h 30m', '2h' or '45m'."""
    hours, mins = divmod(max(minutes, 0), 60)
    if hours and mins:
        return f"{hours}h {mins}m"
    if hours:
        return f"{hours}h"
    return f"{mins}m"
