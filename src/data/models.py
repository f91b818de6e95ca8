"""
Taskmate — Data Models.

Everything here persists in SQLite and survives bot restarts. Reminders and
timers are the only rows with a lifecycle driven by the clock: each one is
pending until it fires once or is cancelled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """A chat user. Created lazily on the first routed command."""

    user_id: str
    last_active_at: datetime | None = None
    notifications_enabled: bool = True
    timezone: str = "UTC"
    created_at: datetime | None = None


@dataclass
class Group:
    """Per-group settings and permission lists."""

    group_id: str
    allowed_commands: set[str] = field(default_factory=set)
    notifications_enabled: bool = True
    mentions_enabled: bool = True
    only_admins_can_change: bool = True
    admin_users: set[str] = field(default_factory=set)
    banned_users: set[str] = field(default_factory=set)
    allow_mention_everyone: bool = False
    allow_mention_roles: bool = True
    allow_mention_users: bool = True


@dataclass
class Todo:
    """A todo item. Lists are per chat, so the same user has one list per chat."""

    id: int
    user_id: str
    chat_id: str
    task: str
    completed: bool = False
    completed_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Note:
    """A free-text note, scoped to its author only."""

    id: int
    user_id: str
    content: str
    tags: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Reminder:
    """A one-shot reminder.

    group_id set -> fan-out to the group chat.
    group_id None -> sent to user_id plus everyone in notify_users.
    """

    id: int
    user_id: str
    task: str
    fire_at: datetime
    notify_users: list[str] = field(default_factory=list)
    group_id: str | None = None
    completed: bool = False
    created_at: datetime | None = None


@dataclass
class Timer:
    """A one-shot countdown, always delivered to its owner."""

    id: int
    user_id: str
    duration_minutes: int
    fire_at: datetime
    active: bool = True
    created_at: datetime | None = None
