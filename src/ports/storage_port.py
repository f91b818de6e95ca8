"""Storage ports — the persistence interface the core depends on.

One protocol per entity. Core modules and command handlers talk to these,
never to SQL; `src.data.db` provides the SQLite implementation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Protocol, TypeVar

from src.data.models import Group, Note, Reminder, Timer, Todo, User

T = TypeVar("T")


class UserStore(Protocol):
    def get_user(self, user_id: str) -> User | None: ...

    def get_or_create(self, user_id: str) -> User: ...

    def touch(self, user_id: str, when: datetime | None = None) -> None: ...

    def update_settings(
        self,
        user_id: str,
        notifications_enabled: bool | None = None,
        timezone_name: str | None = None,
    ) -> User: ...

    def notifications_enabled(self, user_id: str) -> bool: ...


class GroupStore(Protocol):
    def get_group(self, group_id: str) -> Group | None: ...

    def get_or_create(self, group_id: str) -> Group: ...

    def update_group(self, group_id: str, mutate: Callable[[Group], T]) -> tuple[Group, T]: ...


class TodoStore(Protocol):
    def add_todo(self, user_id: str, chat_id: str, task: str) -> Todo: ...

    def get_todo(self, todo_id: int) -> Todo | None: ...

    def list_for_chat(self, chat_id: str, include_completed: bool = True) -> list[Todo]: ...

    def list_for_user(self, user_id: str, include_completed: bool = False) -> list[Todo]: ...

    def complete(self, todo_id: int, chat_id: str) -> Todo | None: ...

    def delete_todo(self, todo_id: int, chat_id: str) -> bool: ...

    def clear_completed(self, chat_id: str) -> int: ...


class NoteStore(Protocol):
    def add_note(self, user_id: str, content: str, tags: list[str] | None = None) -> Note: ...

    def get_note(self, note_id: int, user_id: str) -> Note | None: ...

    def list_for_user(self, user_id: str) -> list[Note]: ...

    def update_note(self, note_id: int, user_id: str, content: str) -> Note | None: ...

    def delete_note(self, note_id: int, user_id: str) -> bool: ...

    def search(self, user_id: str, query: str, limit: int = 10) -> list[Note]: ...


class ReminderStore(Protocol):
    def add_reminder(
        self,
        user_id: str,
        task: str,
        fire_at: datetime,
        notify_users: list[str] | None = None,
        group_id: str | None = None,
    ) -> Reminder: ...

    def get_reminder(self, reminder_id: int) -> Reminder | None: ...

    def list_pending(
        self, user_id: str | None = None, due_before: datetime | None = None,
    ) -> list[Reminder]: ...

    def claim(self, reminder_id: int) -> Reminder | None: ...

    def delete_reminder(
        self, reminder_id: int, user_id: str | None = None, pending_only: bool = False,
    ) -> bool: ...

    def clear_completed(self, user_id: str) -> int: ...


class TimerStore(Protocol):
    def add_timer(self, user_id: str, duration_minutes: int, fire_at: datetime) -> Timer: ...

    def get_timer(self, timer_id: int) -> Timer | None: ...

    def list_active(
        self, user_id: str | None = None, due_before: datetime | None = None,
    ) -> list[Timer]: ...

    def claim(self, timer_id: int) -> Timer | None: ...

    def deactivate(self, timer_id: int, user_id: str | None = None) -> bool: ...
