"""
Taskmate — SQLite storage.

One class per table. Everything the bot knows lives here: users, group
settings, todos, notes, and the pending reminders/timers that the scheduling
engine reloads after a restart.

Timestamps are stored as ISO-8601 UTC text so lexical order equals
chronological order. List and set columns are stored as JSON text.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TypeVar

from src.data.models import Group, Note, Reminder, Timer, Todo, User

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """Serialize an aware datetime as fixed-width UTC ISO text."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class _SQLiteStore:
    """Shared connection handling for the per-table stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError

    @staticmethod
    def _existing_columns(conn: sqlite3.Connection, table: str) -> set[str]:
        return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


class UserDB(_SQLiteStore):
    """SQLite-backed storage for chat users."""

    def __init__(self, db_path: str | None = None, default_timezone: str | None = None) -> None:
        if default_timezone is None:
            from src.config import settings
            default_timezone = settings.DEFAULT_TIMEZONE
        self._default_timezone = default_timezone
        super().__init__(db_path)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id               TEXT PRIMARY KEY,
                    last_active_at        TEXT,
                    notifications_enabled INTEGER NOT NULL DEFAULT 1,
                    timezone              TEXT    NOT NULL DEFAULT 'UTC',
                    created_at            TEXT    NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            user_id=row["user_id"],
            last_active_at=from_iso(row["last_active_at"]),
            notifications_enabled=bool(row["notifications_enabled"]),
            timezone=row["timezone"],
            created_at=from_iso(row["created_at"]),
        )

    def get_user(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_or_create(self, user_id: str) -> User:
        """Return the user row, inserting a default one on first sight."""
        now = to_iso(_utcnow())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO users
                    (user_id, last_active_at, notifications_enabled, timezone, created_at)
                VALUES (?, ?, 1, ?, ?)
                """,
                (user_id, now, self._default_timezone, now),
            )
            row = conn.execute(
                "SELECT * FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
        return self._row_to_user(row)

    def touch(self, user_id: str, when: datetime | None = None) -> None:
        """Record activity, creating the user lazily."""
        stamp = to_iso(when or _utcnow())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users
                    (user_id, last_active_at, notifications_enabled, timezone, created_at)
                VALUES (?, ?, 1, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET last_active_at = excluded.last_active_at
                """,
                (user_id, stamp, self._default_timezone, stamp),
            )

    def update_settings(
        self,
        user_id: str,
        notifications_enabled: bool | None = None,
        timezone_name: str | None = None,
    ) -> User:
        """Change per-user settings. Unspecified fields are left as they are."""
        self.get_or_create(user_id)
        with self._connect() as conn:
            if notifications_enabled is not None:
                conn.execute(
                    "UPDATE users SET notifications_enabled = ? WHERE user_id = ?",
                    (int(notifications_enabled), user_id),
                )
            if timezone_name is not None:
                conn.execute(
                    "UPDATE users SET timezone = ? WHERE user_id = ?",
                    (timezone_name, user_id),
                )
        logger.info("Settings updated for user %s", user_id)
        return self.get_user(user_id)

    def notifications_enabled(self, user_id: str) -> bool:
        """Unknown users get notifications (the default for new users)."""
        user = self.get_user(user_id)
        return True if user is None else user.notifications_enabled


class GroupDB(_SQLiteStore):
    """SQLite-backed storage for group settings and permission lists."""

    def __init__(
        self, db_path: str | None = None, default_commands: list[str] | None = None,
    ) -> None:
        if default_commands is None:
            from src.config import settings
            default_commands = settings.DEFAULT_ALLOWED_COMMANDS
        self._default_commands = list(default_commands)
        super().__init__(db_path)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS groups (
                    group_id               TEXT PRIMARY KEY,
                    allowed_commands       TEXT    NOT NULL DEFAULT '[]',
                    notifications_enabled  INTEGER NOT NULL DEFAULT 1,
                    mentions_enabled       INTEGER NOT NULL DEFAULT 1,
                    only_admins_can_change INTEGER NOT NULL DEFAULT 1,
                    admin_users            TEXT    NOT NULL DEFAULT '[]',
                    banned_users           TEXT    NOT NULL DEFAULT '[]',
                    allow_mention_everyone INTEGER NOT NULL DEFAULT 0,
                    allow_mention_roles    INTEGER NOT NULL DEFAULT 1,
                    allow_mention_users    INTEGER NOT NULL DEFAULT 1,
                    updated_at             TEXT
                )
            """)
            existing_cols = self._existing_columns(conn, "groups")
            if "updated_at" not in existing_cols:
                conn.execute("ALTER TABLE groups ADD COLUMN updated_at TEXT")
        logger.debug("Groups table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_group(row: sqlite3.Row) -> Group:
        return Group(
            group_id=row["group_id"],
            allowed_commands=set(json.loads(row["allowed_commands"])),
            notifications_enabled=bool(row["notifications_enabled"]),
            mentions_enabled=bool(row["mentions_enabled"]),
            only_admins_can_change=bool(row["only_admins_can_change"]),
            admin_users=set(json.loads(row["admin_users"])),
            banned_users=set(json.loads(row["banned_users"])),
            allow_mention_everyone=bool(row["allow_mention_everyone"]),
            allow_mention_roles=bool(row["allow_mention_roles"]),
            allow_mention_users=bool(row["allow_mention_users"]),
        )

    def _default_group(self, group_id: str) -> Group:
        return Group(group_id=group_id, allowed_commands=set(self._default_commands))

    @staticmethod
    def _write(conn: sqlite3.Connection, group: Group) -> None:
        conn.execute(
            """
            INSERT INTO groups
                (group_id, allowed_commands, notifications_enabled, mentions_enabled,
                 only_admins_can_change, admin_users, banned_users,
                 allow_mention_everyone, allow_mention_roles, allow_mention_users,
                 updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(group_id) DO UPDATE SET
                allowed_commands       = excluded.allowed_commands,
                notifications_enabled  = excluded.notifications_enabled,
                mentions_enabled       = excluded.mentions_enabled,
                only_admins_can_change = excluded.only_admins_can_change,
                admin_users            = excluded.admin_users,
                banned_users           = excluded.banned_users,
                allow_mention_everyone = excluded.allow_mention_everyone,
                allow_mention_roles    = excluded.allow_mention_roles,
                allow_mention_users    = excluded.allow_mention_users,
                updated_at             = excluded.updated_at
            """,
            (
                group.group_id,
                json.dumps(sorted(group.allowed_commands)),
                int(group.notifications_enabled),
                int(group.mentions_enabled),
                int(group.only_admins_can_change),
                json.dumps(sorted(group.admin_users)),
                json.dumps(sorted(group.banned_users)),
                int(group.allow_mention_everyone),
                int(group.allow_mention_roles),
                int(group.allow_mention_users),
                to_iso(_utcnow()),
            ),
        )

    def get_group(self, group_id: str) -> Group | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM groups WHERE group_id = ?", (group_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_group(row)

    def get_or_create(self, group_id: str) -> Group:
        """Return the group row, inserting defaults on first sight."""
        group = self.get_group(group_id)
        if group is not None:
            return group
        group = self._default_group(group_id)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO groups (group_id, allowed_commands, updated_at)
                VALUES (?, ?, ?)
                """,
                (group_id, json.dumps(sorted(group.allowed_commands)), to_iso(_utcnow())),
            )
        logger.info("Group %s created with default settings", group_id)
        return self.get_group(group_id)

    def update_group(self, group_id: str, mutate: Callable[[Group], T]) -> tuple[Group, T]:
        """Atomically read-modify-write one group row.

        `mutate` receives the current Group and edits it in place. The read
        and the write happen inside one IMMEDIATE transaction, so concurrent
        admin actions on the same group serialize instead of overwriting
        each other. If `mutate` raises, nothing is written.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM groups WHERE group_id = ?", (group_id,)
            ).fetchone()
            group = self._row_to_group(row) if row else self._default_group(group_id)
            result = mutate(group)
            self._write(conn, group)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return group, result


class TodoDB(_SQLiteStore):
    """SQLite-backed storage for per-chat todo lists."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS todos (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id      TEXT    NOT NULL,
                    chat_id      TEXT    NOT NULL,
                    task         TEXT    NOT NULL,
                    completed    INTEGER NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    created_at   TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_todos_chat ON todos (chat_id, completed)"
            )
        logger.debug("Todos table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_todo(row: sqlite3.Row) -> Todo:
        return Todo(
            id=row["id"],
            user_id=row["user_id"],
            chat_id=row["chat_id"],
            task=row["task"],
            completed=bool(row["completed"]),
            completed_at=from_iso(row["completed_at"]),
            created_at=from_iso(row["created_at"]),
        )

    def add_todo(self, user_id: str, chat_id: str, task: str) -> Todo:
        now = _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO todos (user_id, chat_id, task, completed, created_at) VALUES (?, ?, ?, 0, ?)",
                (user_id, chat_id, task, to_iso(now)),
            )
            todo_id = cursor.lastrowid
        logger.info("Todo added: #%d in chat %s", todo_id, chat_id)
        return Todo(id=todo_id, user_id=user_id, chat_id=chat_id, task=task, created_at=now)

    def get_todo(self, todo_id: int) -> Todo | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM todos WHERE id = ?", (todo_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_todo(row)

    def list_for_chat(self, chat_id: str, include_completed: bool = True) -> list[Todo]:
        """Todos of one chat, oldest first."""
        query = "SELECT * FROM todos WHERE chat_id = ?"
        if not include_completed:
            query += " AND completed = 0"
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, (chat_id,)).fetchall()
        return [self._row_to_todo(r) for r in rows]

    def list_for_user(self, user_id: str, include_completed: bool = False) -> list[Todo]:
        """Todos a user created across every chat, grouped by chat."""
        query = "SELECT * FROM todos WHERE user_id = ?"
        if not include_completed:
            query += " AND completed = 0"
        query += " ORDER BY chat_id, id"
        with self._connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_todo(r) for r in rows]

    def complete(self, todo_id: int, chat_id: str) -> Todo | None:
        """Mark an open todo as done. Returns None if it was missing or already done."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE todos SET completed = 1, completed_at = ?
                WHERE id = ? AND chat_id = ? AND completed = 0
                """,
                (to_iso(_utcnow()), todo_id, chat_id),
            )
        if cursor.rowcount == 0:
            return None
        return self.get_todo(todo_id)

    def delete_todo(self, todo_id: int, chat_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM todos WHERE id = ? AND chat_id = ?", (todo_id, chat_id),
            )
        return cursor.rowcount > 0

    def clear_completed(self, chat_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM todos WHERE chat_id = ? AND completed = 1", (chat_id,),
            )
        logger.info("Cleared %d completed todos in chat %s", cursor.rowcount, chat_id)
        return cursor.rowcount


class NoteDB(_SQLiteStore):
    """SQLite-backed storage for personal notes."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notes (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id    TEXT NOT NULL,
                    content    TEXT NOT NULL,
                    tags       TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_notes_user ON notes (user_id)")
        logger.debug("Notes table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> Note:
        return Note(
            id=row["id"],
            user_id=row["user_id"],
            content=row["content"],
            tags=json.loads(row["tags"]),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )

    def add_note(self, user_id: str, content: str, tags: list[str] | None = None) -> Note:
        tags = list(tags or [])
        now = _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO notes (user_id, content, tags, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, content, json.dumps(tags), to_iso(now), to_iso(now)),
            )
            note_id = cursor.lastrowid
        logger.info("Note added: #%d for user %s", note_id, user_id)
        return Note(
            id=note_id, user_id=user_id, content=content, tags=tags,
            created_at=now, updated_at=now,
        )

    def get_note(self, note_id: int, user_id: str) -> Note | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM notes WHERE id = ? AND user_id = ?", (note_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_note(row)

    def list_for_user(self, user_id: str) -> list[Note]:
        """Most recently updated first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM notes WHERE user_id = ? ORDER BY updated_at DESC, id DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_note(r) for r in rows]

    def update_note(self, note_id: int, user_id: str, content: str) -> Note | None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE notes SET content = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (content, to_iso(_utcnow()), note_id, user_id),
            )
        if cursor.rowcount == 0:
            return None
        return self.get_note(note_id, user_id)

    def delete_note(self, note_id: int, user_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM notes WHERE id = ? AND user_id = ?", (note_id, user_id),
            )
        return cursor.rowcount > 0

    def search(self, user_id: str, query: str, limit: int = 10) -> list[Note]:
        """Case-insensitive substring match on content or tags."""
        pattern = f"%{_escape_like(query.strip().lower())}%"
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM notes
                WHERE user_id = ?
                  AND (lower(content) LIKE ? ESCAPE '\\' OR lower(tags) LIKE ? ESCAPE '\\')
                ORDER BY updated_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, pattern, pattern, limit),
            ).fetchall()
        return [self._row_to_note(r) for r in rows]


class ReminderDB(_SQLiteStore):
    """SQLite-backed storage for one-shot reminders."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reminders (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id      TEXT    NOT NULL,
                    task         TEXT    NOT NULL,
                    fire_at      TEXT    NOT NULL,
                    notify_users TEXT    NOT NULL DEFAULT '[]',
                    group_id     TEXT,
                    completed    INTEGER NOT NULL DEFAULT 0,
                    created_at   TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_reminders_pending ON reminders (completed, fire_at)"
            )
        logger.debug("Reminders table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        return Reminder(
            id=row["id"],
            user_id=row["user_id"],
            task=row["task"],
            fire_at=from_iso(row["fire_at"]),
            notify_users=json.loads(row["notify_users"]),
            group_id=row["group_id"],
            completed=bool(row["completed"]),
            created_at=from_iso(row["created_at"]),
        )

    def add_reminder(
        self,
        user_id: str,
        task: str,
        fire_at: datetime,
        notify_users: list[str] | None = None,
        group_id: str | None = None,
    ) -> Reminder:
        notify_users = list(notify_users or [])
        now = _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO reminders
                    (user_id, task, fire_at, notify_users, group_id, completed, created_at)
                VALUES (?, ?, ?, ?, ?, 0, ?)
                """,
                (user_id, task, to_iso(fire_at), json.dumps(notify_users), group_id, to_iso(now)),
            )
            reminder_id = cursor.lastrowid
        logger.info("Reminder added: #%d '%s' at %s", reminder_id, task, to_iso(fire_at))
        return Reminder(
            id=reminder_id, user_id=user_id, task=task, fire_at=from_iso(to_iso(fire_at)),
            notify_users=notify_users, group_id=group_id, created_at=now,
        )

    def get_reminder(self, reminder_id: int) -> Reminder | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ?", (reminder_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_reminder(row)

    def list_pending(
        self, user_id: str | None = None, due_before: datetime | None = None,
    ) -> list[Reminder]:
        """Reminders that have not fired yet, soonest first."""
        query = "SELECT * FROM reminders WHERE completed = 0"
        params: list = []
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if due_before is not None:
            query += " AND fire_at <= ?"
            params.append(to_iso(due_before))
        query += " ORDER BY fire_at, id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def claim(self, reminder_id: int) -> Reminder | None:
        """Flip a pending reminder to completed and return it.

        Returns None when the row is gone or already completed, so only one
        caller can ever win the claim for a given reminder.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE reminders SET completed = 1 WHERE id = ? AND completed = 0",
                (reminder_id,),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ?", (reminder_id,)
            ).fetchone()
        return self._row_to_reminder(row)

    def delete_reminder(
        self, reminder_id: int, user_id: str | None = None, pending_only: bool = False,
    ) -> bool:
        query = "DELETE FROM reminders WHERE id = ?"
        params: list = [reminder_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if pending_only:
            query += " AND completed = 0"
        with self._connect() as conn:
            cursor = conn.execute(query, params)
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Reminder #%d deleted", reminder_id)
        return deleted

    def clear_completed(self, user_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM reminders WHERE user_id = ? AND completed = 1", (user_id,),
            )
        return cursor.rowcount


class TimerDB(_SQLiteStore):
    """SQLite-backed storage for one-shot timers."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS timers (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id          TEXT    NOT NULL,
                    duration_minutes INTEGER NOT NULL,
                    fire_at          TEXT    NOT NULL,
                    active           INTEGER NOT NULL DEFAULT 1,
                    created_at       TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_timers_active ON timers (active, fire_at)"
            )
        logger.debug("Timers table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_timer(row: sqlite3.Row) -> Timer:
        return Timer(
            id=row["id"],
            user_id=row["user_id"],
            duration_minutes=row["duration_minutes"],
            fire_at=from_iso(row["fire_at"]),
            active=bool(row["active"]),
            created_at=from_iso(row["created_at"]),
        )

    def add_timer(self, user_id: str, duration_minutes: int, fire_at: datetime) -> Timer:
        now = _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO timers (user_id, duration_minutes, fire_at, active, created_at)
                VALUES (?, ?, ?, 1, ?)
                """,
                (user_id, duration_minutes, to_iso(fire_at), to_iso(now)),
            )
            timer_id = cursor.lastrowid
        logger.info("Timer added: #%d %d min for user %s", timer_id, duration_minutes, user_id)
        return Timer(
            id=timer_id, user_id=user_id, duration_minutes=duration_minutes,
            fire_at=from_iso(to_iso(fire_at)), created_at=now,
        )

    def get_timer(self, timer_id: int) -> Timer | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM timers WHERE id = ?", (timer_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_timer(row)

    def list_active(
        self, user_id: str | None = None, due_before: datetime | None = None,
    ) -> list[Timer]:
        """Timers that have neither fired nor been cancelled, soonest first."""
        query = "SELECT * FROM timers WHERE active = 1"
        params: list = []
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if due_before is not None:
            query += " AND fire_at <= ?"
            params.append(to_iso(due_before))
        query += " ORDER BY fire_at, id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_timer(r) for r in rows]

    def claim(self, timer_id: int) -> Timer | None:
        """Deactivate an active timer and return it; None if it was not active."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE timers SET active = 0 WHERE id = ? AND active = 1", (timer_id,),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM timers WHERE id = ?", (timer_id,)).fetchone()
        return self._row_to_timer(row)

    def deactivate(self, timer_id: int, user_id: str | None = None) -> bool:
        query = "UPDATE timers SET active = 0 WHERE id = ? AND active = 1"
        params: list = [timer_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._connect() as conn:
            cursor = conn.execute(query, params)
        deactivated = cursor.rowcount > 0
        if deactivated:
            logger.info("Timer #%d deactivated", timer_id)
        return deactivated
