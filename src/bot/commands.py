"""
Taskmate — Command handlers.

Every handler takes a CommandContext and returns the reply text. Bad input
raises ValidationError (rendered as a usage hint), a wrong list number
raises NotFoundError. Handlers never send messages themselves.

Group administration lives in src.bot.group_commands.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.core import permissions
from src.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from src.core.router import Command
from src.core.time_parser import format_duration, require_duration

if TYPE_CHECKING:
    from src.core.router import CommandContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

SubHandler = Callable[["CommandContext"], Awaitable[str]]


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def parse_switch(token: str, usage: str) -> bool:
    """'on'/'off' -> bool. Anything else is a usage error."""
    value = token.lower()
    if value in ("on", "enable", "enabled", "true"):
        return True
    if value in ("off", "disable", "disabled", "false"):
        return False
    raise ValidationError(f"Please use on or off.\nUsage: {usage}")


def _parse_number(ctx: CommandContext, noun: str) -> int:
    if len(ctx.args) != 2 or not ctx.args[1].isdigit():
        raise ValidationError(f"Please specify the {noun} number.")
    return int(ctx.args[1])


def _pick(items: Sequence[T], number: int, noun: str) -> T:
    if number < 1 or number > len(items):
        raise NotFoundError(f"Invalid {noun} number.")
    return items[number - 1]


def _preview(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _user_zone(ctx: CommandContext) -> ZoneInfo:
    user = ctx.services.users.get_user(ctx.sender_id)
    try:
        return ZoneInfo(user.timezone if user else "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def _format_local(moment: datetime, zone: ZoneInfo) -> str:
    return moment.astimezone(zone).strftime("%Y-%m-%d %H:%M")


def _minutes_until(moment: datetime, now: datetime) -> int:
    return max(0, int((moment - now).total_seconds() // 60))


async def _dispatch(
    ctx: CommandContext, actions: dict[str, SubHandler], usage: str,
) -> str:
    if not ctx.args:
        raise ValidationError(f"Usage: {ctx.prefix}{usage}")
    action = actions.get(ctx.args[0].lower())
    if action is None:
        options = ", ".join(actions)
        raise ValidationError(f"Unknown subcommand. Use: {options}.")
    return await action(ctx)


# ---------------------------------------------------------------------------
# !help
# ---------------------------------------------------------------------------


async def cmd_help(ctx: CommandContext) -> str:
    p = ctx.prefix
    if not ctx.args:
        lines = [
            f"{p}{c.name} - {c.description}"
            for c in sorted(ctx.commands.values(), key=lambda c: c.name)
        ]
        return (
            "📚 Available Commands:\n\n" + "\n".join(lines)
            + f"\n\nType {p}help <command> for detailed usage."
        )

    name = ctx.args[0].lower().removeprefix(p.lower())
    command = ctx.commands.get(name)
    if command is None:
        raise NotFoundError(f'❌ Command "{name}" not found. Type {p}help for available commands.')

    lines = [
        f"📖 Help: {p}{command.name}",
        f"Description: {command.description}",
        f"Usage: {p}{command.usage}",
    ]
    if command.examples:
        lines.append("\nExamples:")
        lines.extend(f"{p}{example}" for example in command.examples)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# !todo
# ---------------------------------------------------------------------------

TODO_USAGE = "todo <add|list|list-all|done|delete|clear> [task/number]"


async def _todo_add(ctx: CommandContext) -> str:
    tasks = [t.strip() for t in ctx.rest(1).split(",") if t.strip()]
    if not tasks:
        raise ValidationError("Please specify a task to add.")

    for task in tasks:
        ctx.services.todos.add_todo(ctx.sender_id, ctx.chat_id, task)

    if len(tasks) == 1:
        return f"✅ Todo added: {tasks[0]}"
    numbered = "\n".join(f"{i}. {task}" for i, task in enumerate(tasks, 1))
    return "✅ Added multiple todos:\n" + numbered


async def _todo_list(ctx: CommandContext) -> str:
    todos = ctx.services.todos.list_for_chat(ctx.chat_id)
    if not todos:
        return "No todos found in this chat."
    lines = [
        f"{i}. {'✓' if t.completed else '○'} {t.task}" for i, t in enumerate(todos, 1)
    ]
    return "📝 Todo List for this chat:\n" + "\n".join(lines)


async def _todo_list_all(ctx: CommandContext) -> str:
    todos = ctx.services.todos.list_for_user(ctx.sender_id)
    if not todos:
        return "No todos found."

    by_chat: dict[str, list] = {}
    for todo in todos:
        by_chat.setdefault(todo.chat_id, []).append(todo)

    sections = []
    for chat_id, chat_todos in by_chat.items():
        title = "This chat" if chat_id == ctx.chat_id else f"Chat {chat_id}"
        items = "\n".join(f"{i}. ○ {t.task}" for i, t in enumerate(chat_todos, 1))
        sections.append(f"{title}:\n{items}")
    return "📝 All Your Todos:\n\n" + "\n\n".join(sections)


async def _todo_done(ctx: CommandContext) -> str:
    number = _parse_number(ctx, "todo")
    todo = _pick(ctx.services.todos.list_for_chat(ctx.chat_id), number, "todo")
    if todo.completed:
        return f"Already done: {todo.task}"
    ctx.services.todos.complete(todo.id, ctx.chat_id)
    return f"✅ Marked as done: {todo.task}"


async def _todo_delete(ctx: CommandContext) -> str:
    number = _parse_number(ctx, "todo")
    todo = _pick(ctx.services.todos.list_for_chat(ctx.chat_id), number, "todo")
    ctx.services.todos.delete_todo(todo.id, ctx.chat_id)
    return f"🗑️ Deleted: {todo.task}"


async def _todo_clear(ctx: CommandContext) -> str:
    count = ctx.services.todos.clear_completed(ctx.chat_id)
    return f"🧹 Cleared {count} completed todos from this chat."


_TODO_ACTIONS: dict[str, SubHandler] = {
    "add": _todo_add,
    "list": _todo_list,
    "list-all": _todo_list_all,
    "done": _todo_done,
    "delete": _todo_delete,
    "clear": _todo_clear,
}


async def cmd_todo(ctx: CommandContext) -> str:
    return await _dispatch(ctx, _TODO_ACTIONS, TODO_USAGE)


# ---------------------------------------------------------------------------
# !note
# ---------------------------------------------------------------------------

NOTE_USAGE = "note <save|list|view|edit|delete|search> [content/number/query]"


def _split_tags(content: str) -> tuple[str, list[str]]:
    """Pull '#tag' words out of note content."""
    words = content.split()
    tags = [w[1:].lower() for w in words if w.startswith("#") and len(w) > 1]
    body = " ".join(w for w in words if not (w.startswith("#") and len(w) > 1))
    return body, list(dict.fromkeys(tags))


def _render_notes(notes: list) -> str:
    lines = []
    for i, note in enumerate(notes, 1):
        tags = " " + " ".join(f"#{t}" for t in note.tags) if note.tags else ""
        lines.append(f"{i}. {_preview(note.content)}{tags}")
    return "\n".join(lines)


async def _note_save(ctx: CommandContext) -> str:
    content, tags = _split_tags(ctx.rest(1))
    if not content:
        raise ValidationError("Please specify the note content.")
    ctx.services.notes.add_note(ctx.sender_id, content, tags)
    return "📝 Note saved successfully!"


async def _note_list(ctx: CommandContext) -> str:
    notes = ctx.services.notes.list_for_user(ctx.sender_id)
    if not notes:
        return "No notes found."
    return "📚 Your Notes:\n" + _render_notes(notes)


async def _note_view(ctx: CommandContext) -> str:
    number = _parse_number(ctx, "note")
    note = _pick(ctx.services.notes.list_for_user(ctx.sender_id), number, "note")
    text = f"📖 Note #{number}:\n{note.content}"
    if note.tags:
        text += "\n" + " ".join(f"#{t}" for t in note.tags)
    return text


async def _note_edit(ctx: CommandContext) -> str:
    if len(ctx.args) < 3 or not ctx.args[1].isdigit():
        raise ValidationError(f"Usage: {ctx.prefix}note edit <number> <new content>")
    note = _pick(ctx.services.notes.list_for_user(ctx.sender_id), int(ctx.args[1]), "note")
    ctx.services.notes.update_note(note.id, ctx.sender_id, ctx.rest(2))
    return "✏️ Note updated."


async def _note_delete(ctx: CommandContext) -> str:
    number = _parse_number(ctx, "note")
    note = _pick(ctx.services.notes.list_for_user(ctx.sender_id), number, "note")
    ctx.services.notes.delete_note(note.id, ctx.sender_id)
    return "🗑️ Note deleted successfully!"


async def _note_search(ctx: CommandContext) -> str:
    query = ctx.rest(1).lstrip("#")
    if not query:
        raise ValidationError("Please specify a search query.")
    results = ctx.services.notes.search(ctx.sender_id, query)
    if not results:
        return "No notes found matching your search."
    return f'🔍 Search Results for "{query}":\n' + _render_notes(results)


_NOTE_ACTIONS: dict[str, SubHandler] = {
    "save": _note_save,
    "list": _note_list,
    "view": _note_view,
    "edit": _note_edit,
    "delete": _note_delete,
    "search": _note_search,
}


async def cmd_note(ctx: CommandContext) -> str:
    return await _dispatch(ctx, _NOTE_ACTIONS, NOTE_USAGE)


# ---------------------------------------------------------------------------
# !notify
# ---------------------------------------------------------------------------

NOTIFY_USAGE = "notify [@me|@all|@user ...] <task> <time>"


async def cmd_notify(ctx: CommandContext) -> str:
    usage = f"{ctx.prefix}{NOTIFY_USAGE}"
    args = ctx.args
    if len(args) < 2:
        raise ValidationError(f"Usage: {usage}")

    targets: list[str] = []
    while len(targets) < len(args) - 1 and args[len(targets)].startswith("@"):
        targets.append(args[len(targets)].lower())

    remainder = ctx.rest(len(targets))
    parts = remainder.rsplit(None, 1)
    if len(parts) < 2:
        raise ValidationError(f"Please specify what to be reminded about.\nUsage: {usage}")
    task, time_token = parts[0].strip(), parts[1]
    minutes = require_duration(time_token, usage, max_minutes=ctx.services.max_reminder_minutes)

    group_id: str | None = None
    notify_users: list[str] = []
    gate = ctx.services.permissions

    if "@all" in targets:
        if not ctx.is_group:
            raise ValidationError("@all only works in group chats.")
        if not permissions.can_mention_everyone(gate.get_group(ctx.chat_id)):
            raise PermissionDeniedError("❌ Mentioning everyone is disabled in this group.")
        group_id = ctx.chat_id
    elif any(t != "@me" for t in targets):
        if ctx.is_group and not permissions.can_mention_users(gate.get_group(ctx.chat_id)):
            raise PermissionDeniedError("❌ Mentioning users is disabled in this group.")
        notify_users = [u for u in ctx.mentioned_users() if u != ctx.sender_id]

    fire_at = ctx.services.clock.now() + timedelta(minutes=minutes)
    await ctx.services.reminders.create(
        ctx.sender_id, task, fire_at, notify_users=notify_users, group_id=group_id,
    )

    logger.info(
        "Reminder set by %s in %s (group=%s, mentions=%d)",
        ctx.sender_id, ctx.chat_id, group_id is not None, len(notify_users),
    )
    if group_id:
        return f'✅ Group reminder set: "{task}" in {format_duration(minutes)}'
    return f'✅ Reminder set: "{task}" in {format_duration(minutes)}'


# ---------------------------------------------------------------------------
# !reminders
# ---------------------------------------------------------------------------

REMINDERS_USAGE = "reminders [list|cancel <number>|clear]"


async def _reminders_list(ctx: CommandContext) -> str:
    reminders = ctx.services.reminders.list(ctx.sender_id)
    if not reminders:
        return "No pending reminders."
    zone = _user_zone(ctx)
    now = ctx.services.clock.now()
    lines = [
        f"{i}. {r.task} at {_format_local(r.fire_at, zone)}"
        f" (in {format_duration(_minutes_until(r.fire_at, now))})"
        for i, r in enumerate(reminders, 1)
    ]
    return "🔔 Pending Reminders:\n" + "\n".join(lines)


async def _reminders_cancel(ctx: CommandContext) -> str:
    number = _parse_number(ctx, "reminder")
    reminder = _pick(ctx.services.reminders.list(ctx.sender_id), number, "reminder")
    if not await ctx.services.reminders.delete(ctx.sender_id, reminder.id):
        return "That reminder has already been delivered."
    return f'🗑️ Reminder cancelled: "{reminder.task}"'


async def _reminders_clear(ctx: CommandContext) -> str:
    count = ctx.services.reminders.clear_completed(ctx.sender_id)
    return f"🧹 Cleared {count} delivered reminders."


_REMINDER_ACTIONS: dict[str, SubHandler] = {
    "list": _reminders_list,
    "cancel": _reminders_cancel,
    "clear": _reminders_clear,
}


async def cmd_reminders(ctx: CommandContext) -> str:
    if not ctx.args:
        return await _reminders_list(ctx)
    return await _dispatch(ctx, _REMINDER_ACTIONS, REMINDERS_USAGE)


# ---------------------------------------------------------------------------
# !timer
# ---------------------------------------------------------------------------

TIMER_USAGE = "timer <start <duration>|list|cancel <number>>"


async def _timer_start(ctx: CommandContext) -> str:
    if len(ctx.args) < 2:
        raise ValidationError(
            "Please specify a duration (e.g., 30m, 1h, or just 30 for minutes)."
        )
    minutes = require_duration(
        ctx.args[1], f"{ctx.prefix}timer start <duration>",
        max_minutes=ctx.services.max_timer_minutes,
    )
    await ctx.services.timers.create(ctx.sender_id, minutes)
    return f"⏰ Timer set for {minutes} minutes!"


async def _timer_list(ctx: CommandContext) -> str:
    timers = ctx.services.timers.list(ctx.sender_id)
    if not timers:
        return "No active timers."
    now = ctx.services.clock.now()
    lines = [
        f"{i}. ⏳ {_minutes_until(t.fire_at, now)} minutes remaining"
        f" (of {t.duration_minutes})"
        for i, t in enumerate(timers, 1)
    ]
    return "⏰ Active Timers:\n" + "\n".join(lines)


async def _timer_cancel(ctx: CommandContext) -> str:
    number = _parse_number(ctx, "timer")
    timer = _pick(ctx.services.timers.list(ctx.sender_id), number, "timer")
    if not await ctx.services.timers.cancel(ctx.sender_id, timer.id):
        return "That timer has already finished."
    return "⏰ Timer cancelled successfully!"


_TIMER_ACTIONS: dict[str, SubHandler] = {
    "start": _timer_start,
    "list": _timer_list,
    "cancel": _timer_cancel,
}


async def cmd_timer(ctx: CommandContext) -> str:
    return await _dispatch(ctx, _TIMER_ACTIONS, TIMER_USAGE)


# ---------------------------------------------------------------------------
# !settings (per user)
# ---------------------------------------------------------------------------

SETTINGS_USAGE = "settings [notifications on|off | timezone <Area/City>]"


async def cmd_settings(ctx: CommandContext) -> str:
    users = ctx.services.users
    usage = f"{ctx.prefix}{SETTINGS_USAGE}"

    if not ctx.args:
        user = users.get_or_create(ctx.sender_id)
        return "\n".join([
            "⚙️ Your Settings:",
            f"- Notifications: {'✅' if user.notifications_enabled else '❌'}",
            f"- Timezone: {user.timezone}",
        ])

    key = ctx.args[0].lower()
    if len(ctx.args) < 2:
        raise ValidationError(f"Usage: {usage}")

    if key == "notifications":
        enabled = parse_switch(ctx.args[1], usage)
        users.update_settings(ctx.sender_id, notifications_enabled=enabled)
        return f"✅ Notifications {'enabled' if enabled else 'disabled'}."

    if key == "timezone":
        name = ctx.args[1]
        try:
            ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError(f"Unknown timezone '{name}'. Example: Europe/Berlin")
        users.update_settings(ctx.sender_id, timezone_name=name)
        return f"✅ Timezone set to {name}."

    raise ValidationError(f"Unknown setting. Usage: {usage}")


# ---------------------------------------------------------------------------
# Command table
# ---------------------------------------------------------------------------


def build_commands() -> list[Command]:
    """The static name -> handler table used by the router."""
    from src.bot.group_commands import GROUP_USAGE, cmd_group

    return [
        Command(
            name="help",
            description="Show available commands and their usage",
            usage="help [command]",
            handler=cmd_help,
            examples=["help", "help notify"],
        ),
        Command(
            name="todo",
            description="Manage this chat's todo list",
            usage=TODO_USAGE,
            handler=cmd_todo,
            examples=[
                "todo add Buy groceries",
                "todo add task1, task2, task3",
                "todo list",
                "todo done 1",
                "todo delete 2",
                "todo clear",
            ],
        ),
        Command(
            name="note",
            description="Manage your notes",
            usage=NOTE_USAGE,
            handler=cmd_note,
            examples=[
                "note save Remember to buy milk #shopping",
                "note list",
                "note view 1",
                "note edit 1 Remember oat milk",
                "note search milk",
            ],
        ),
        Command(
            name="notify",
            description="Set a reminder for yourself, other people or the group",
            usage=NOTIFY_USAGE,
            handler=cmd_notify,
            examples=["notify call mom 30m", "notify @me drink water 1h", "notify @all team meeting 2h"],
        ),
        Command(
            name="reminders",
            description="List or cancel your pending reminders",
            usage=REMINDERS_USAGE,
            handler=cmd_reminders,
            examples=["reminders", "reminders cancel 1", "reminders clear"],
        ),
        Command(
            name="timer",
            description="Set and manage timers",
            usage=TIMER_USAGE,
            handler=cmd_timer,
            examples=["timer start 30m", "timer start 1h", "timer start 30", "timer list", "timer cancel 1"],
        ),
        Command(
            name="settings",
            description="Your personal notification and timezone settings",
            usage=SETTINGS_USAGE,
            handler=cmd_settings,
            examples=["settings", "settings notifications off", "settings timezone Europe/Berlin"],
        ),
        Command(
            name="group",
            description="Manage group settings and permissions",
            usage=GROUP_USAGE,
            handler=cmd_group,
            examples=[
                "group claim",
                "group settings list",
                "group settings notifications off",
                "group admin add @user",
                "group ban @user",
                "group mentions everyone on",
            ],
        ),
    ]
