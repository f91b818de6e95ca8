"""
Taskmate — Command Router.

Stateless dispatch from raw chat text to a command handler:

    parse -> resolve -> gate (groups only) -> invoke -> reply

Handlers return the reply text (or None for no reply) and signal problems
by raising the errors in src.core.errors. This module is the only place
that turns those errors into user-visible messages, so a crashing handler
never takes down the routing of other concurrent commands.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Mapping

from src.core import permissions
from src.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    UnknownCommandError,
    ValidationError,
)
from src.ports.transport_port import Payload, TransportError

if TYPE_CHECKING:
    from src.core.permissions import PermissionGate
    from src.core.reminder_service import ReminderService
    from src.core.scheduling import Clock
    from src.core.timer_service import TimerService
    from src.ports.storage_port import NoteStore, TodoStore, UserStore
    from src.ports.transport_port import TransportPort

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "❌ An error occurred while processing your command."
DENIED_COMMAND = "❌ This command is not allowed in this group."
DENIED_BANNED = "❌ You are banned from using commands in this group."


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


@dataclass
class IncomingMessage:
    """A text message as delivered by the transport."""

    chat_id: str
    sender_id: str
    text: str
    is_group: bool = False
    mentions: list[str] = field(default_factory=list)  # user ids, in message order


@dataclass
class ParsedCommand:
    name: str
    args: list[str]
    raw_args: str


@dataclass
class BotServices:
    """Everything a handler may touch."""

    users: UserStore
    todos: TodoStore
    notes: NoteStore
    reminders: ReminderService
    timers: TimerService
    permissions: PermissionGate
    clock: Clock
    prefix: str = "!"
    max_timer_minutes: int = 1440
    max_reminder_minutes: int = 525600


@dataclass
class CommandContext:
    """Per-invocation bundle handed to a handler."""

    chat_id: str
    sender_id: str
    command: str
    args: list[str]
    raw_args: str
    is_group: bool
    services: BotServices
    mentions: list[str] = field(default_factory=list)
    commands: Mapping[str, Command] = field(default_factory=dict)

    @property
    def group_id(self) -> str | None:
        return self.chat_id if self.is_group else None

    @property
    def prefix(self) -> str:
        return self.services.prefix

    def rest(self, skip: int) -> str:
        """Literal remainder of the line after the first `skip` arguments."""
        parts = self.raw_args.split(None, skip)
        return parts[skip].strip() if len(parts) > skip else ""

    def mentioned_users(self) -> list[str]:
        """Mentioned user ids, falling back to raw @tokens when the transport gave none."""
        if self.mentions:
            return list(self.mentions)
        return [
            a for a in self.args
            if a.startswith("@") and len(a) > 1 and a.lower() not in ("@me", "@all")
        ]


Handler = Callable[[CommandContext], Awaitable["str | None"]]


@dataclass
class Command:
    name: str
    description: str
    usage: str
    handler: Handler
    examples: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_command(text: str, prefix: str = "!") -> ParsedCommand | None:
    """Split '<prefix><name> <args...>' or return None for non-command text."""
    if not text or not text.startswith(prefix):
        return None
    body = text[len(prefix):].strip()
    if not body:
        return None
    parts = body.split(None, 1)
    raw_args = parts[1].strip() if len(parts) > 1 else ""
    return ParsedCommand(name=parts[0].lower(), args=raw_args.split(), raw_args=raw_args)


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class CommandRouter:
    """Routes inbound text to handlers and sends their replies."""

    def __init__(
        self,
        services: BotServices,
        transport: TransportPort,
        commands: Iterable[Command],
        reply_unknown: bool = True,
        reply_on_denied: bool = True,
    ) -> None:
        self._services = services
        self._transport = transport
        self._commands: dict[str, Command] = {c.name: c for c in commands}
        self._reply_unknown = reply_unknown
        self._reply_on_denied = reply_on_denied
        self._background: set[asyncio.Task] = set()

    @property
    def commands(self) -> Mapping[str, Command]:
        return self._commands

    def resolve(self, name: str) -> Command:
        command = self._commands.get(name.lower())
        if command is None:
            raise UnknownCommandError(name)
        return command

    async def handle(self, message: IncomingMessage) -> str | None:
        """Route one message. Returns the reply that was sent, if any."""
        parsed = parse_command(message.text, self._services.prefix)
        if parsed is None:
            return None

        reply = await self._route(message, parsed)
        if reply:
            await self._send_reply(message.chat_id, reply)
        return reply

    async def _route(self, message: IncomingMessage, parsed: ParsedCommand) -> str | None:
        try:
            command = self.resolve(parsed.name)
        except UnknownCommandError as exc:
            logger.info("%s from %s in %s", exc, message.sender_id, message.chat_id)
            if not self._reply_unknown:
                return None
            return f"Unknown command. Type {self._services.prefix}help for available commands."

        try:
            if message.is_group:
                denial = self._gate(message, command)
                if denial is not None:
                    logger.info(
                        "Denied !%s for %s in group %s", command.name,
                        message.sender_id, message.chat_id,
                    )
                    return denial if self._reply_on_denied else None

            self._touch_later(message.sender_id)

            ctx = CommandContext(
                chat_id=message.chat_id,
                sender_id=message.sender_id,
                command=command.name,
                args=parsed.args,
                raw_args=parsed.raw_args,
                is_group=message.is_group,
                services=self._services,
                mentions=list(message.mentions),
                commands=self._commands,
            )
            return await command.handler(ctx)
        except ValidationError as exc:
            return str(exc)
        except PermissionDeniedError as exc:
            logger.info("Permission denied for %s: %s", message.sender_id, exc)
            return str(exc) if self._reply_on_denied else None
        except NotFoundError as exc:
            return str(exc)
        except Exception:
            logger.exception(
                "Command !%s failed for %s in %s", parsed.name,
                message.sender_id, message.chat_id,
            )
            return GENERIC_FAILURE

    def _gate(self, message: IncomingMessage, command: Command) -> str | None:
        group = self._services.permissions.get_group(message.chat_id)
        if permissions.is_banned(group, message.sender_id):
            return DENIED_BANNED
        if not permissions.is_command_allowed(group, command.name):
            return DENIED_COMMAND
        return None

    async def _send_reply(self, chat_id: str, text: str) -> None:
        try:
            await self._transport.send(chat_id, Payload(text=text))
        except TransportError as exc:
            logger.error("Failed to reply in %s: %s", chat_id, exc)
        except Exception:
            logger.exception("Unexpected error replying in %s", chat_id)

    # --- last-activity bookkeeping (off the reply path) --------------------

    def _touch_later(self, user_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._touch(user_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _touch(self, user_id: str) -> None:
        try:
            self._services.users.touch(user_id, self._services.clock.now())
        except Exception:
            logger.exception("Failed to record activity for %s", user_id)

    async def aclose(self) -> None:
        """Wait for outstanding background bookkeeping."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
