"""Domain errors raised by handlers and services.

The command router is the single place that turns these into replies.
"""

from __future__ import annotations


class BotError(Exception):
    """Base class for every error the bot knows how to explain to a user."""


class ValidationError(BotError):
    """Bad or missing command arguments. The message is a usage hint."""


class PermissionDeniedError(BotError):
    """Non-admin attempting an admin action, banned user, or disallowed command."""


class NotFoundError(BotError):
    """A referenced todo/note/reminder/timer number does not exist."""


class UnknownCommandError(BotError):
    """No handler is registered under the given command name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown command: {name}")
        self.name = name


class SchedulingConflictError(Exception):
    """A job id is already tracked by the scheduling engine.

    Internal to the engine and never shown to users, so it sits outside
    the BotError hierarchy the router turns into replies.
    """
