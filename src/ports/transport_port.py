"""Transport port — abstract interface for delivering messages to chats.

Core modules depend on this protocol, never on a specific messaging provider.
A recipient id may be a user or a group chat; fan-out to several recipients
is the caller's job (one send per recipient).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class TransportError(Exception):
    """Raised when a message could not be delivered."""


@dataclass
class Payload:
    """Message body. At least one of text or media is set."""

    text: str | None = None
    media: bytes | None = None
    mime_type: str | None = None

    def __post_init__(self) -> None:
        if self.text is None and self.media is None:
            raise ValueError("Payload needs text or media")


class TransportPort(Protocol):
    """Abstract transport interface used by core modules."""

    async def send(self, recipient_id: str, payload: Payload) -> None: ...
