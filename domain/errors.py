from __future__ import annotations

from typing import Optional


class ChatlinkError(Exception):
    """Base class for errors raised by the bot integration."""


class LinkError(ChatlinkError):
    """
    A recoverable linking failure.

    These are translated into a chat reply, never propagated as a system
    failure.
    """


class NotFoundError(LinkError):
    """The link code is unknown or was already used."""


class ExpiredError(LinkError):
    """The link code exists but its TTL has passed."""


class ConflictError(LinkError):
    """The chat is already bound to a different user."""

    def __init__(self, chat_id: str, owner_name: Optional[str] = None) -> None:
        super().__init__(f"Chat {chat_id} is already linked to another account.")
        self.chat_id = chat_id
        self.owner_name = owner_name


class TransportError(ChatlinkError):
    """Network or API failure while talking to the messaging transport."""


class ParseError(ChatlinkError):
    """An inbound payload could not be understood."""
