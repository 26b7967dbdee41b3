from __future__ import annotations

from typing import Optional, Protocol, Sequence

from .models import Binding, User


class UserRepository(Protocol):
    """
    Read access to application users.

    The user records themselves belong to the work-tracking application;
    this subsystem only resolves names for replies and templates.
    """

    def get_user(self, user_id: str) -> Optional[User]:
        """Return the user with the given internal ID, or None if not found."""

        ...

    def add_user(self, user: User) -> None:
        """Persist a new user (used by seeding and tests)."""

        ...


class BindingRepository(Protocol):
    """
    Durable mapping between application users and chat identities.

    Implementations must keep the mapping bijective: one chat per user and
    one user per chat.
    """

    def get_for_user(self, user_id: str) -> Optional[Binding]:
        """Return the binding held by `user_id`, if any."""

        ...

    def get_for_chat(self, chat_id: str) -> Optional[Binding]:
        """Return the binding that owns `chat_id`, if any."""

        ...

    def claim(self, binding: Binding) -> Optional[str]:
        """
        Atomically bind `binding.chat_id` to `binding.user_id`.

        If the chat is already held by a different user nothing is written
        and that user's ID is returned. Otherwise any previous chat of the
        user is replaced and None is returned.
        """

        ...

    def remove_for_user(self, user_id: str) -> Optional[Binding]:
        """Delete the user's binding, returning what was removed."""

        ...

    def remove_for_chat(self, chat_id: str) -> Optional[Binding]:
        """Delete the binding owning `chat_id`, returning what was removed."""

        ...


class LinkCodeStore(Protocol):
    """
    Keyed store of single-use link codes.

    The default implementation is process-local memory; a deployment that
    runs several processes can substitute a shared cache behind the same
    calls.
    """

    def issue(self, user_id: str) -> str:
        ...

    def lookup(self, code: str) -> str:
        """Like `consume`, but a live code stays usable."""

        ...

    def consume(self, code: str) -> str:
        """Return the owning user ID or raise NotFoundError/ExpiredError."""

        ...

    def sweep(self) -> int:
        ...


class MessageTransport(Protocol):
    """Outbound side of the messaging transport."""

    async def send_text(self, chat_id: str, text: str) -> None:
        """Deliver `text`, raising TransportError on any failure."""

        ...


class UpdateTransport(Protocol):
    """Pull side of the messaging transport."""

    async def fetch_updates(
        self,
        offset: Optional[int],
        timeout: int,
        allowed_updates: Sequence[str],
    ) -> Sequence[dict]:
        """Return the next batch of raw update objects, raising TransportError on failure."""

        ...
