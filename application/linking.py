from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from domain.errors import ConflictError
from domain.models import Binding
from domain.repositories import BindingRepository, LinkCodeStore, UserRepository

logger = logging.getLogger(__name__)


@dataclass
class LinkResult:
    """Outcome of a successful `bind`."""

    user_id: str
    chat_id: str
    user_name: Optional[str] = None


@dataclass
class LinkStatus:
    linked: bool
    display_name: Optional[str] = None
    user_name: Optional[str] = None


@dataclass
class LinkOffer:
    """
    What the web application shows on its "connect Telegram" screen.

    Either the user is already linked, or a fresh code and deep link are
    offered.
    """

    linked: bool
    display_name: Optional[str] = None
    code: Optional[str] = None
    link_url: Optional[str] = None


class AccountLinker:
    """
    Links and unlinks chat identities to application users.

    Linking errors (`NotFoundError`, `ExpiredError`, `ConflictError`) are
    raised to the caller, which decides how to phrase them.
    """

    def __init__(
        self,
        codes: LinkCodeStore,
        bindings: BindingRepository,
        users: UserRepository,
    ) -> None:
        self._codes = codes
        self._bindings = bindings
        self._users = users

    def _user_name(self, user_id: str) -> Optional[str]:
        user = self._users.get_user(user_id)
        return user.full_name if user is not None else None

    def _conflict(self, chat_id: str, user_id: str, owner_id: str) -> ConflictError:
        logger.info(
            "Refused to link chat %s to user %s: already linked to user %s",
            chat_id,
            user_id,
            owner_id,
        )
        return ConflictError(chat_id, owner_name=self._user_name(owner_id))

    def bind(self, code: str, chat_id: str, display_name: Optional[str] = None) -> LinkResult:
        """
        Link `chat_id` to the user who owns `code`.

        A chat that already belongs to someone else is refused before the
        code is spent, so its owner can still use it from the right chat.
        `claim` repeats the check atomically for binds that race.
        """

        user_id = self._codes.lookup(code)
        holder = self._bindings.get_for_chat(chat_id)
        if holder is not None and holder.user_id != user_id:
            raise self._conflict(chat_id, user_id, holder.user_id)

        user_id = self._codes.consume(code)
        owner_id = self._bindings.claim(
            Binding(user_id=user_id, chat_id=chat_id, display_name=display_name)
        )
        if owner_id is not None:
            raise self._conflict(chat_id, user_id, owner_id)

        logger.info("Linked chat %s to user %s", chat_id, user_id)
        return LinkResult(user_id=user_id, chat_id=chat_id, user_name=self._user_name(user_id))

    def unbind(self, user_id: str) -> Optional[Binding]:
        removed = self._bindings.remove_for_user(user_id)
        if removed is not None:
            logger.info("Unlinked chat %s from user %s", removed.chat_id, user_id)
        return removed

    def unbind_by_chat(self, chat_id: str) -> Optional[Binding]:
        removed = self._bindings.remove_for_chat(chat_id)
        if removed is not None:
            logger.info("Unlinked chat %s from user %s", chat_id, removed.user_id)
        return removed

    def status_for(self, user_id: str) -> LinkStatus:
        binding = self._bindings.get_for_user(user_id)
        if binding is None:
            return LinkStatus(linked=False)
        return LinkStatus(
            linked=True,
            display_name=binding.display_name,
            user_name=self._user_name(user_id),
        )

    def status_for_chat(self, chat_id: str) -> LinkStatus:
        binding = self._bindings.get_for_chat(chat_id)
        if binding is None:
            return LinkStatus(linked=False)
        return self.status_for(binding.user_id)

    def request_link(
        self,
        user_id: str,
        deep_link: Callable[[str], str],
    ) -> LinkOffer:
        """
        Offer a link code to `user_id` unless they are already linked.

        `deep_link` turns a code into a URL the transport understands.
        """

        binding = self._bindings.get_for_user(user_id)
        if binding is not None:
            return LinkOffer(linked=True, display_name=binding.display_name)

        code = self._codes.issue(user_id)
        return LinkOffer(linked=False, code=code, link_url=deep_link(code))
