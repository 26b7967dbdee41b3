from __future__ import annotations

import asyncio
import logging
import re

from application import templates
from application.link_codes import CODE_LENGTH
from application.linking import AccountLinker
from application.messaging import MessageDispatcher
from domain.errors import ConflictError, ExpiredError, LinkError, NotFoundError
from domain.models import InboundUpdate

logger = logging.getLogger(__name__)

LINK_CODE_PATTERN = re.compile(rf"^\d{{{CODE_LENGTH}}}$")
START_PATTERN = re.compile(r"^/start(?:\s+(\S+))?$")
STATUS_COMMAND = "/status"
UNLINK_COMMAND = "/unlink"


def describe_link_error(error: LinkError) -> str:
    """User-facing explanation of why linking failed."""

    if isinstance(error, ExpiredError):
        return "The link code has expired. Request a new one in the tracker."
    if isinstance(error, ConflictError):
        if error.owner_name:
            return f'This Telegram is already linked to the account "{error.owner_name}".'
        return "This Telegram is already linked to another account."
    if isinstance(error, NotFoundError):
        return "The link code was not found or has already been used."
    return "The account could not be linked."


class CommandDispatcher:
    """
    Handles the text of one inbound message.

    Both update sources feed this class, so link, status and unlink
    behaviour exists exactly once. Rules are checked in a fixed order:
    bare link code, /start [code], /status, /unlink; anything else is
    ignored.
    """

    def __init__(self, linker: AccountLinker, dispatcher: MessageDispatcher) -> None:
        self._linker = linker
        self._dispatcher = dispatcher

    async def handle(self, update: InboundUpdate) -> None:
        text = update.text.strip()

        if LINK_CODE_PATTERN.match(text):
            await self._link(update, text)
            return

        start = START_PATTERN.match(text)
        if start:
            await self._reply(update, templates.onboarding(update.chat_display_name))
            token = start.group(1)
            if token:
                await self._link(update, token)
            return

        if text == STATUS_COMMAND:
            await self._status(update)
            return

        if text == UNLINK_COMMAND:
            await self._unlink(update)
            return

        logger.debug("Ignoring message in chat %s", update.chat_id)

    async def _link(self, update: InboundUpdate, code: str) -> None:
        try:
            result = await asyncio.to_thread(
                self._linker.bind, code, update.chat_id, update.chat_display_name
            )
        except LinkError as exc:
            logger.info("Link attempt from chat %s failed: %s", update.chat_id, type(exc).__name__)
            await self._reply(update, templates.link_failure(describe_link_error(exc)))
            return

        await self._reply(update, templates.link_success(result.user_name))

    async def _status(self, update: InboundUpdate) -> None:
        status = await asyncio.to_thread(self._linker.status_for_chat, update.chat_id)
        if status.linked:
            await self._reply(update, templates.status_linked(status.user_name))
        else:
            await self._reply(update, templates.status_unlinked())

    async def _unlink(self, update: InboundUpdate) -> None:
        removed = await asyncio.to_thread(self._linker.unbind_by_chat, update.chat_id)
        if removed is not None:
            await self._reply(update, templates.unlink_done())
        else:
            await self._reply(update, templates.unlink_nothing())

    async def _reply(self, update: InboundUpdate, text: str) -> bool:
        return await self._dispatcher.send(update.chat_id, text)
