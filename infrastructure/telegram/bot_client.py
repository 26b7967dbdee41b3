from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.helpers import create_deep_linked_url

from domain.errors import TransportError
from domain.repositories import MessageTransport, UpdateTransport

logger = logging.getLogger(__name__)

# Added on top of the long-poll wait so the HTTP read does not time out
# before Telegram answers an empty poll.
POLL_READ_SLACK_SECONDS = 10.0


class TelegramBotClient(MessageTransport, UpdateTransport):
    """
    Thin wrapper over `telegram.Bot`.

    Every python-telegram-bot failure is re-raised as `TransportError`, so
    the rest of the subsystem never depends on SDK exception types.
    """

    def __init__(self, token: str, send_timeout: float = 10.0) -> None:
        self._bot = Bot(token=token)
        self._send_timeout = send_timeout
        self._username: Optional[str] = None

    @property
    def bot(self) -> Bot:
        return self._bot

    async def start(self) -> None:
        try:
            await self._bot.initialize()
        except TelegramError as exc:
            raise TransportError(f"Could not initialise bot: {exc}") from exc
        self._username = self._bot.username
        logger.info("Telegram bot initialised as @%s", self._username)

    async def close(self) -> None:
        await self._bot.shutdown()

    @property
    def username(self) -> Optional[str]:
        return self._username

    def deep_link(self, code: str) -> str:
        if not self._username:
            raise TransportError("Bot username is unknown; call start() first.")
        return create_deep_linked_url(self._username, code)

    async def send_text(self, chat_id: str, text: str) -> None:
        try:
            await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                read_timeout=self._send_timeout,
                write_timeout=self._send_timeout,
                connect_timeout=self._send_timeout,
            )
        except TelegramError as exc:
            raise TransportError(f"sendMessage to {chat_id} failed: {exc}") from exc

    async def fetch_updates(
        self,
        offset: Optional[int],
        timeout: int,
        allowed_updates: Sequence[str],
    ) -> List[Dict[str, Any]]:
        # `Bot.get_updates` parses the whole batch at once, so a single
        # malformed update would fail every item after it. The raw list is
        # returned instead and parsed one update at a time by the caller.
        data = {
            "offset": offset,
            "timeout": timeout,
            "allowed_updates": list(allowed_updates),
        }
        try:
            result = await self._bot._post(
                "getUpdates",
                data,
                read_timeout=timeout + POLL_READ_SLACK_SECONDS,
            )
        except TelegramError as exc:
            raise TransportError(f"getUpdates failed: {exc}") from exc
        if not isinstance(result, list):
            raise TransportError(f"getUpdates returned {type(result).__name__}, expected a list")
        return result

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> None:
        try:
            await self._bot.set_webhook(
                url=url,
                secret_token=secret_token or None,
                max_connections=1,
                allowed_updates=["message"],
            )
        except TelegramError as exc:
            raise TransportError(f"setWebhook failed: {exc}") from exc
        logger.info("Webhook set to %s", url)

    async def delete_webhook(self) -> None:
        try:
            await self._bot.delete_webhook()
        except TelegramError as exc:
            raise TransportError(f"deleteWebhook failed: {exc}") from exc
        logger.info("Webhook removed; switching to long polling")
