from __future__ import annotations

import abc
import asyncio
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional

from telegram import Bot, Update

from domain.errors import ParseError, TransportError
from domain.models import InboundUpdate
from domain.repositories import UpdateTransport
from interfaces.telegram.commands import CommandDispatcher

logger = logging.getLogger(__name__)

ALLOWED_UPDATES = ("message",)


def parse_update(payload: Any, bot: Optional[Bot] = None) -> Update:
    """Build a `telegram.Update` from one raw update object."""

    if not isinstance(payload, dict):
        raise ParseError(f"Update payload must be an object, got {type(payload).__name__}")
    try:
        return Update.de_json(payload, bot)
    except Exception as exc:
        raise ParseError(f"Malformed update: {exc}") from exc


def to_inbound(update: Update) -> Optional[InboundUpdate]:
    """
    Reduce a Telegram update to the fields command handling needs.

    Returns None for updates that carry no text message; those are not
    errors, the bot simply has nothing to do with them.
    """

    message = update.message
    if message is None or message.text is None:
        return None

    chat = message.chat
    if chat is None or chat.id is None:
        raise ParseError(f"Update {update.update_id} has a message without a chat")

    sender = message.from_user
    display_name = None
    if sender is not None:
        display_name = sender.username or sender.first_name
    if display_name is None:
        display_name = chat.username or chat.first_name

    return InboundUpdate(
        update_id=update.update_id,
        chat_id=str(chat.id),
        text=message.text,
        chat_display_name=display_name,
    )


class RecentUpdateIds:
    """
    Bounded memory of handled update IDs.

    Telegram redelivers updates it believes were not acknowledged; anything
    seen within the window is reported as a duplicate.
    """

    def __init__(self, max_size: int = 1000) -> None:
        self._max_size = max_size
        self._seen: "OrderedDict[int, None]" = OrderedDict()

    def check_and_mark(self, update_id: int) -> bool:
        """Return True if `update_id` was already seen, marking it otherwise."""

        if update_id in self._seen:
            return True
        self._seen[update_id] = None
        while len(self._seen) > self._max_size:
            self._seen.popitem(last=False)
        return False


class UpdateSource(abc.ABC):
    """
    Feeds inbound updates, one at a time and in order, to the command
    dispatcher.

    Subclasses decide where updates come from; `process` is the single
    path every update takes.
    """

    def __init__(
        self,
        commands: CommandDispatcher,
        recent: Optional[RecentUpdateIds] = None,
    ) -> None:
        self._commands = commands
        self._recent = recent or RecentUpdateIds()
        self._lock = asyncio.Lock()

    @abc.abstractmethod
    async def start(self) -> None:
        ...

    @abc.abstractmethod
    async def stop(self) -> None:
        ...

    async def process(self, update: Update) -> bool:
        """
        Handle one update, returning True if a command handler ran.

        Updates are handled one at a time, in the order callers arrive.
        Failures are logged and contained here so that one bad update never
        affects the ones after it.
        """

        async with self._lock:
            if self._recent.check_and_mark(update.update_id):
                logger.info("Skipping redelivered update %s", update.update_id)
                return False

            try:
                inbound = to_inbound(update)
                if inbound is None:
                    return False
                await self._commands.handle(inbound)
            except ParseError as exc:
                logger.warning("Skipping unparseable update %s: %s", update.update_id, exc)
                return False
            except Exception:
                logger.exception("Error while handling update %s", update.update_id)
                return False
            return True


class WebhookUpdateSource(UpdateSource):
    """
    Push mode: Telegram POSTs each update to our HTTP endpoint.

    `accept` never raises for bad input or internal errors, because the HTTP
    layer must acknowledge every delivery or Telegram keeps retrying it.
    """

    def __init__(
        self,
        commands: CommandDispatcher,
        register: Optional[Callable[[], Awaitable[None]]] = None,
        recent: Optional[RecentUpdateIds] = None,
        bot: Optional[Bot] = None,
    ) -> None:
        super().__init__(commands, recent)
        self._register = register
        self._bot = bot

    async def start(self) -> None:
        if self._register is not None:
            await self._register()
        logger.info("Receiving Telegram updates via webhook")

    async def stop(self) -> None:
        logger.info("Webhook update source stopped")

    async def accept(self, payload: Any) -> None:
        try:
            update = parse_update(payload, self._bot)
        except ParseError as exc:
            logger.warning("Rejected webhook payload: %s", exc)
            return
        await self.process(update)


class PollingUpdateSource(UpdateSource):
    """
    Pull mode: long-polls `getUpdates` in a background task.

    The transport returns raw update objects, parsed here one at a time.
    The cursor is `1 + highest update_id handled`, advanced past every
    update in a batch whether or not parsing or handling succeeded.
    Transport failures back off exponentially up to `max_backoff`. `stop`
    interrupts an in-flight long poll instead of waiting for it to time out.
    """

    def __init__(
        self,
        commands: CommandDispatcher,
        transport: UpdateTransport,
        poll_timeout: int = 30,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
        recent: Optional[RecentUpdateIds] = None,
        bot: Optional[Bot] = None,
    ) -> None:
        super().__init__(commands, recent)
        self._transport = transport
        self._poll_timeout = poll_timeout
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._bot = bot
        self._offset: Optional[int] = None
        self._stopping = asyncio.Event()
        self._fetching = False
        self._task: Optional[asyncio.Task] = None

    @property
    def offset(self) -> Optional[int]:
        return self._offset

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self.run(), name="telegram-polling")
        logger.info("Receiving Telegram updates via long polling")

    async def stop(self, grace_seconds: float = 5.0) -> None:
        self._stopping.set()
        task = self._task
        if task is None:
            return
        if self._fetching:
            task.cancel()

        # asyncio.wait never raises for the task's own cancellation, so a
        # CancelledError here belongs to the caller and propagates.
        done, _ = await asyncio.wait({task}, timeout=grace_seconds)
        if not done:
            logger.warning("Polling did not finish within %.1fs; cancelling", grace_seconds)
            task.cancel()
        self._task = None
        logger.info("Long polling stopped at offset %s", self._offset)

    async def run(self) -> None:
        backoff = self._initial_backoff
        while not self._stopping.is_set():
            batch = None
            self._fetching = True
            try:
                batch = await self._transport.fetch_updates(
                    self._offset,
                    self._poll_timeout,
                    ALLOWED_UPDATES,
                )
            except TransportError as exc:
                logger.warning("Polling failed, retrying in %.1fs: %s", backoff, exc)
            except Exception:
                logger.exception("Unexpected polling failure, retrying in %.1fs", backoff)
            finally:
                self._fetching = False

            if batch is None:
                await self._pause(backoff)
                backoff = min(backoff * 2, self._max_backoff)
                continue

            backoff = self._initial_backoff
            if batch:
                logger.debug("Received %d update(s)", len(batch))

            for payload in batch:
                if self._stopping.is_set():
                    break
                await self._handle_raw(payload)

    async def _handle_raw(self, payload: Any) -> None:
        update_id = payload.get("update_id") if isinstance(payload, dict) else None
        try:
            update = parse_update(payload, self._bot)
            await self.process(update)
        except ParseError as exc:
            logger.warning("Skipping unparseable update %s: %s", update_id, exc)
        finally:
            if isinstance(update_id, int):
                self._advance(update_id)

    def _advance(self, update_id: int) -> None:
        if self._offset is None or update_id + 1 > self._offset:
            self._offset = update_id + 1

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
