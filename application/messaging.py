from __future__ import annotations

import asyncio
import logging

from domain.errors import TransportError
from domain.repositories import MessageTransport

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT_SECONDS = 10.0


class MessageDispatcher:
    """
    Sends text to a chat and reports the outcome as a boolean.

    A failed delivery is logged and returned as False; it never raises, so
    the business operation that triggered it is unaffected.
    """

    def __init__(
        self,
        transport: MessageTransport,
        timeout_seconds: float = DEFAULT_SEND_TIMEOUT_SECONDS,
    ) -> None:
        self._transport = transport
        self._timeout = timeout_seconds

    async def send(self, chat_id: str, text: str) -> bool:
        try:
            await asyncio.wait_for(
                self._transport.send_text(chat_id, text),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Send to chat %s timed out after %.1fs", chat_id, self._timeout)
            return False
        except TransportError as exc:
            logger.warning("Send to chat %s failed: %s", chat_id, exc)
            return False
        except Exception:
            logger.exception("Unexpected error while sending to chat %s", chat_id)
            return False
        return True
