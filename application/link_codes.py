from __future__ import annotations

import asyncio
import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional

from domain.errors import ExpiredError, NotFoundError
from domain.models import LinkCode
from domain.repositories import LinkCodeStore

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
DEFAULT_TTL_SECONDS = 10 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


def generate_numeric_code(length: int = CODE_LENGTH) -> str:
    """Random fixed-length numeric code whose first digit is never zero."""

    first = str(secrets.randbelow(9) + 1)
    rest = "".join(str(secrets.randbelow(10)) for _ in range(length - 1))
    return first + rest


class InMemoryLinkCodeStore(LinkCodeStore):
    """
    Process-local TTL map of link codes.

    Every check-and-act runs under one lock, so two concurrent `consume`
    calls on the same code cannot both succeed and a user never holds two
    live codes. Expiry is decided at `consume` time from the stored
    timestamp; `sweep` only reclaims memory.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        code_factory: Callable[[], str] = generate_numeric_code,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._code_factory = code_factory
        self._lock = threading.Lock()
        self._codes: Dict[str, LinkCode] = {}

    def issue(self, user_id: str) -> str:
        with self._lock:
            stale = [c for c, entry in self._codes.items() if entry.user_id == user_id]
            for code in stale:
                del self._codes[code]

            code = self._code_factory()
            while code in self._codes:
                code = self._code_factory()

            self._codes[code] = LinkCode(
                code=code,
                user_id=user_id,
                expires_at=self._clock() + self._ttl,
            )

        logger.debug("Issued link code for user %s (replaced %d)", user_id, len(stale))
        return code

    def lookup(self, code: str) -> str:
        with self._lock:
            entry = self._codes.get(code)
            if entry is None:
                raise NotFoundError(code)

            if entry.is_expired(self._clock()):
                del self._codes[code]
                raise ExpiredError(code)

            return entry.user_id

    def consume(self, code: str) -> str:
        with self._lock:
            entry = self._codes.get(code)
            if entry is None:
                raise NotFoundError(code)

            del self._codes[code]
            if entry.is_expired(self._clock()):
                raise ExpiredError(code)

            return entry.user_id

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [c for c, entry in self._codes.items() if entry.is_expired(now)]
            for code in expired:
                del self._codes[code]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._codes)


class LinkCodeSweeper:
    """Runs `LinkCodeStore.sweep` on a fixed interval in the event loop."""

    def __init__(
        self,
        store: LinkCodeStore,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._store = store
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="link-code-sweeper")

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        task.cancel()
        # Only the caller's own cancellation can surface from asyncio.wait.
        await asyncio.wait({task})
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            removed = self._store.sweep()
            if removed:
                logger.info("Swept %d expired link codes", removed)
