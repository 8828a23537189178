# =============================================================================
# APNs Stream Client -- Submission Queue
# =============================================================================
#
# Caller-facing queue shared by every generation. Many producers call
# put(); the active generation's writer is the only consumer. When a
# generation ends, its replay set goes back in at the front so it is sent
# ahead of anything submitted later.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import deque
from typing import Iterable

from .errors import APNsShutdownError
from .types import Notification


class SubmissionQueue:
    """Unbounded FIFO of notifications waiting for a writer."""

    def __init__(self) -> None:
        self._items: deque[Notification] = deque()
        self._available = asyncio.Event()
        self._closed = False

    def __len__(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, notification: Notification) -> None:
        """Append a new submission.

        Raises:
            APNsShutdownError: If the queue was closed for shutdown.
        """
        if self._closed:
            raise APNsShutdownError("Client is shutting down")
        self._items.append(notification)
        self._available.set()

    def put_front(self, notifications: Iterable[Notification]) -> None:
        """Insert *notifications* ahead of everything queued, keeping their order.

        Allowed after close so a generation ending during shutdown can hand
        its replay set back for reporting.
        """
        batch = list(notifications)
        if not batch:
            return
        self._items.extendleft(reversed(batch))
        self._available.set()

    async def get(self, stop: asyncio.Event) -> Notification | None:
        """Wait for the next notification.

        Returns ``None`` once *stop* is set, or when the queue is closed and
        empty. *stop* is checked before every dequeue, so nothing is taken
        off the queue after it fires.
        """
        while True:
            if stop.is_set():
                return None
            if self._items:
                return self._items.popleft()
            if self._closed:
                return None

            self._available.clear()
            waiters = {
                asyncio.ensure_future(self._available.wait()),
                asyncio.ensure_future(stop.wait()),
            }
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()

    def close(self) -> None:
        """Refuse further put() calls and wake the consumer."""
        self._closed = True
        self._available.set()

    def drain(self) -> list[Notification]:
        """Remove and return everything still queued, in order."""
        items = list(self._items)
        self._items.clear()
        return items
