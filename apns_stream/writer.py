# =============================================================================
# APNs Stream Client -- Connection Writer
# =============================================================================

from __future__ import annotations

import time
from typing import Any, Callable

from ._logging import logger
from .constants import MAX_IDENTIFIER
from .errors import APNsEncodingError
from .generation import Generation
from .protocol import FrameCodec
from .submission import SubmissionQueue
from .types import ClientStats, ConnectionClosed, Notification, SequencedNotification


class ConnectionWriter:
    """Moves notifications from the submission queue onto the socket.

    Identifiers start at 1 for every generation and are assigned only when a
    notification is actually written. Each frame goes out in a single
    ``write()`` call, so a frame is never split across writes; the generation
    closing is only observed between frames.

    Args:
        generation: The connection this writer is bound to.
        submissions: Shared submission queue.
        codec: Frame codec.
        stats: Client counters to update, optional.
        on_failed: Called with ``(notification, status)`` for a notification
            dropped because it could not be encoded.
    """

    def __init__(
        self,
        generation: Generation,
        submissions: SubmissionQueue,
        codec: FrameCodec,
        *,
        stats: ClientStats | None = None,
        on_failed: Callable[[Notification, int], Any] | None = None,
    ) -> None:
        self._generation = generation
        self._submissions = submissions
        self._codec = codec
        self._stats = stats or ClientStats()
        self._on_failed = on_failed
        self._next_id = 1
        self._written = 0

    @property
    def written(self) -> int:
        return self._written

    async def run(self) -> int:
        """Write until the generation closes or the queue is closed and empty.

        Returns the number of frames written.
        """
        generation = self._generation
        stream = generation.writer

        while True:
            notification = await self._submissions.get(generation.closed_event)
            if notification is None:
                break

            if notification.is_expired(time.time()):
                self._stats.expired += 1
                logger.debug("Dropping expired notification before send")
                continue

            if self._next_id > MAX_IDENTIFIER:
                # No identifier left for this connection; the next one starts at 1
                self._submissions.put_front([notification])
                generation.close(ConnectionClosed("identifier space exhausted"))
                break

            sequenced = SequencedNotification(notification, self._next_id)
            try:
                frame = self._codec.encode(sequenced)
            except APNsEncodingError as exc:
                self._stats.failed += 1
                logger.error("Dropping notification that cannot be encoded: %s", exc)
                if self._on_failed is not None:
                    self._on_failed(notification, exc.status)
                continue
            self._next_id += 1

            try:
                stream.write(frame)
            except (ConnectionError, OSError, RuntimeError) as exc:
                self._submissions.put_front([notification])
                logger.debug("Write failed on generation %d: %s", generation.number, exc)
                generation.close(ConnectionClosed(f"write failed: {exc}"))
                break

            # Recorded before drain(): once handed to the transport the frame
            # may reach the server even if drain() then fails.
            evicted = generation.buffer.append(sequenced)
            if evicted is not None:
                self._stats.evicted += 1
            self._written += 1
            self._stats.sent += 1
            self._stats.bytes_sent += len(frame)

            try:
                await stream.drain()
            except (ConnectionError, OSError, RuntimeError) as exc:
                logger.debug("Drain failed on generation %d: %s", generation.number, exc)
                generation.close(ConnectionClosed(f"write failed: {exc}"))
                break

        logger.debug(
            "Writer for generation %d stopped after %d frames",
            generation.number,
            self._written,
        )
        return self._written
