# =============================================================================
# APNs Stream Client -- Connection Generation
# =============================================================================
#
# One lifetime of a socket: its streams, its in-flight buffer, and the single
# close signal that ends it. Owned by the supervisor and handed explicitly to
# the writer and reader bound to it.
# =============================================================================

from __future__ import annotations

import asyncio

from ._logging import logger
from .inflight import InFlightBuffer
from .types import CloseCause, CloseSignal


class Generation:
    """State shared by the writer and reader of one connection.

    Args:
        number: 1-based generation counter, for logging.
        reader: Stream the server's error frames arrive on.
        writer: Stream notification frames are written to.
        buffer: Fresh in-flight buffer for this connection.
    """

    def __init__(
        self,
        number: int,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        buffer: InFlightBuffer,
    ) -> None:
        self.number = number
        self.reader = reader
        self.writer = writer
        self.buffer = buffer
        self._closed = asyncio.Event()
        self._signal: CloseSignal | None = None

    def __repr__(self) -> str:
        return (
            f"Generation(number={self.number}, in_flight={len(self.buffer)}, "
            f"signal={self._signal!r})"
        )

    @property
    def closed_event(self) -> asyncio.Event:
        return self._closed

    @property
    def is_closed(self) -> bool:
        return self._signal is not None

    @property
    def signal(self) -> CloseSignal | None:
        return self._signal

    def close(self, cause: CloseCause) -> bool:
        """Record the cause that ends this generation.

        Only the first call has any effect; returns whether it was this one.
        """
        if self._signal is not None:
            logger.debug(
                "Generation %d already closed, ignoring %r", self.number, cause
            )
            return False
        self._signal = CloseSignal(cause=cause, generation=self.number)
        self._closed.set()
        return True

    async def wait_closed(self) -> CloseSignal:
        await self._closed.wait()
        assert self._signal is not None
        return self._signal
