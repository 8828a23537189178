# =============================================================================
# APNs Stream Client -- Connection Reader
# =============================================================================
#
# The server writes to the socket only to report a failure, and closes the
# connection right after. A reader therefore makes exactly one read.
# =============================================================================

from __future__ import annotations

import asyncio

from ._logging import logger
from .constants import ERROR_FRAME_SIZE
from .generation import Generation
from .protocol import FrameCodec
from .types import CloseCause, ConnectionClosed, ProtocolError


class ConnectionReader:
    """Waits for the error-response frame or the end of the stream.

    Shutdown is not observed here: the supervisor closes the generation
    with ``ShutdownRequested`` and cancels this reader.

    Args:
        generation: The connection this reader is bound to.
        codec: Frame codec used to parse the error frame.
        read_timeout: Seconds of silence after which the connection is
            treated as lost. ``None`` (default) waits forever, since
            silence is how the server reports success.
    """

    def __init__(
        self,
        generation: Generation,
        codec: FrameCodec,
        *,
        read_timeout: float | None = None,
    ) -> None:
        self._generation = generation
        self._codec = codec
        self._read_timeout = read_timeout

    async def run(self) -> CloseCause:
        cause = await self._read_cause()
        generation = self._generation

        if isinstance(cause, ProtocolError):
            logger.warning(
                "Generation %d: server rejected id %d (status %d, %s)",
                generation.number,
                cause.failing_id,
                cause.status,
                cause.description,
            )
        else:
            logger.info(
                "Generation %d: connection closed (%s)", generation.number, cause.reason
            )

        generation.close(cause)
        return cause

    async def _read_cause(self) -> CloseCause:
        stream = self._generation.reader
        try:
            if self._read_timeout is None:
                data = await stream.readexactly(ERROR_FRAME_SIZE)
            else:
                data = await asyncio.wait_for(
                    stream.readexactly(ERROR_FRAME_SIZE), timeout=self._read_timeout
                )
        except asyncio.IncompleteReadError as exc:
            if not exc.partial:
                return ConnectionClosed("end of stream")
            return ConnectionClosed(f"end of stream after {len(exc.partial)} bytes")
        except asyncio.TimeoutError:
            return ConnectionClosed(f"no data for {self._read_timeout}s")
        except (ConnectionError, OSError) as exc:
            return ConnectionClosed(f"read failed: {exc}")

        return self._codec.decode_error_frame(data)
