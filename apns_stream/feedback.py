# =============================================================================
# APNs Stream Client -- Feedback Service
# =============================================================================
#
# The feedback service streams one tuple per device that stopped accepting
# notifications, then closes the connection:
#   u32 BE timestamp | u16 BE token length | token bytes
# =============================================================================

from __future__ import annotations

import struct
from dataclasses import dataclass
from datetime import UTC, datetime

from ._logging import logger
from .constants import FEEDBACK_HEADER_SIZE
from .transport import Transport

_FEEDBACK_HEADER = struct.Struct(">IH")

_READ_CHUNK = 4096


@dataclass(frozen=True, slots=True)
class FeedbackTuple:
    """A device token the service reported, and when it stopped accepting."""

    timestamp: datetime
    token: bytes

    @property
    def token_hex(self) -> str:
        return self.token.hex()


def decode_feedback(data: bytes) -> tuple[list[FeedbackTuple], bytes]:
    """Parse every complete tuple in *data*.

    Returns the tuples and the trailing bytes of an incomplete one.
    """
    tuples: list[FeedbackTuple] = []
    offset = 0
    while len(data) - offset >= FEEDBACK_HEADER_SIZE:
        timestamp, token_len = _FEEDBACK_HEADER.unpack_from(data, offset)
        end = offset + FEEDBACK_HEADER_SIZE + token_len
        if end > len(data):
            break
        tuples.append(
            FeedbackTuple(
                timestamp=datetime.fromtimestamp(timestamp, UTC),
                token=data[offset + FEEDBACK_HEADER_SIZE : end],
            )
        )
        offset = end
    return tuples, data[offset:]


async def fetch_feedback(transport: Transport) -> list[FeedbackTuple]:
    """Connect to the feedback service and read until it closes."""
    reader, writer = await transport.open()
    tuples: list[FeedbackTuple] = []
    pending = b""
    try:
        while True:
            try:
                chunk = await reader.read(_READ_CHUNK)
            except (ConnectionError, OSError) as exc:
                logger.debug("Feedback read ended: %s", exc)
                break
            if not chunk:
                break
            decoded, pending = decode_feedback(pending + chunk)
            tuples.extend(decoded)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError) as exc:
            logger.debug("Error closing feedback connection: %s", exc)

    if pending:
        logger.warning("Feedback stream ended mid-tuple (%d bytes dropped)", len(pending))
    logger.info("Feedback service reported %d devices", len(tuples))
    return tuples
