# =============================================================================
# APNs Stream Client -- Wire Protocol Codec
# =============================================================================
#
# Outgoing (client -> server), notification frame:
#   u8 frame type (2) | u32 BE item section length | items
#   item: u8 item type | u16 BE item length | item bytes
#   items in fixed order: device token (1), payload (2), identifier (3)
#
# Incoming (server -> client), error-response frame:
#   u8 command (8) | u8 status | u32 BE failing identifier
# =============================================================================

from __future__ import annotations

import json
import struct
from typing import Any, Mapping

from ._logging import logger
from .constants import (
    DEVICE_TOKEN_SIZE,
    ERROR_COMMAND,
    ERROR_FRAME_SIZE,
    FRAME_HEADER_SIZE,
    FRAME_TYPE_NOTIFICATION,
    IDENTIFIER_SIZE,
    ITEM_DEVICE_TOKEN,
    ITEM_HEADER_SIZE,
    ITEM_IDENTIFIER,
    ITEM_PAYLOAD,
    MAX_IDENTIFIER,
    MAX_PAYLOAD_SIZE,
)
from .errors import APNsEncodingError, APNsProtocolError
from .types import (
    ConnectionClosed,
    ErrorStatus,
    Notification,
    ProtocolError,
    SequencedNotification,
)

_FRAME_HEADER = struct.Struct(">BI")
_ITEM_HEADER = struct.Struct(">BH")
_IDENTIFIER = struct.Struct(">I")
_ERROR_FRAME = struct.Struct(">BBI")

try:
    import orjson

    def _json_dumps(obj: Any) -> bytes:
        return orjson.dumps(obj)

except ImportError:

    def _json_dumps(obj: Any) -> bytes:
        return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode()


def normalize_token(token: str | bytes) -> bytes:
    """Return the binary device token for a hex string or raw bytes.

    Hex strings may carry the ``<...>`` wrapping and spaces that
    ``NSData`` descriptions print.
    """
    if isinstance(token, str):
        cleaned = token.strip().strip("<>").replace(" ", "")
        try:
            token = bytes.fromhex(cleaned)
        except ValueError as exc:
            raise APNsEncodingError(f"Device token is not valid hex: {exc}") from exc
    elif isinstance(token, (bytearray, memoryview)):
        token = bytes(token)
    elif not isinstance(token, bytes):
        raise APNsEncodingError(
            f"Device token must be str or bytes, not {type(token).__name__}"
        )

    if len(token) != DEVICE_TOKEN_SIZE:
        raise APNsEncodingError(
            f"Device token must be {DEVICE_TOKEN_SIZE} bytes, got {len(token)}"
        )
    return token


def encode_payload(payload: bytes | str | Mapping[str, Any]) -> bytes:
    """Serialize a payload to bytes. Mappings become compact JSON."""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, (bytearray, memoryview)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, Mapping):
        try:
            return _json_dumps(dict(payload))
        except (TypeError, ValueError) as exc:
            raise APNsEncodingError(f"Payload is not JSON serializable: {exc}") from exc
    raise APNsEncodingError(
        f"Payload must be bytes, str or a mapping, not {type(payload).__name__}"
    )


class FrameCodec:
    """Encode notification frames and decode error-response frames.

    The codec holds no connection state; one instance is shared by every
    generation of a client.

    Args:
        max_payload_size: Largest payload accepted, in bytes (default 2048).
    """

    def __init__(self, max_payload_size: int = MAX_PAYLOAD_SIZE) -> None:
        self._max_payload_size = max_payload_size

    @property
    def max_payload_size(self) -> int:
        return self._max_payload_size

    def check(self, notification: Notification) -> None:
        """Raise :class:`APNsEncodingError` if *notification* can't be framed."""
        if len(notification.token) != DEVICE_TOKEN_SIZE:
            raise APNsEncodingError(
                f"Device token must be {DEVICE_TOKEN_SIZE} bytes, "
                f"got {len(notification.token)}",
                status=ErrorStatus.INVALID_TOKEN_SIZE,
            )
        size = len(notification.payload)
        if size > self._max_payload_size:
            raise APNsEncodingError(
                f"Payload is {size} bytes, limit is {self._max_payload_size}",
                status=ErrorStatus.INVALID_PAYLOAD_SIZE,
            )

    def encode(self, sequenced: SequencedNotification) -> bytes:
        """Build the complete frame for one sequenced notification."""
        notification = sequenced.notification
        self.check(notification)

        identifier = sequenced.identifier
        if not 0 <= identifier <= MAX_IDENTIFIER:
            raise APNsEncodingError(f"Identifier {identifier} does not fit in u32")

        items = b"".join(
            (
                _ITEM_HEADER.pack(ITEM_DEVICE_TOKEN, len(notification.token)),
                notification.token,
                _ITEM_HEADER.pack(ITEM_PAYLOAD, len(notification.payload)),
                notification.payload,
                _ITEM_HEADER.pack(ITEM_IDENTIFIER, IDENTIFIER_SIZE),
                _IDENTIFIER.pack(identifier),
            )
        )
        return _FRAME_HEADER.pack(FRAME_TYPE_NOTIFICATION, len(items)) + items

    def decode(self, frame: bytes) -> tuple[bytes, bytes, int]:
        """Parse a notification frame back into ``(token, payload, identifier)``.

        Used by tests and diagnostic tooling; the server never sends these.
        """
        if len(frame) < FRAME_HEADER_SIZE:
            raise APNsProtocolError(f"Frame too short: {len(frame)} bytes")

        frame_type, section_len = _FRAME_HEADER.unpack_from(frame)
        if frame_type != FRAME_TYPE_NOTIFICATION:
            raise APNsProtocolError(f"Unexpected frame type {frame_type}")
        if len(frame) != FRAME_HEADER_SIZE + section_len:
            raise APNsProtocolError(
                f"Item section length {section_len} does not match frame size "
                f"{len(frame)}"
            )

        items: dict[int, bytes] = {}
        offset = FRAME_HEADER_SIZE
        while offset < len(frame):
            if offset + ITEM_HEADER_SIZE > len(frame):
                raise APNsProtocolError("Truncated item header")
            item_type, item_len = _ITEM_HEADER.unpack_from(frame, offset)
            offset += ITEM_HEADER_SIZE
            if offset + item_len > len(frame):
                raise APNsProtocolError(f"Truncated item {item_type}")
            items[item_type] = frame[offset : offset + item_len]
            offset += item_len

        try:
            token = items[ITEM_DEVICE_TOKEN]
            payload = items[ITEM_PAYLOAD]
            raw_id = items[ITEM_IDENTIFIER]
        except KeyError as exc:
            raise APNsProtocolError(f"Missing item {exc.args[0]}") from exc
        if len(raw_id) != IDENTIFIER_SIZE:
            raise APNsProtocolError(f"Identifier item is {len(raw_id)} bytes")

        (identifier,) = _IDENTIFIER.unpack(raw_id)
        return token, payload, identifier

    @staticmethod
    def decode_error_frame(data: bytes) -> ProtocolError | ConnectionClosed:
        """Interpret bytes read from the server.

        Anything that is not exactly one well-formed error-response frame
        is reported as :class:`ConnectionClosed`; the server may drop the
        connection at any point without a clean frame.
        """
        if len(data) != ERROR_FRAME_SIZE:
            return ConnectionClosed(f"short read ({len(data)} bytes)")

        command, status, failing_id = _ERROR_FRAME.unpack(data)
        if command != ERROR_COMMAND:
            logger.debug("Unexpected command byte %d in error frame", command)
            return ConnectionClosed(f"unexpected command {command}")
        return ProtocolError(status=status, failing_id=failing_id)
