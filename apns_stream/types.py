# =============================================================================
# APNs Stream Client -- Type Definitions
# =============================================================================

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Mapping, Union

from .constants import (
    RECONNECT_BASE_DELAY,
    RECONNECT_FACTOR,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY,
)


class SupervisorState(str, Enum):
    """Lifecycle state of one connection generation.

    Typical flow: PENDING -> CONNECTING -> ACTIVE -> DRAINING -> CLOSED,
    then back to CONNECTING for the next generation. SHUTDOWN is terminal.
    """

    PENDING = "pending"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DRAINING = "draining"
    CLOSED = "closed"
    SHUTDOWN = "shutdown"


class CircuitBreakerState(str, Enum):
    """Circuit breaker state machine.

    CLOSED -- normal operation, failures counted.
    OPEN -- connect attempts refused until reset timeout.
    HALF_OPEN -- one probe attempt allowed to test recovery.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class ReconnectMode(str, Enum):
    """Backoff strategy between connect attempts."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIBONACCI = "fibonacci"


class ErrorStatus(IntEnum):
    """Status codes carried by the server's error-response frame."""

    NO_ERRORS = 0
    PROCESSING_ERROR = 1
    MISSING_DEVICE_TOKEN = 2
    MISSING_TOPIC = 3
    MISSING_PAYLOAD = 4
    INVALID_TOKEN_SIZE = 5
    INVALID_TOPIC_SIZE = 6
    INVALID_PAYLOAD_SIZE = 7
    INVALID_TOKEN = 8
    SHUTDOWN = 10
    UNKNOWN = 255

    @classmethod
    def describe(cls, code: int) -> str:
        try:
            return cls(code).name.lower().replace("_", " ")
        except ValueError:
            return f"unrecognized status {code}"


# -- Notifications -------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Notification:
    """A push notification as submitted by the caller.

    Attributes:
        token: Binary device token (32 bytes).
        payload: Encoded payload bytes, usually compact JSON.
        expiry: UNIX timestamp after which the notification is worthless,
            or ``None`` to keep it until it is sent.
    """

    token: bytes
    payload: bytes
    expiry: float | None = None

    @classmethod
    def create(
        cls,
        token: str | bytes,
        payload: bytes | str | Mapping[str, Any],
        *,
        expiry: float | None = None,
    ) -> Notification:
        """Build a notification from a hex/binary token and any payload form.

        Raises:
            APNsEncodingError: If the token is malformed.
        """
        from .protocol import encode_payload, normalize_token

        return cls(
            token=normalize_token(token),
            payload=encode_payload(payload),
            expiry=expiry,
        )

    def is_expired(self, now: float | None = None) -> bool:
        if self.expiry is None:
            return False
        if now is None:
            now = time.time()
        return now >= self.expiry


@dataclass(frozen=True, slots=True)
class SequencedNotification:
    """A notification with the identifier assigned when it was written."""

    notification: Notification
    identifier: int


@dataclass(frozen=True, slots=True)
class InFlightRecord:
    """A sent notification held in the in-flight buffer.

    ``position`` is the 0-based send order within the generation.
    """

    sequenced: SequencedNotification
    position: int

    @property
    def identifier(self) -> int:
        return self.sequenced.identifier

    @property
    def notification(self) -> Notification:
        return self.sequenced.notification


# -- Close causes --------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProtocolError:
    """The server rejected the notification with id ``failing_id``."""

    status: int
    failing_id: int

    @property
    def description(self) -> str:
        return ErrorStatus.describe(self.status)


@dataclass(frozen=True, slots=True)
class ConnectionClosed:
    """The stream ended without a parseable error frame."""

    reason: str = ""


@dataclass(frozen=True, slots=True)
class ShutdownRequested:
    """The client asked the generation to stop."""


CloseCause = Union[ProtocolError, ConnectionClosed, ShutdownRequested]


@dataclass(frozen=True, slots=True)
class CloseSignal:
    """The single event that ends a generation."""

    cause: CloseCause
    generation: int


# -- Configuration & stats -----------------------------------------------------


@dataclass
class ReconnectConfig:
    """Configuration for reconnecting after a generation ends.

    Attributes:
        mode: Backoff strategy (default: exponential).
        base_delay: Delay in seconds before the first retry.
        max_delay: Maximum delay cap in seconds.
        max_attempts: Consecutive failed connects before giving up,
            ``-1`` for infinite.
        factor: Multiplier per attempt for exponential backoff.
        jitter: Randomize delays by +/-10%.
    """

    mode: ReconnectMode = ReconnectMode.EXPONENTIAL
    base_delay: float = RECONNECT_BASE_DELAY
    max_delay: float = RECONNECT_MAX_DELAY
    max_attempts: int = RECONNECT_MAX_ATTEMPTS
    factor: float = RECONNECT_FACTOR
    jitter: bool = True


@dataclass
class ClientStats:
    """Counters for one client across all generations."""

    submitted: int = 0
    sent: int = 0
    bytes_sent: int = 0
    replayed: int = 0
    failed: int = 0
    evicted: int = 0
    expired: int = 0
    generations: int = 0
    connect_failures: int = 0
    last_error_status: int | None = None
    connected_since: float | None = None
