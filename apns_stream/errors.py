# =============================================================================
# APNs Stream Client -- Error Types
# =============================================================================
#
# Server-reported delivery failures are not exceptions: they arrive as
# ProtocolError close causes (see types.py) and are resolved by replay.
# =============================================================================


class APNsError(Exception):
    """Base exception for all apns_stream errors."""


class APNsEncodingError(APNsError, ValueError):
    """A notification cannot be encoded (bad token, oversized payload).

    ``status`` is the error-response status the server would have used for
    the same problem (1, processing error, when there is no closer match).
    """

    def __init__(self, message: str, status: int = 1) -> None:
        self.status = status
        super().__init__(message)


class APNsConnectionError(APNsError):
    """Connection-related errors (failed to connect, TLS handshake failed)."""


class APNsTimeoutError(APNsConnectionError):
    """Connecting timed out."""


class APNsProtocolError(APNsError):
    """Wire protocol errors (malformed frame handed to the decoder)."""


class APNsShutdownError(APNsError):
    """The client is shutting down and no longer accepts submissions."""


class APNsStateError(APNsError):
    """Illegal supervisor state transition."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal transition {current} -> {target}")
