"""Async client for the binary APNs push gateway.

Async usage::

    from apns_stream import connect

    async with connect(certfile="push.pem", sandbox=True) as client:
        @client.on_unsent_notifications
        def report(unsent):
            print(f"{len(unsent)} notifications never resolved")

        client.submit_message(token_hex, {"aps": {"alert": "Hello"}})

Sync usage::

    from apns_stream import SyncAPNsClient

    client = SyncAPNsClient(certfile="push.pem")
    client.start()
    client.submit_message(token_hex, b'{"aps":{"badge":1}}')
    unsent = client.shutdown()

Optional extras::

    pip install apns-stream[crypto]   # PKCS#12 (.p12) certificates
    pip install apns-stream[all]      # every optional extra
"""

from ._version import __version__
from .circuit_breaker import CircuitBreaker
from .client import APNsClient
from .errors import (
    APNsConnectionError,
    APNsEncodingError,
    APNsError,
    APNsProtocolError,
    APNsShutdownError,
    APNsStateError,
    APNsTimeoutError,
)
from .feedback import FeedbackTuple, fetch_feedback
from .inflight import InFlightBuffer
from .protocol import FrameCodec
from .replay import ReplayPlan, plan_replay
from .sync_client import SyncAPNsClient
from .transport import TLSTransport, Transport
from .types import (
    ClientStats,
    CloseSignal,
    ConnectionClosed,
    ErrorStatus,
    Notification,
    ProtocolError,
    ReconnectConfig,
    ReconnectMode,
    SequencedNotification,
    ShutdownRequested,
    SupervisorState,
)


def connect(transport: Transport | None = None, **kwargs) -> APNsClient:
    """Create an APNs client.

    Use as an async context manager. Keyword arguments are forwarded
    to :class:`APNsClient` -- common ones: ``certfile``, ``sandbox``,
    ``buffer_capacity``, ``reconnect``.

    Args:
        transport: Custom connection factory, e.g. for tests or proxies.
        **kwargs: Passed to :class:`APNsClient`.

    Returns:
        An :class:`APNsClient` instance; it starts on ``__aenter__``.
    """
    return APNsClient(transport, **kwargs)


__all__ = [
    "__version__",
    "connect",
    "APNsClient",
    "SyncAPNsClient",
    "CircuitBreaker",
    "FrameCodec",
    "InFlightBuffer",
    "ReplayPlan",
    "plan_replay",
    "Transport",
    "TLSTransport",
    "FeedbackTuple",
    "fetch_feedback",
    "Notification",
    "SequencedNotification",
    "CloseSignal",
    "ProtocolError",
    "ConnectionClosed",
    "ShutdownRequested",
    "ErrorStatus",
    "SupervisorState",
    "ReconnectConfig",
    "ReconnectMode",
    "ClientStats",
    "APNsError",
    "APNsEncodingError",
    "APNsConnectionError",
    "APNsTimeoutError",
    "APNsProtocolError",
    "APNsShutdownError",
    "APNsStateError",
]
