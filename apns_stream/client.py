# =============================================================================
# APNs Stream Client -- Async Client
# =============================================================================
#
# Primary public API: submit notifications, learn what was never sent.
# =============================================================================

from __future__ import annotations

import asyncio
import os
from typing import Any, Awaitable, Callable, Mapping

from ._logging import logger
from .circuit_breaker import CircuitBreaker
from .constants import (
    DRAIN_TIMEOUT,
    GATEWAY_HOST,
    GATEWAY_PORT,
    GATEWAY_SANDBOX_HOST,
    IN_FLIGHT_CAPACITY,
    MAX_PAYLOAD_SIZE,
)
from .errors import APNsShutdownError
from .protocol import FrameCodec
from .submission import SubmissionQueue
from .supervisor import ConnectionSupervisor
from .transport import TLSTransport, Transport
from .types import ClientStats, Notification, ReconnectConfig, SupervisorState

UnsentHandler = Callable[[list[Notification]], Any]
AsyncUnsentHandler = Callable[[list[Notification]], Awaitable[Any]]
FailedHandler = Callable[[Notification, int], Any]


class APNsClient:
    """Async client for the binary push gateway.

    Submissions are accepted immediately and written by a background
    supervisor. Delivery failures never surface from :meth:`submit`: the
    server reports them later and the client resends whatever followed the
    rejected notification. Whatever is still unresolved at shutdown is
    passed to the handlers registered with :meth:`on_unsent_notifications`.

    Args:
        transport: Connection factory. Defaults to :class:`TLSTransport`
            built from *certfile*/*keyfile*/*password* and *sandbox*.
        certfile: Client certificate (PEM chain or PKCS#12 bundle).
        keyfile: PEM private key when not inside *certfile*.
        password: Key or bundle password.
        sandbox: Use the development gateway.
        host: Override the gateway host.
        port: Gateway port (default 2195).
        buffer_capacity: Notifications kept for replay per connection.
        max_payload_size: Payload size limit enforced at submit.
        reconnect: Backoff configuration.
        circuit_breaker: Connect circuit breaker. A default
            :class:`CircuitBreaker` is created when omitted.
        use_circuit_breaker: Set ``False`` to connect without a breaker.
        read_timeout: Optional liveness deadline on the error-frame read.
        drain_timeout: Seconds a graceful shutdown may spend flushing.

    Example::

        async with APNsClient(certfile="push.pem", sandbox=True) as client:
            client.submit_message(token_hex, {"aps": {"alert": "Hello"}})
    """

    def __init__(
        self,
        transport: Transport | None = None,
        *,
        certfile: str | os.PathLike[str] | None = None,
        keyfile: str | os.PathLike[str] | None = None,
        password: str | bytes | None = None,
        sandbox: bool = False,
        host: str | None = None,
        port: int = GATEWAY_PORT,
        buffer_capacity: int = IN_FLIGHT_CAPACITY,
        max_payload_size: int = MAX_PAYLOAD_SIZE,
        reconnect: ReconnectConfig | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        use_circuit_breaker: bool = True,
        read_timeout: float | None = None,
        drain_timeout: float = DRAIN_TIMEOUT,
    ) -> None:
        if transport is None:
            transport = TLSTransport(
                host or (GATEWAY_SANDBOX_HOST if sandbox else GATEWAY_HOST),
                port,
                certfile=certfile,
                keyfile=keyfile,
                password=password,
            )
        if circuit_breaker is None and use_circuit_breaker:
            circuit_breaker = CircuitBreaker()

        self._transport = transport
        self._codec = FrameCodec(max_payload_size)
        self._submissions = SubmissionQueue()
        self._stats = ClientStats()

        self._unsent_handlers: list[UnsentHandler | AsyncUnsentHandler] = []
        self._failed_handlers: list[FailedHandler] = []
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._supervisor = ConnectionSupervisor(
            transport,
            self._submissions,
            codec=self._codec,
            buffer_capacity=buffer_capacity,
            reconnect=reconnect,
            circuit_breaker=circuit_breaker,
            read_timeout=read_timeout,
            drain_timeout=drain_timeout,
            stats=self._stats,
            on_failed=self._on_failed,
        )
        self._run_task: asyncio.Task[list[Notification]] | None = None
        self._unsent: list[Notification] | None = None

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> APNsClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.shutdown()

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> SupervisorState:
        return self._supervisor.state

    @property
    def stats(self) -> ClientStats:
        return self._stats

    @property
    def pending(self) -> int:
        """Notifications submitted (or requeued) but not yet written."""
        return len(self._submissions)

    @property
    def is_running(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    @property
    def codec(self) -> FrameCodec:
        return self._codec

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Start the supervisor in the background. Idempotent."""
        if self._run_task is not None:
            return
        self._run_task = asyncio.create_task(self._run(), name="apns-supervisor")

    async def shutdown(
        self, *, graceful: bool = True, timeout: float | None = None
    ) -> list[Notification]:
        """Stop the client and return the notifications that were never resolved.

        Those are the notifications written on the last connection but not
        yet confirmed, in send order, followed by whatever was still queued.
        The same list is passed to every unsent-notifications handler.
        """
        self._supervisor.request_shutdown(graceful=graceful)
        if self._run_task is None:
            # Never started: everything submitted is unsent
            self._run_task = asyncio.create_task(
                self._run(), name="apns-supervisor"
            )
        await asyncio.wait_for(asyncio.shield(self._run_task), timeout=timeout)
        return list(self._unsent or [])

    async def wait_closed(self) -> list[Notification]:
        """Wait for the supervisor to finish (shutdown or connect give-up)."""
        if self._run_task is None:
            raise RuntimeError("Client was never started")
        await asyncio.shield(self._run_task)
        return list(self._unsent or [])

    # -- Submission -----------------------------------------------------------

    def submit(self, notification: Notification) -> Notification:
        """Queue *notification* for sending.

        Raises:
            APNsEncodingError: If the notification can never be framed.
            APNsShutdownError: If the client is shutting down.
        """
        if self._submissions.closed:
            raise APNsShutdownError("Client is shutting down")
        self._codec.check(notification)
        self._submissions.put(notification)
        self._stats.submitted += 1
        return notification

    def submit_message(
        self,
        token: str | bytes,
        payload: bytes | str | Mapping[str, Any],
        *,
        expiry: float | None = None,
    ) -> Notification:
        """Build a :class:`Notification` and :meth:`submit` it."""
        return self.submit(Notification.create(token, payload, expiry=expiry))

    # -- Handlers -------------------------------------------------------------

    def on_unsent_notifications(
        self, fn: UnsentHandler | AsyncUnsentHandler
    ) -> UnsentHandler | AsyncUnsentHandler:
        """Register a handler for the unresolved notifications at shutdown.

        Usable as a decorator. Called exactly once, with a possibly empty
        list, when the client stops.
        """
        self._unsent_handlers.append(fn)
        return fn

    def on_failed_notification(self, fn: FailedHandler) -> FailedHandler:
        """Register a handler called with ``(notification, status)`` whenever
        the server rejects a notification that was still buffered, or one is
        dropped because it cannot be encoded."""
        self._failed_handlers.append(fn)
        return fn

    # -- Stats ----------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        generation = self._supervisor.generation
        return {
            "state": self.state.value,
            "pending": self.pending,
            "in_flight": len(generation.buffer) if generation else 0,
            "generation": generation.number if generation else None,
            "submitted": self._stats.submitted,
            "sent": self._stats.sent,
            "bytes_sent": self._stats.bytes_sent,
            "replayed": self._stats.replayed,
            "failed": self._stats.failed,
            "evicted": self._stats.evicted,
            "expired": self._stats.expired,
            "generations": self._stats.generations,
            "connect_failures": self._stats.connect_failures,
            "last_error_status": self._stats.last_error_status,
        }

    # -- Internal -------------------------------------------------------------

    async def _run(self) -> list[Notification]:
        unsent = await self._supervisor.run()
        self._unsent = unsent
        await self._report_unsent(unsent)
        return unsent

    async def _report_unsent(self, unsent: list[Notification]) -> None:
        for handler in self._unsent_handlers:
            try:
                result = handler(list(unsent))
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                logger.error("Unsent-notifications handler error: %s", exc)

    def _on_failed(self, notification: Notification, status: int) -> None:
        for handler in self._failed_handlers:
            try:
                result = handler(notification, status)
                if asyncio.iscoroutine(result):
                    self._fire_task(result)
            except Exception as exc:
                logger.error("Failed-notification handler error: %s", exc)

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
