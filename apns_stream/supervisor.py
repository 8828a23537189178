# =============================================================================
# APNs Stream Client -- Connection Supervisor
# =============================================================================
#
# Runs generations back to back: connect, write/read until the close signal,
# replay whatever the server may not have taken, reconnect with backoff.
#
#   PENDING    -> CONNECTING | SHUTDOWN
#   CONNECTING -> ACTIVE     | SHUTDOWN
#   ACTIVE     -> DRAINING
#   DRAINING   -> CLOSED
#   CLOSED     -> CONNECTING | SHUTDOWN
# =============================================================================

from __future__ import annotations

import asyncio
import functools
import random
import time
from typing import Any, Callable

from ._logging import logger
from .circuit_breaker import CircuitBreaker
from .constants import DRAIN_TIMEOUT, IN_FLIGHT_CAPACITY, RECONNECT_ABSOLUTE_CAP
from .errors import APNsConnectionError, APNsStateError
from .generation import Generation
from .inflight import InFlightBuffer
from .protocol import FrameCodec
from .reader import ConnectionReader
from .replay import ReplayPlan, plan_replay
from .submission import SubmissionQueue
from .transport import Transport
from .types import (
    ClientStats,
    CloseSignal,
    ConnectionClosed,
    Notification,
    ProtocolError,
    ReconnectConfig,
    ReconnectMode,
    ShutdownRequested,
    SupervisorState,
)
from .writer import ConnectionWriter

_TRANSITIONS: dict[SupervisorState, frozenset[SupervisorState]] = {
    SupervisorState.PENDING: frozenset(
        {SupervisorState.CONNECTING, SupervisorState.SHUTDOWN}
    ),
    SupervisorState.CONNECTING: frozenset(
        {SupervisorState.ACTIVE, SupervisorState.SHUTDOWN}
    ),
    SupervisorState.ACTIVE: frozenset({SupervisorState.DRAINING}),
    SupervisorState.DRAINING: frozenset({SupervisorState.CLOSED}),
    SupervisorState.CLOSED: frozenset(
        {SupervisorState.CONNECTING, SupervisorState.SHUTDOWN}
    ),
    SupervisorState.SHUTDOWN: frozenset(),
}


def can_transition(current: SupervisorState, target: SupervisorState) -> bool:
    return current == target or target in _TRANSITIONS[current]


class ConnectionSupervisor:
    """Owns the connection generations of one client.

    Args:
        transport: Opens a connected stream pair per generation.
        submissions: Caller-facing submission queue.
        codec: Frame codec shared by every generation.
        buffer_capacity: In-flight buffer size per generation.
        reconnect: Backoff configuration for failed connects.
        circuit_breaker: Optional breaker consulted before each connect.
        read_timeout: Passed to each :class:`ConnectionReader`.
        drain_timeout: Seconds a graceful shutdown waits for queued
            notifications to be written, and a closing generation waits
            for its writer before the socket is aborted.
        stats: Counters to update.
        on_state_change: Called with each new :class:`SupervisorState`.
        on_failed: Called with ``(notification, status)`` for every
            notification the server rejected.
    """

    def __init__(
        self,
        transport: Transport,
        submissions: SubmissionQueue,
        *,
        codec: FrameCodec | None = None,
        buffer_capacity: int = IN_FLIGHT_CAPACITY,
        reconnect: ReconnectConfig | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        read_timeout: float | None = None,
        drain_timeout: float = DRAIN_TIMEOUT,
        stats: ClientStats | None = None,
        on_state_change: Callable[[SupervisorState], Any] | None = None,
        on_failed: Callable[[Notification, int], Any] | None = None,
    ) -> None:
        self._transport = transport
        self._submissions = submissions
        self._codec = codec or FrameCodec()
        self._buffer_capacity = buffer_capacity
        self._reconnect_cfg = reconnect or ReconnectConfig()
        self._circuit_breaker = circuit_breaker
        self._read_timeout = read_timeout
        self._drain_timeout = drain_timeout
        self._stats = stats or ClientStats()
        self._on_state_change = on_state_change
        self._on_failed = on_failed

        self._state = SupervisorState.PENDING
        self._shutdown = asyncio.Event()
        self._graceful = True
        self._generation: Generation | None = None
        self._generation_count = 0
        self._connect_attempts = 0
        self._last_plan: ReplayPlan | None = None
        self._unresolved: list[Notification] = []

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def generation(self) -> Generation | None:
        return self._generation

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    @property
    def last_plan(self) -> ReplayPlan | None:
        return self._last_plan

    @property
    def stats(self) -> ClientStats:
        return self._stats

    # -- Control --------------------------------------------------------------

    def request_shutdown(self, *, graceful: bool = True) -> None:
        """Stop after the current generation.

        With *graceful*, notifications already queued are still written
        (bounded by ``drain_timeout``); otherwise the active generation is
        closed right away. Either way, notifications written but not yet
        confirmed are reported unsent together with the queue.
        """
        if not self._shutdown.is_set():
            logger.info("Shutdown requested (graceful=%s)", graceful)
            self._graceful = graceful
            self._submissions.close()
            self._shutdown.set()
        elif graceful or not self._graceful:
            return
        else:
            self._graceful = False

        if not graceful and self._generation is not None:
            self._generation.close(ShutdownRequested())

    async def run(self) -> list[Notification]:
        """Drive generations until shutdown; return what was never resolved."""
        try:
            while not self._shutdown.is_set():
                self._set_state(SupervisorState.CONNECTING)
                generation = await self._connect()
                if generation is None:
                    break

                self._generation = generation
                self._set_state(SupervisorState.ACTIVE)
                writer_task, reader_task = self._start(generation)
                signal = await self._serve(generation, writer_task)

                self._set_state(SupervisorState.DRAINING)
                await self._drain(generation, signal, writer_task, reader_task)

                self._set_state(SupervisorState.CLOSED)
                await self._release(generation)
                self._generation = None
        finally:
            if self._generation is not None:
                # Cancelled mid-generation
                self._generation.close(ShutdownRequested())
                self._generation.writer.transport.abort()
                self._generation = None

        self._submissions.close()
        self._set_state(SupervisorState.SHUTDOWN)
        # Written but never confirmed go first, in send order
        unsent = self._unresolved + self._submissions.drain()
        self._unresolved = []
        if unsent:
            logger.warning("%d notifications left unsent at shutdown", len(unsent))
        return unsent

    # -- Internal: connecting -------------------------------------------------

    async def _connect(self) -> Generation | None:
        """Open the next generation, backing off between failures.

        Returns ``None`` on shutdown or once ``max_attempts`` is exhausted.
        """
        cfg = self._reconnect_cfg
        breaker = self._circuit_breaker

        while not self._shutdown.is_set():
            if breaker is not None and not breaker.can_execute():
                delay = breaker.retry_after()
                logger.warning("Circuit breaker open, next connect in %.1fs", delay)
                if await self._wait_shutdown(delay):
                    return None
                continue

            try:
                reader, writer = await self._transport.open()
            except (APNsConnectionError, OSError) as exc:
                self._stats.connect_failures += 1
                if breaker is not None:
                    breaker.record_failure()

                if cfg.max_attempts >= 0 and self._connect_attempts >= cfg.max_attempts:
                    logger.error(
                        "Giving up after %d failed connects: %s",
                        self._connect_attempts + 1,
                        exc,
                    )
                    return None

                delay = self._calculate_delay()
                self._connect_attempts += 1
                logger.warning(
                    "Connect failed (%s), retrying in %.1fs (attempt %d/%s)",
                    exc,
                    delay,
                    self._connect_attempts,
                    cfg.max_attempts if cfg.max_attempts >= 0 else "inf",
                )
                if await self._wait_shutdown(delay):
                    return None
                continue

            if breaker is not None:
                breaker.record_success()
            self._connect_attempts = 0
            self._generation_count += 1
            self._stats.generations = self._generation_count
            self._stats.connected_since = time.monotonic()
            logger.info("Generation %d connected", self._generation_count)
            return Generation(
                self._generation_count,
                reader,
                writer,
                InFlightBuffer(self._buffer_capacity),
            )
        return None

    async def _wait_shutdown(self, delay: float) -> bool:
        """Sleep for *delay*; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _calculate_delay(self) -> float:
        """Compute reconnect delay based on strategy."""
        cfg = self._reconnect_cfg
        attempt = self._connect_attempts

        if cfg.mode == ReconnectMode.LINEAR:
            delay = cfg.base_delay + attempt * cfg.base_delay
        elif cfg.mode == ReconnectMode.FIBONACCI:
            delay = cfg.base_delay * _fib(min(attempt + 1, 20))
        else:
            delay = cfg.base_delay * (cfg.factor**attempt)

        delay = min(delay, cfg.max_delay, RECONNECT_ABSOLUTE_CAP)

        if cfg.jitter:
            delay = max(0.0, delay + delay * 0.2 * (random.random() - 0.5))
        return delay

    # -- Internal: one generation ---------------------------------------------

    def _start(self, generation: Generation) -> tuple[asyncio.Task[int], asyncio.Task[Any]]:
        writer = ConnectionWriter(
            generation,
            self._submissions,
            self._codec,
            stats=self._stats,
            on_failed=self._on_failed,
        )
        reader = ConnectionReader(
            generation, self._codec, read_timeout=self._read_timeout
        )
        writer_task = asyncio.create_task(
            writer.run(), name=f"apns-writer-{generation.number}"
        )
        reader_task = asyncio.create_task(
            reader.run(), name=f"apns-reader-{generation.number}"
        )
        for task in (writer_task, reader_task):
            task.add_done_callback(functools.partial(_close_on_crash, generation))
        return writer_task, reader_task

    async def _serve(
        self, generation: Generation, writer_task: asyncio.Task[int]
    ) -> CloseSignal:
        closed = asyncio.ensure_future(generation.wait_closed())
        shutdown = asyncio.ensure_future(self._shutdown.wait())
        try:
            await asyncio.wait({closed, shutdown}, return_when=asyncio.FIRST_COMPLETED)

            if not generation.is_closed and self._graceful:
                # The queue is closed; the writer stops once it is empty
                await asyncio.wait(
                    {closed, writer_task},
                    timeout=self._drain_timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if not writer_task.done() and not generation.is_closed:
                    logger.warning(
                        "Drain timeout (%.1fs), %d notifications still queued",
                        self._drain_timeout,
                        len(self._submissions),
                    )
            generation.close(ShutdownRequested())
        finally:
            closed.cancel()
            shutdown.cancel()

        assert generation.signal is not None
        return generation.signal

    async def _drain(
        self,
        generation: Generation,
        signal: CloseSignal,
        writer_task: asyncio.Task[int],
        reader_task: asyncio.Task[Any],
    ) -> None:
        # The snapshot must not be taken while the writer can still append
        done, _ = await asyncio.wait({writer_task}, timeout=self._drain_timeout)
        if not done:
            logger.warning(
                "Writer of generation %d did not stop, aborting connection",
                generation.number,
            )
            generation.writer.transport.abort()
            await asyncio.wait({writer_task})

        reader_task.cancel()
        await asyncio.gather(reader_task, return_exceptions=True)

        snapshot = generation.buffer.snapshot()
        plan = plan_replay(signal, snapshot)
        self._last_plan = plan
        generation.buffer.clear()

        cause = signal.cause
        if isinstance(cause, ProtocolError):
            self._stats.last_error_status = cause.status
            if plan.failed is not None:
                self._stats.failed += 1
                if self._on_failed is not None:
                    self._on_failed(plan.failed, cause.status)

        self._stats.expired += plan.expired
        self._stats.replayed += len(plan)
        self._submissions.put_front(plan.notifications)
        self._unresolved.extend(plan.unresolved)

        logger.info(
            "Generation %d closed (%s): replaying %d of %d in-flight",
            generation.number,
            type(cause).__name__,
            len(plan),
            len(snapshot),
        )

    async def _release(self, generation: Generation) -> None:
        writer = generation.writer
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError) as exc:
            logger.debug("Error closing generation %d: %s", generation.number, exc)

    # -- State management -----------------------------------------------------

    def _set_state(self, new_state: SupervisorState) -> None:
        if new_state == self._state:
            return
        if not can_transition(self._state, new_state):
            raise APNsStateError(self._state.value, new_state.value)
        old = self._state
        self._state = new_state
        logger.debug("State: %s -> %s", old.value, new_state.value)
        if self._on_state_change:
            self._on_state_change(new_state)


def _close_on_crash(generation: Generation, task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("%s crashed: %r", task.get_name(), exc)
        generation.close(ConnectionClosed(f"{task.get_name()} crashed: {exc}"))


def _fib(n: int) -> int:
    """Fibonacci number for reconnect delay calculation."""
    a, b = 0, 1
    for _ in range(n):
        a, b = b, a + b
    return a
