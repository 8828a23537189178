# =============================================================================
# APNs Stream Client -- Synchronous Wrapper
# =============================================================================
#
# Thread-based wrapper around APNsClient for blocking code.
# =============================================================================

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, Mapping

from ._logging import logger
from .client import APNsClient
from .errors import APNsConnectionError, APNsShutdownError, APNsTimeoutError
from .types import Notification, SupervisorState


class SyncAPNsClient:
    """Blocking / thread-based APNs client.

    Runs an :class:`APNsClient` on a background event loop thread. All
    public methods are thread-safe.

    Keyword arguments are forwarded to :class:`APNsClient`.

    Example::

        client = SyncAPNsClient(certfile="push.pem", sandbox=True)
        client.start()
        client.submit_message(token_hex, {"aps": {"alert": "Hi"}})
        unsent = client.shutdown()
    """

    def __init__(self, **client_kwargs: Any) -> None:
        self._client_kwargs = client_kwargs
        self._unsent_handlers: list[Callable[[list[Notification]], Any]] = []
        self._failed_handlers: list[Callable[[Notification, int], Any]] = []

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._client: APNsClient | None = None
        self._started = threading.Event()
        self._stop: asyncio.Event | None = None
        self._start_error: BaseException | None = None

    def __enter__(self) -> SyncAPNsClient:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    # -- Lifecycle ------------------------------------------------------------

    def start(self, timeout: float = 5.0) -> None:
        """Start the background thread. Blocks until the client is running."""
        if self._thread is not None:
            return

        self._started.clear()
        self._thread = threading.Thread(
            target=self._run_loop, daemon=True, name="apns-client"
        )
        self._thread.start()

        if not self._started.wait(timeout=timeout):
            raise APNsTimeoutError(f"Client did not start within {timeout}s")
        if self._start_error is not None:
            raise APNsConnectionError(
                f"Client failed to start: {self._start_error}"
            ) from self._start_error

    def shutdown(
        self, *, graceful: bool = True, timeout: float | None = 30.0
    ) -> list[Notification]:
        """Stop the client; returns the notifications that were never resolved."""
        loop, client = self._loop, self._client
        if loop is None or client is None:
            return []

        future = asyncio.run_coroutine_threadsafe(
            client.shutdown(graceful=graceful), loop
        )
        unsent = future.result(timeout=timeout)

        stop = self._stop
        if stop is not None:
            loop.call_soon_threadsafe(stop.set)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        self._thread = None
        return unsent

    # -- Submission -----------------------------------------------------------

    def submit(self, notification: Notification, timeout: float = 5.0) -> Notification:
        """Queue a notification. Raises the same errors as :meth:`APNsClient.submit`."""
        loop, client = self._loop, self._client
        if loop is None or client is None:
            raise APNsShutdownError("Client is not running")

        async def _submit() -> Notification:
            return client.submit(notification)

        future = asyncio.run_coroutine_threadsafe(_submit(), loop)
        return future.result(timeout=timeout)

    def submit_message(
        self,
        token: str | bytes,
        payload: bytes | str | Mapping[str, Any],
        *,
        expiry: float | None = None,
    ) -> Notification:
        return self.submit(Notification.create(token, payload, expiry=expiry))

    # -- Handler registration -------------------------------------------------

    def on_unsent_notifications(
        self, fn: Callable[[list[Notification]], Any]
    ) -> Callable[[list[Notification]], Any]:
        """Register a handler; it runs on the background thread."""
        self._unsent_handlers.append(fn)
        if self._client is not None:
            self._client.on_unsent_notifications(fn)
        return fn

    def on_failed_notification(
        self, fn: Callable[[Notification, int], Any]
    ) -> Callable[[Notification, int], Any]:
        self._failed_handlers.append(fn)
        if self._client is not None:
            self._client.on_failed_notification(fn)
        return fn

    # -- Properties -----------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._client is not None and self._client.is_running

    @property
    def state(self) -> SupervisorState:
        if self._client:
            return self._client.state
        return SupervisorState.PENDING

    @property
    def pending(self) -> int:
        if self._client:
            return self._client.pending
        return 0

    def get_stats(self) -> dict[str, Any]:
        if self._client:
            return self._client.get_stats()
        return {}

    # -- Internal -------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background thread: run the async event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._async_main())
        except Exception as exc:
            logger.error("Background loop error: %s", exc)
        finally:
            self._loop.close()
            self._loop = None

    async def _async_main(self) -> None:
        """Async entry point in the background thread."""
        self._stop = asyncio.Event()
        try:
            self._client = APNsClient(**self._client_kwargs)
            for handler in self._unsent_handlers:
                self._client.on_unsent_notifications(handler)
            for failed in self._failed_handlers:
                self._client.on_failed_notification(failed)
            await self._client.start()
        except Exception as exc:
            self._start_error = exc
            logger.error("Client error: %s", exc)
            return
        finally:
            self._started.set()

        await self._stop.wait()
