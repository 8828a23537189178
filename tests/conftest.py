"""Shared fixtures: an in-memory gateway standing in for the TLS transport."""

import asyncio
import struct

import pytest

from apns_stream.errors import APNsConnectionError
from apns_stream.protocol import FrameCodec
from apns_stream.types import Notification


def make_token(n: int) -> bytes:
    return bytes([n % 256]) * 32


def make_notification(n: int, **kwargs) -> Notification:
    return Notification(token=make_token(n), payload=f'{{"n":{n}}}'.encode(), **kwargs)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class _FakeSocketTransport:
    def __init__(self, writer: "FakeWriter") -> None:
        self._writer = writer
        self.aborted = False

    def abort(self) -> None:
        self.aborted = True
        self._writer.close()

    def is_closing(self) -> bool:
        return self._writer.closed


class FakeWriter:
    """Collects written frames the way a StreamWriter would send them."""

    def __init__(self, reader: asyncio.StreamReader) -> None:
        self._reader = reader
        self.frames: list[bytes] = []
        self.closed = False
        self.transport = _FakeSocketTransport(self)
        self._gate = asyncio.Event()
        self._gate.set()

    def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.frames.append(bytes(data))

    async def drain(self) -> None:
        await self._gate.wait()
        if self.closed:
            raise ConnectionResetError("socket closed")

    def block_drain(self) -> None:
        self._gate.clear()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._gate.set()
        if not self._reader.at_eof():
            self._reader.feed_eof()

    async def wait_closed(self) -> None:
        return None


class FakeConnection:
    """One accepted connection of the fake gateway."""

    def __init__(self) -> None:
        self.reader = asyncio.StreamReader()
        self.writer = FakeWriter(self.reader)

    @property
    def frames(self) -> list[bytes]:
        return self.writer.frames

    def decoded(self) -> list[tuple[bytes, bytes, int]]:
        codec = FrameCodec()
        return [codec.decode(f) for f in self.frames]

    def send_error(self, status: int, failing_id: int) -> None:
        self.reader.feed_data(struct.pack(">BBI", 8, status, failing_id))
        self.reader.feed_eof()

    def drop(self) -> None:
        self.reader.feed_eof()


class FakeTransport:
    """Hands out FakeConnections; ``failures`` connect attempts fail first.

    ``failures=-1`` makes every attempt fail.
    """

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.attempts = 0
        self.connections: list[FakeConnection] = []

    async def open(self):
        self.attempts += 1
        if self.failures < 0 or self.attempts <= self.failures:
            raise APNsConnectionError("connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn.reader, conn.writer

    async def connection(self, index: int, timeout: float = 2.0) -> FakeConnection:
        await wait_until(lambda: len(self.connections) > index, timeout)
        return self.connections[index]


@pytest.fixture
def transport():
    return FakeTransport()
