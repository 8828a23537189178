"""Tests for the connection reader."""

import asyncio
import struct

import pytest

from apns_stream.generation import Generation
from apns_stream.inflight import InFlightBuffer
from apns_stream.protocol import FrameCodec
from apns_stream.reader import ConnectionReader
from apns_stream.types import ConnectionClosed, ProtocolError, ShutdownRequested
from tests.conftest import FakeConnection


def _setup(read_timeout=None):
    conn = FakeConnection()
    generation = Generation(1, conn.reader, conn.writer, InFlightBuffer())
    reader = ConnectionReader(generation, FrameCodec(), read_timeout=read_timeout)
    return conn, generation, reader


class TestConnectionReader:
    @pytest.mark.asyncio
    async def test_error_frame(self):
        conn, generation, reader = _setup()
        conn.send_error(status=8, failing_id=3)
        cause = await asyncio.wait_for(reader.run(), 1.0)
        assert cause == ProtocolError(status=8, failing_id=3)
        assert generation.signal.cause == cause
        assert generation.signal.generation == 1

    @pytest.mark.asyncio
    async def test_eof_without_bytes(self):
        conn, generation, reader = _setup()
        conn.drop()
        cause = await asyncio.wait_for(reader.run(), 1.0)
        assert isinstance(cause, ConnectionClosed)
        assert generation.is_closed

    @pytest.mark.asyncio
    async def test_partial_frame(self):
        conn, generation, reader = _setup()
        conn.reader.feed_data(b"\x08\x08\x00")
        conn.reader.feed_eof()
        cause = await asyncio.wait_for(reader.run(), 1.0)
        assert isinstance(cause, ConnectionClosed)
        assert "3 bytes" in cause.reason

    @pytest.mark.asyncio
    async def test_malformed_frame(self):
        conn, generation, reader = _setup()
        conn.reader.feed_data(struct.pack(">BBI", 1, 0, 0))
        cause = await asyncio.wait_for(reader.run(), 1.0)
        assert isinstance(cause, ConnectionClosed)

    @pytest.mark.asyncio
    async def test_io_error(self):
        conn, generation, reader = _setup()
        conn.reader.set_exception(ConnectionResetError("reset by peer"))
        cause = await asyncio.wait_for(reader.run(), 1.0)
        assert isinstance(cause, ConnectionClosed)
        assert "reset by peer" in cause.reason

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        conn, generation, reader = _setup(read_timeout=0.01)
        cause = await asyncio.wait_for(reader.run(), 1.0)
        assert isinstance(cause, ConnectionClosed)

    @pytest.mark.asyncio
    async def test_waits_forever_by_default(self):
        conn, generation, reader = _setup()
        task = asyncio.create_task(reader.run())
        await asyncio.sleep(0.05)
        assert not task.done()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_only_first_signal_counts(self):
        conn, generation, reader = _setup()
        assert generation.close(ShutdownRequested()) is True
        conn.send_error(status=8, failing_id=1)
        await asyncio.wait_for(reader.run(), 1.0)
        assert isinstance(generation.signal.cause, ShutdownRequested)
