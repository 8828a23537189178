"""Tests for the feedback service reader."""

import struct
from datetime import UTC, datetime

import pytest

from apns_stream.feedback import decode_feedback, fetch_feedback
from tests.conftest import FakeTransport, make_token


def _tuple(ts: int, token: bytes) -> bytes:
    return struct.pack(">IH", ts, len(token)) + token


class TestDecodeFeedback:
    def test_complete_tuples(self):
        data = _tuple(1_000_000, make_token(1)) + _tuple(2_000_000, make_token(2))
        tuples, rest = decode_feedback(data)
        assert rest == b""
        assert [t.token for t in tuples] == [make_token(1), make_token(2)]
        assert tuples[0].timestamp == datetime.fromtimestamp(1_000_000, UTC)
        assert tuples[1].token_hex == make_token(2).hex()

    def test_partial_tuple_kept(self):
        data = _tuple(1, make_token(1)) + _tuple(2, make_token(2))[:10]
        tuples, rest = decode_feedback(data)
        assert len(tuples) == 1
        assert rest == _tuple(2, make_token(2))[:10]

    def test_empty(self):
        assert decode_feedback(b"") == ([], b"")


class TestFetchFeedback:
    @pytest.mark.asyncio
    async def test_reads_until_eof_across_chunks(self):
        transport = FakeTransport()
        data = b"".join(_tuple(i, make_token(i)) for i in range(1, 4))

        original_open = transport.open

        async def open_and_feed():
            reader, writer = await original_open()
            reader.feed_data(data[:7])
            reader.feed_data(data[7:])
            reader.feed_eof()
            return reader, writer

        transport.open = open_and_feed
        tuples = await fetch_feedback(transport)
        assert [t.token for t in tuples] == [make_token(i) for i in range(1, 4)]
        assert transport.connections[0].writer.closed
