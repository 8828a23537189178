"""Tests for the TLS transport (connection attempts are mocked)."""

import asyncio
import ssl
from unittest.mock import AsyncMock, patch

import pytest

from apns_stream.errors import APNsConnectionError, APNsTimeoutError
from apns_stream.transport import TLSTransport


class TestTLSTransport:
    def test_default_context_cached(self):
        t = TLSTransport("localhost", 2195)
        ctx = t.ssl_context()
        assert isinstance(ctx, ssl.SSLContext)
        assert t.ssl_context() is ctx

    def test_given_context_used(self):
        ctx = ssl.create_default_context()
        assert TLSTransport(ssl_context=ctx).ssl_context() is ctx

    @pytest.mark.asyncio
    async def test_refused_raises_connection_error(self):
        t = TLSTransport("localhost", 2195)
        with patch(
            "asyncio.open_connection",
            AsyncMock(side_effect=ConnectionRefusedError("refused")),
        ):
            with pytest.raises(APNsConnectionError):
                await t.open()

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        t = TLSTransport("localhost", 2195, connect_timeout=0.01)
        with patch("asyncio.open_connection", hang):
            with pytest.raises(APNsTimeoutError):
                await t.open()

    @pytest.mark.asyncio
    async def test_missing_certificate(self, tmp_path):
        t = TLSTransport("localhost", 2195, certfile=tmp_path / "missing.pem")
        with pytest.raises(APNsConnectionError):
            await t.open()

    @pytest.mark.asyncio
    async def test_returns_streams(self):
        streams = (object(), object())
        t = TLSTransport("localhost", 2195)
        mock = AsyncMock(return_value=streams)
        with patch("asyncio.open_connection", mock):
            assert await t.open() == streams
        assert mock.call_args.kwargs["server_hostname"] == "localhost"
