"""Tests for APNsClient (fake transport, no sockets)."""

import asyncio

import pytest

from apns_stream import connect
from apns_stream.client import APNsClient
from apns_stream.errors import APNsEncodingError, APNsShutdownError
from apns_stream.transport import TLSTransport
from apns_stream.types import Notification, ReconnectConfig, SupervisorState
from tests.conftest import FakeTransport, make_notification, make_token, wait_until

FAST = ReconnectConfig(base_delay=0.001, max_delay=0.01, jitter=False)


@pytest.fixture
def client(transport):
    return APNsClient(transport, reconnect=FAST, use_circuit_breaker=False)


class TestConstruction:
    def test_default_transport_targets_production(self):
        c = APNsClient()
        assert isinstance(c._transport, TLSTransport)
        assert c._transport.address == ("gateway.push.apple.com", 2195)

    def test_sandbox(self):
        c = APNsClient(sandbox=True)
        assert c._transport.address == ("gateway.sandbox.push.apple.com", 2195)

    def test_initial_state(self, client):
        assert client.state == SupervisorState.PENDING
        assert client.pending == 0
        assert client.is_running is False
        assert client.get_stats()["in_flight"] == 0

    def test_connect_factory(self, transport):
        c = connect(transport, buffer_capacity=10)
        assert isinstance(c, APNsClient)


class TestSubmit:
    def test_submit_queues(self, client):
        n = make_notification(1)
        assert client.submit(n) is n
        assert client.pending == 1
        assert client.stats.submitted == 1

    def test_oversized_payload_rejected_synchronously(self, transport):
        c = APNsClient(transport, max_payload_size=8)
        with pytest.raises(APNsEncodingError):
            c.submit(Notification(make_token(1), b"x" * 9))
        assert c.pending == 0

    def test_malformed_token_rejected(self, client):
        with pytest.raises(APNsEncodingError):
            client.submit_message("abcd", {"aps": {}})
        assert client.pending == 0

    def test_submit_message(self, client):
        n = client.submit_message(make_token(3).hex(), {"aps": {"badge": 1}})
        assert n.token == make_token(3)
        assert n.payload == b'{"aps":{"badge":1}}'


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_sends_and_shuts_down(self, client, transport):
        async with client:
            for i in range(1, 4):
                client.submit(make_notification(i))
            conn = await transport.connection(0)
            await wait_until(lambda: len(conn.frames) == 3)
            assert client.state == SupervisorState.ACTIVE
            assert client.get_stats()["in_flight"] == 3
        assert client.state == SupervisorState.SHUTDOWN
        assert client.stats.sent == 3

    @pytest.mark.asyncio
    async def test_submit_after_shutdown_raises(self, client):
        await client.start()
        await client.shutdown()
        with pytest.raises(APNsShutdownError):
            client.submit(make_notification(1))

    @pytest.mark.asyncio
    async def test_unsent_handler_reports_when_never_connected(self):
        transport = FakeTransport(failures=-1)
        client = APNsClient(transport, reconnect=FAST, use_circuit_breaker=False)
        reported = []
        client.on_unsent_notifications(reported.append)

        await client.start()
        for i in range(1, 4):
            client.submit(make_notification(i))
        await wait_until(lambda: transport.attempts >= 1)
        unsent = await client.shutdown()

        assert unsent == [make_notification(i) for i in range(1, 4)]
        assert reported == [unsent]
        assert transport.connections == []

    @pytest.mark.asyncio
    async def test_unsent_handler_reports_in_flight_at_shutdown(self, client, transport):
        reported = []
        client.on_unsent_notifications(reported.append)
        await client.start()
        for i in range(1, 4):
            client.submit(make_notification(i))
        conn = await transport.connection(0)
        await wait_until(lambda: len(conn.frames) == 3)

        unsent = await client.shutdown()

        assert unsent == [make_notification(i) for i in range(1, 4)]
        assert reported == [unsent]
        assert len(transport.connections) == 1

    @pytest.mark.asyncio
    async def test_async_unsent_handler_awaited(self, client):
        reported = []

        @client.on_unsent_notifications
        async def handler(unsent):
            await asyncio.sleep(0)
            reported.append(len(unsent))

        client.submit(make_notification(1))
        await client.shutdown()
        assert reported == [1]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_break_shutdown(self, client):
        def broken(unsent):
            raise RuntimeError("boom")

        client.on_unsent_notifications(broken)
        assert await client.shutdown() == []

    @pytest.mark.asyncio
    async def test_failed_handler(self, client, transport):
        failures = []
        client.on_failed_notification(lambda n, status: failures.append((n, status)))
        await client.start()
        for i in range(1, 4):
            client.submit(make_notification(i))
        conn = await transport.connection(0)
        await wait_until(lambda: len(conn.frames) == 3)
        conn.send_error(status=8, failing_id=2)

        second = await transport.connection(1)
        await wait_until(lambda: len(second.frames) == 1)
        assert failures == [(make_notification(2), 8)]
        assert client.stats.replayed == 1
        await client.shutdown()

    @pytest.mark.asyncio
    async def test_wait_closed_after_give_up(self):
        transport = FakeTransport(failures=-1)
        client = APNsClient(
            transport,
            reconnect=ReconnectConfig(base_delay=0.001, max_attempts=0, jitter=False),
            use_circuit_breaker=False,
        )
        client.submit(make_notification(1))
        await client.start()
        assert await asyncio.wait_for(client.wait_closed(), 2.0) == [make_notification(1)]
        assert client.is_running is False

    @pytest.mark.asyncio
    async def test_wait_closed_requires_start(self, client):
        with pytest.raises(RuntimeError):
            await client.wait_closed()
