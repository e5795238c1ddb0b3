"""Tests for the stdio JSON-RPC transport."""

import sys

import pytest

from toolbridge.mcp.transport import (
    RPCError,
    StdioTransport,
    TransportClosedError,
    TransportError,
)


@pytest.fixture
def transport():
    t = StdioTransport(sys.executable, ["-m", "toolbridge.server"])
    t.start()
    yield t
    t.close()


class TestStdioTransport:
    def test_request_response(self, transport):
        result = transport.request("initialize", {"protocolVersion": "2025-06-18"}, timeout=15)
        assert result["serverInfo"]["name"] == "toolbridge-server"
        assert transport.pending_count == 0

    def test_rpc_error(self, transport):
        with pytest.raises(RPCError) as info:
            transport.request("no/such/method", timeout=15)
        assert info.value.code == -32601

    def test_notification_then_request(self, transport):
        transport.notify("notifications/initialized")
        assert transport.request("ping", timeout=15) == {}

    def test_close_is_idempotent_and_stops_process(self, transport):
        transport.close()
        transport.close()
        assert not transport.is_running
        with pytest.raises(TransportClosedError):
            transport.request("ping")

    def test_missing_executable(self):
        t = StdioTransport("definitely-not-a-real-command-toolbridge")
        with pytest.raises(TransportError):
            t.start()

    def test_on_close_called_when_server_exits(self):
        closed = []
        t = StdioTransport(sys.executable, ["-c", "pass"], on_close=closed.append)
        t.start()
        t._reader.join(timeout=10)
        assert closed == [t]
        t.close()

    def test_on_close_not_called_for_local_close(self, transport):
        closed = []
        transport._on_close = closed.append
        transport.close()
        assert closed == []
