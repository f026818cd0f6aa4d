"""
Tests for the bridge controller's message handling.
"""

import asyncio

import pytest

from zigctl.config import BridgeConfig
from zigctl.errors import AttributeUnsupportedError, TransportFailureError, TransportTimeoutError
from zigctl.network.base import NetworkEvent, NetworkEventType
from zigctl.network.bridge import (
    ERROR_DEVICE_TIMEOUT,
    ERROR_UNSUPPORTED_ATTRIBUTE,
    BridgeController,
    JsonRpcError,
)


class FailingBridge(BridgeController):
    """Answers every request with one JSON-RPC error."""

    def __init__(self, code, data=None):
        super().__init__(BridgeConfig(url="ws://localhost:8765/rpc"))
        self.error = JsonRpcError(code, "boom", data)

    async def _send_request(self, method, params=None):
        raise self.error


class TestNetworkEvent:
    """Tests for wire notifications."""

    def test_from_dict(self):
        """Device records are parsed from joins."""
        event = NetworkEvent.from_dict({
            "type": "deviceJoined",
            "device": {"ieee_address": "0x00158d0001234567", "network_address": 1234},
        })

        assert event.type == NetworkEventType.DEVICE_JOINED
        assert event.address == "0x00158d0001234567"
        assert event.record.network_address == 1234

    def test_unknown_type(self):
        """Unknown notification types are rejected."""
        with pytest.raises(ValueError):
            NetworkEvent.from_dict({"type": "somethingElse"})


class TestBridgeMessages:
    """Tests for response and notification dispatch."""

    @pytest.mark.asyncio
    async def test_response_resolves_request(self):
        """Responses complete the pending request with the same id."""
        bridge = BridgeController(BridgeConfig())
        future = asyncio.get_running_loop().create_future()
        bridge._pending[7] = future

        bridge._handle_message({"jsonrpc": "2.0", "id": 7, "result": {"ok": True}})

        assert await future == {"ok": True}
        assert 7 not in bridge._pending

    @pytest.mark.asyncio
    async def test_error_response(self):
        """Error responses fail the pending request."""
        bridge = BridgeController(BridgeConfig())
        future = asyncio.get_running_loop().create_future()
        bridge._pending[8] = future

        bridge._handle_message({"jsonrpc": "2.0", "id": 8, "error": {"code": -1, "message": "nope"}})

        with pytest.raises(JsonRpcError):
            await future

    @pytest.mark.asyncio
    async def test_notification_queued(self):
        """Event notifications feed events()."""
        bridge = BridgeController(BridgeConfig())

        bridge._handle_message({
            "jsonrpc": "2.0",
            "method": "event",
            "params": {"type": "deviceLeave", "ieee_address": "0x01"},
        })
        bridge._connection_lost()

        received = [event async for event in bridge.events()]

        assert [event.type for event in received] == [
            NetworkEventType.DEVICE_LEAVE,
            NetworkEventType.ADAPTER_DISCONNECTED,
        ]

    @pytest.mark.asyncio
    async def test_not_connected(self):
        """Requests without a connection fail."""
        bridge = BridgeController(BridgeConfig())

        with pytest.raises(TransportFailureError):
            await bridge.issue_command("0x01", 1, "genOnOff", "on", {})


class TestBridgeErrors:
    """Tests for sidecar error code mapping."""

    @pytest.mark.asyncio
    async def test_unsupported_attribute(self):
        """The unsupported attribute code maps to AttributeUnsupportedError."""
        bridge = FailingBridge(ERROR_UNSUPPORTED_ATTRIBUTE)

        with pytest.raises(AttributeUnsupportedError):
            await bridge.read_attributes("0x01", 1, "seMetering", ["currentSummDelivered"])

    @pytest.mark.asyncio
    async def test_device_timeout(self):
        """The device timeout code maps to TransportTimeoutError."""
        bridge = FailingBridge(ERROR_DEVICE_TIMEOUT, {"timeout": 10})

        with pytest.raises(TransportTimeoutError) as exc_info:
            await bridge.issue_command("0x01", 1, "genOnOff", "on", {})

        assert exc_info.value.timeout == 10

    @pytest.mark.asyncio
    async def test_other_error(self):
        """Anything else is a transport failure carrying the message."""
        bridge = FailingBridge(-32000)

        with pytest.raises(TransportFailureError) as exc_info:
            await bridge.set_pairing_window(60)

        assert "boom" in exc_info.value.message
