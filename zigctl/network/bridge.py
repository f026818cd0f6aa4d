"""
Bridge Network Controller.

Talks to a sidecar process that owns the radio (a zigbee-herdsman host or
similar) over WebSocket/JSON-RPC.

Architecture:
    zigctl (Python) <--WebSocket/JSON-RPC--> sidecar <--serial--> radio

Requests:
    {"jsonrpc": "2.0", "id": 7, "method": "command", "params": {...}}

Responses carry ``result`` or ``error`` ({code, message, data}).
Notifications use method ``event`` with the raw event as params:
    {"jsonrpc": "2.0", "method": "event", "params": {"type": "deviceJoined", "device": {...}}}
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import aiohttp

from ..config import BridgeConfig
from ..devices.models import DeviceRecord
from ..errors import AttributeUnsupportedError, TransportFailureError, TransportTimeoutError
from .base import NetworkController, NetworkEvent, NetworkEventType, StartResult

logger = logging.getLogger(__name__)

# Sidecar error codes
ERROR_UNSUPPORTED_ATTRIBUTE = -32001
ERROR_DEVICE_TIMEOUT = -32002

_END = object()


class JsonRpcError(Exception):
    """JSON-RPC error from the sidecar."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)


class BridgeController(NetworkController):
    """
    Network Controller backed by a WebSocket sidecar.

    Usage:
        controller = BridgeController(BridgeConfig(url="ws://localhost:8765/rpc"))
        gateway = Gateway(controller, config)
        await gateway.start()
    """

    def __init__(self, config: Optional[BridgeConfig] = None):
        self.config = config or BridgeConfig()
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._request_id = 0
        self._pending: Dict[int, asyncio.Future] = {}
        self._events: asyncio.Queue = asyncio.Queue()
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    # ==================== CONNECTION ====================

    async def _connect(self) -> None:
        if self.is_connected:
            return
        if not self.config.url:
            raise TransportFailureError("No bridge URL configured (set ZIGBEE_BRIDGE_URL)")

        logger.info(f"Connecting to bridge at {self.config.url}...")
        self._closing = False
        self._events = asyncio.Queue()
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(
                self.config.url,
                timeout=aiohttp.ClientTimeout(total=self.config.connect_timeout),
                heartbeat=30,
            )
        except Exception:
            await self._session.close()
            self._session = None
            raise

        self._reader_task = asyncio.create_task(self._read_messages())
        logger.info("Bridge connected")

    async def _disconnect(self) -> None:
        self._closing = True
        if self._ws is not None:
            await self._ws.close()
        if self._reader_task is not None:
            try:
                await asyncio.wait_for(self._reader_task, self.config.connect_timeout)
            except asyncio.TimeoutError:
                self._reader_task.cancel()
            self._reader_task = None
        if self._session is not None:
            await self._session.close()
        self._ws = None
        self._session = None

    async def _read_messages(self) -> None:
        """Background task reading responses and notifications."""
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        message = json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.warning(f"Ignoring malformed bridge message: {msg.data[:100]}")
                        continue
                    self._handle_message(message)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"Bridge WebSocket error: {self._ws.exception()}")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Bridge receive error: {e}")
        finally:
            self._connection_lost()

    def _connection_lost(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportFailureError("Bridge connection closed"))
        self._pending.clear()

        if not self._closing:
            logger.error("Bridge connection lost")
            self._events.put_nowait(NetworkEvent(NetworkEventType.ADAPTER_DISCONNECTED))
        self._events.put_nowait(_END)

    def _handle_message(self, message: Dict[str, Any]) -> None:
        """Dispatch an incoming JSON-RPC message."""
        # Response to a request
        if "id" in message and message["id"] in self._pending:
            future = self._pending.pop(message["id"])
            if future.done():
                return
            if "error" in message:
                error = message["error"] or {}
                future.set_exception(JsonRpcError(
                    code=error.get("code", -1),
                    message=error.get("message", "Unknown error"),
                    data=error.get("data"),
                ))
            else:
                future.set_result(message.get("result"))

        # Event notification
        elif message.get("method") == "event":
            try:
                self._events.put_nowait(NetworkEvent.from_dict(message.get("params") or {}))
            except (KeyError, ValueError) as e:
                logger.warning(f"Ignoring unknown bridge event: {e}")

    async def _send_request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send a JSON-RPC request and wait for its response.

        Timeouts are left to the caller; a cancelled wait drops the
        pending entry so a late response is ignored.
        """
        if not self.is_connected:
            raise TransportFailureError("Bridge is not connected")

        self._request_id += 1
        request_id = self._request_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        logger.debug(f"Bridge request: {method}({params})")
        try:
            await self._ws.send_json({
                "jsonrpc": "2.0",
                "id": request_id,
                "method": method,
                "params": params or {},
            })
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def _call(self, method: str, params: Dict[str, Any], ieee_address: Optional[str] = None) -> Any:
        """Send a request, mapping sidecar error codes onto zigctl errors."""
        try:
            return await self._send_request(method, params)
        except JsonRpcError as e:
            if e.code == ERROR_UNSUPPORTED_ATTRIBUTE:
                raise AttributeUnsupportedError(
                    ieee_address or "unknown", params.get("cluster", "unknown"), params.get("attributes")
                ) from e
            if e.code == ERROR_DEVICE_TIMEOUT:
                raise TransportTimeoutError(method, float((e.data or {}).get("timeout", 0)), ieee_address) from e
            raise TransportFailureError(
                f"{method} failed: {e.message}", ieee_address=ieee_address, cause=e
            ) from e

    # ==================== CONTROLLER INTERFACE ====================

    async def start(self, config: Any) -> StartResult:
        await self._connect()
        params = {
            "serial": config.serial.to_dict(),
            "network": config.network.to_dict(),
            "database_path": str(config.resolved_database_path),
        }
        try:
            result = await self._send_request("start", params) or {}
        except JsonRpcError:
            # Driver messages are classified by the coordinator
            await self._disconnect()
            raise
        return StartResult(
            result=result.get("result", "resumed"),
            coordinator_address=result.get("coordinator_address"),
        )

    async def stop(self) -> None:
        if not self.is_connected:
            return
        try:
            await self._call("stop", {})
        finally:
            await self._disconnect()

    async def list_known_devices(self) -> List[DeviceRecord]:
        result = await self._call("listDevices", {}) or []
        return [DeviceRecord.from_dict(item) for item in result]

    async def issue_command(
        self,
        ieee_address: str,
        endpoint_id: int,
        cluster: str,
        command: str,
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        result = await self._call("command", {
            "ieee_address": ieee_address,
            "endpoint": endpoint_id,
            "cluster": cluster,
            "command": command,
            "payload": payload,
        }, ieee_address)
        return result or {}

    async def read_attributes(
        self,
        ieee_address: str,
        endpoint_id: int,
        cluster: str,
        attributes: Sequence[str],
    ) -> Dict[str, Any]:
        result = await self._call("read", {
            "ieee_address": ieee_address,
            "endpoint": endpoint_id,
            "cluster": cluster,
            "attributes": list(attributes),
        }, ieee_address)
        return result or {}

    async def set_pairing_window(self, seconds: int) -> None:
        await self._call("permitJoin", {"time": seconds})

    async def bind(self, source_address, source_endpoint, cluster, target_address, target_endpoint) -> None:
        await self._call("bind", {
            "ieee_address": source_address,
            "endpoint": source_endpoint,
            "cluster": cluster,
            "target": target_address,
            "target_endpoint": target_endpoint,
        }, source_address)

    async def unbind(self, source_address, source_endpoint, cluster, target_address, target_endpoint) -> None:
        await self._call("unbind", {
            "ieee_address": source_address,
            "endpoint": source_endpoint,
            "cluster": cluster,
            "target": target_address,
            "target_endpoint": target_endpoint,
        }, source_address)

    async def configure_reporting(self, ieee_address, endpoint_id, cluster, attributes) -> None:
        await self._call("configureReporting", {
            "ieee_address": ieee_address,
            "endpoint": endpoint_id,
            "cluster": cluster,
            "attributes": list(attributes),
        }, ieee_address)

    async def events(self) -> AsyncIterator[NetworkEvent]:
        queue = self._events
        while True:
            item = await queue.get()
            if item is _END:
                return
            yield item
