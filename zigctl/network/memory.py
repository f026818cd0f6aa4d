"""
In-memory Network Controller.

Simulates a small mesh: devices with per-cluster attribute values that
react to On/Off, Level and Color commands. Used by the test suite, the
CLI's ``--simulate`` mode and demos.

Every call is recorded in ``calls`` so tests can assert exactly which
low-level commands were (or were not) sent.
"""

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from ..devices.models import ClusterType, DeviceRecord, Endpoint, NodeType
from ..errors import AttributeUnsupportedError, TransportFailureError
from .base import NetworkController, NetworkEvent, NetworkEventType, StartResult

logger = logging.getLogger(__name__)

COORDINATOR_ADDRESS = "0x00124b0000000001"

_END = object()


@dataclass
class NetworkCall:
    """One recorded call into the simulated network."""
    method: str
    ieee_address: Optional[str] = None
    endpoint_id: Optional[int] = None
    cluster: Optional[str] = None
    name: Optional[str] = None  # command name, or attribute names joined by ","
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SimulatedDevice:
    """A device living on the simulated network."""
    record: DeviceRecord
    attributes: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def ieee_address(self) -> str:
        return self.record.ieee_address

    def endpoint(self, endpoint_id: int) -> Optional[Endpoint]:
        for ep in self.record.endpoints:
            if ep.endpoint_id == endpoint_id:
                return ep
        return None


def simulated_light(
    ieee_address: str,
    model_id: str = "LCT015",
    manufacturer_name: str = "Philips",
    color: bool = True,
    interview_completed: bool = True,
) -> SimulatedDevice:
    """A dimmable (optionally colour) bulb on endpoint 11."""
    clusters = [ClusterType.BASIC, ClusterType.ON_OFF, ClusterType.LEVEL_CONTROL]
    attributes: Dict[str, Dict[str, Any]] = {
        "genOnOff": {"onOff": 0},
        "genLevelCtrl": {"currentLevel": 254},
    }
    if color:
        clusters.append(ClusterType.COLOR_CONTROL)
        attributes["lightingColorCtrl"] = {
            "colorTemperature": 370,
            "currentX": 29991,
            "currentY": 26872,
            "currentHue": 0,
            "currentSaturation": 0,
        }
    record = DeviceRecord(
        ieee_address=ieee_address,
        network_address=0x1A2B,
        node_type=NodeType.ROUTER,
        model_id=model_id,
        manufacturer_name=manufacturer_name,
        power_source="Mains (single phase)",
        interview_completed=interview_completed,
        endpoints=[Endpoint(11, [int(c) for c in clusters], [])],
    )
    return SimulatedDevice(record=record, attributes=attributes)


def simulated_plug(
    ieee_address: str,
    model_id: str = "TS011F",
    manufacturer_name: str = "_TZ3000_g5xawfcq",
    metering: bool = True,
    interview_completed: bool = True,
) -> SimulatedDevice:
    """A smart plug on endpoint 1, optionally with power monitoring."""
    clusters = [ClusterType.BASIC, ClusterType.ON_OFF]
    attributes: Dict[str, Dict[str, Any]] = {"genOnOff": {"onOff": 0}}
    if metering:
        clusters += [ClusterType.METERING, ClusterType.ELECTRICAL_MEASUREMENT]
        attributes["haElectricalMeasurement"] = {
            "activePower": 1234,
            "rmsVoltage": 2301,
            "rmsCurrent": 536,
        }
        attributes["seMetering"] = {"currentSummDelivered": 4567}
    record = DeviceRecord(
        ieee_address=ieee_address,
        network_address=0x3C4D,
        node_type=NodeType.ROUTER,
        model_id=model_id,
        manufacturer_name=manufacturer_name,
        power_source="Mains (single phase)",
        interview_completed=interview_completed,
        endpoints=[Endpoint(1, [int(c) for c in clusters], [])],
    )
    return SimulatedDevice(record=record, attributes=attributes)


class InMemoryNetwork(NetworkController):
    """
    Simulated Network Controller.

    Usage:
        network = InMemoryNetwork()
        network.add_device(simulated_plug("0x00158d0001234567"))
        gateway = Gateway(network)
        await gateway.start()
        await network.simulate_message("0x00158d0001234567", "genOnOff", {"onOff": 1})
    """

    def __init__(self, coordinator_address: str = COORDINATOR_ADDRESS):
        self.coordinator_address = coordinator_address
        self.devices: Dict[str, SimulatedDevice] = {}
        self.calls: List[NetworkCall] = []
        self.started = False
        self.permit_join_seconds = 0

        # Fault injection
        self.start_error: Optional[str] = None
        self.stall_requests = False
        self.failing_commands: Dict[str, str] = {}

        self._events: asyncio.Queue = asyncio.Queue()

    # ==================== SETUP ====================

    def add_device(self, device: SimulatedDevice) -> SimulatedDevice:
        """Put a device into the controller's database without any event."""
        self.devices[device.ieee_address.lower()] = device
        return device

    def fail_start(self, message: str) -> None:
        """Make the next start raise a driver error with this message."""
        self.start_error = message

    def fail_commands(self, ieee_address: str, message: str = "Delivery failed") -> None:
        """Make every command and read for a device fail."""
        self.failing_commands[ieee_address.lower()] = message

    def calls_for(self, method: str, ieee_address: Optional[str] = None) -> List[NetworkCall]:
        return [
            call for call in self.calls
            if call.method == method and (ieee_address is None or call.ieee_address == ieee_address)
        ]

    def attribute(self, ieee_address: str, cluster: str, name: str) -> Any:
        return self.devices[ieee_address.lower()].attributes.get(cluster, {}).get(name)

    # ==================== CONTROLLER INTERFACE ====================

    async def start(self, config: Any) -> StartResult:
        self.calls.append(NetworkCall("start"))
        if self.start_error:
            message, self.start_error = self.start_error, None
            raise OSError(message)
        self._events = asyncio.Queue()
        self.started = True
        logger.debug(f"Simulated network started with {len(self.devices)} device(s)")
        return StartResult(result="resumed", coordinator_address=self.coordinator_address)

    async def stop(self) -> None:
        self.calls.append(NetworkCall("stop"))
        self.started = False
        self.permit_join_seconds = 0
        self._events.put_nowait(_END)

    async def list_known_devices(self) -> List[DeviceRecord]:
        self.calls.append(NetworkCall("list_known_devices"))
        await self._maybe_stall()
        coordinator = DeviceRecord(
            ieee_address=self.coordinator_address,
            network_address=0,
            node_type=NodeType.COORDINATOR,
            interview_completed=True,
        )
        return [coordinator] + [copy.deepcopy(d.record) for d in self.devices.values()]

    async def issue_command(
        self,
        ieee_address: str,
        endpoint_id: int,
        cluster: str,
        command: str,
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        self.calls.append(NetworkCall(
            "issue_command", ieee_address, endpoint_id, cluster, command, dict(payload)
        ))
        await self._maybe_stall()
        device = self._reachable(ieee_address, endpoint_id, cluster)
        self._apply(device, cluster, command, payload)
        return {}

    async def read_attributes(
        self,
        ieee_address: str,
        endpoint_id: int,
        cluster: str,
        attributes: Sequence[str],
    ) -> Dict[str, Any]:
        self.calls.append(NetworkCall(
            "read_attributes", ieee_address, endpoint_id, cluster, ",".join(attributes)
        ))
        await self._maybe_stall()
        device = self._reachable(ieee_address, endpoint_id, cluster)

        values = device.attributes.get(cluster, {})
        result = {name: values[name] for name in attributes if name in values}
        if not result:
            raise AttributeUnsupportedError(ieee_address, cluster, attributes)
        return result

    async def set_pairing_window(self, seconds: int) -> None:
        self.calls.append(NetworkCall("set_pairing_window", payload={"seconds": seconds}))
        await self._maybe_stall()
        self.permit_join_seconds = seconds

    async def bind(self, source_address, source_endpoint, cluster, target_address, target_endpoint) -> None:
        self.calls.append(NetworkCall(
            "bind", source_address, source_endpoint, cluster,
            payload={"target": target_address, "target_endpoint": target_endpoint},
        ))
        await self._maybe_stall()
        self._reachable(source_address, source_endpoint, cluster)

    async def unbind(self, source_address, source_endpoint, cluster, target_address, target_endpoint) -> None:
        self.calls.append(NetworkCall(
            "unbind", source_address, source_endpoint, cluster,
            payload={"target": target_address, "target_endpoint": target_endpoint},
        ))
        await self._maybe_stall()
        self._reachable(source_address, source_endpoint, cluster)

    async def configure_reporting(self, ieee_address, endpoint_id, cluster, attributes) -> None:
        self.calls.append(NetworkCall(
            "configure_reporting", ieee_address, endpoint_id, cluster,
            payload={"attributes": list(attributes)},
        ))
        await self._maybe_stall()
        self._reachable(ieee_address, endpoint_id, cluster)

    async def events(self) -> AsyncIterator[NetworkEvent]:
        queue = self._events
        while True:
            item = await queue.get()
            if item is _END:
                return
            yield item

    # ==================== SIMULATION ====================

    def emit(self, event: NetworkEvent) -> None:
        """Push a raw notification to the event feed."""
        self._events.put_nowait(event)

    async def settle(self) -> None:
        """Yield until queued notifications have been consumed."""
        for _ in range(100):
            if self._events.empty():
                break
            await asyncio.sleep(0)
        for _ in range(5):
            await asyncio.sleep(0)

    async def simulate_join(self, device: SimulatedDevice) -> None:
        """A new device joins; its interview has not run yet."""
        device.record.interview_completed = False
        self.add_device(device)
        self.emit(NetworkEvent(NetworkEventType.DEVICE_JOINED, record=copy.deepcopy(device.record)))
        await self.settle()

    async def simulate_interview(self, ieee_address: str, status: str = "successful") -> None:
        device = self.devices[ieee_address.lower()]
        if status == "successful":
            device.record.interview_completed = True
        self.emit(NetworkEvent(
            NetworkEventType.DEVICE_INTERVIEW,
            record=copy.deepcopy(device.record),
            status=status,
        ))
        await self.settle()

    async def simulate_pairing(self, device: SimulatedDevice) -> None:
        """Join followed by a started and a successful interview."""
        await self.simulate_join(device)
        await self.simulate_interview(device.ieee_address, "started")
        await self.simulate_interview(device.ieee_address, "successful")

    async def simulate_announce(self, ieee_address: str) -> None:
        device = self.devices[ieee_address.lower()]
        self.emit(NetworkEvent(NetworkEventType.DEVICE_ANNOUNCE, record=copy.deepcopy(device.record)))
        await self.settle()

    async def simulate_leave(self, ieee_address: str) -> None:
        self.devices.pop(ieee_address.lower(), None)
        self.emit(NetworkEvent(NetworkEventType.DEVICE_LEAVE, ieee_address=ieee_address))
        await self.settle()

    async def simulate_message(
        self,
        ieee_address: str,
        cluster: str,
        data: Dict[str, Any],
        message_type: str = "attributeReport",
        endpoint_id: Optional[int] = None,
    ) -> None:
        """A device reports attribute values (or sends a command)."""
        device = self.devices.get(ieee_address.lower())
        if device is not None and message_type == "attributeReport":
            device.attributes.setdefault(cluster, {}).update(data)
        self.emit(NetworkEvent(
            NetworkEventType.MESSAGE,
            ieee_address=ieee_address,
            message_type=message_type,
            cluster=cluster,
            endpoint_id=endpoint_id,
            data=dict(data),
            meta={"linkquality": 120},
        ))
        await self.settle()

    async def simulate_adapter_loss(self) -> None:
        self.emit(NetworkEvent(NetworkEventType.ADAPTER_DISCONNECTED))
        await self.settle()

    async def simulate_pairing_closed(self) -> None:
        """The radio closes the pairing window on its own (timer expired)."""
        self.permit_join_seconds = 0
        self.emit(NetworkEvent(NetworkEventType.PERMIT_JOIN_CHANGED, permitted=False))
        await self.settle()

    # ==================== INTERNALS ====================

    async def _maybe_stall(self) -> None:
        if self.stall_requests:
            # Never answers; the caller's timeout fires first
            await asyncio.sleep(3600)

    def _reachable(self, ieee_address: str, endpoint_id: int, cluster: str) -> SimulatedDevice:
        key = ieee_address.lower()
        device = self.devices.get(key)
        if device is None:
            raise TransportFailureError(
                f"Device {ieee_address} did not respond (not on network)",
                ieee_address=ieee_address,
            )
        if key in self.failing_commands:
            raise TransportFailureError(self.failing_commands[key], ieee_address=ieee_address)

        endpoint = device.endpoint(endpoint_id)
        cluster_type = ClusterType.from_name(cluster)
        if endpoint is None or cluster_type is None or not endpoint.accepts(cluster_type):
            raise AttributeUnsupportedError(ieee_address, cluster)
        device.record.last_seen = time.time()
        return device

    def _apply(self, device: SimulatedDevice, cluster: str, command: str, payload: Dict[str, Any]) -> None:
        values = device.attributes.setdefault(cluster, {})

        if cluster == "genOnOff":
            if command == "on":
                values["onOff"] = 1
            elif command == "off":
                values["onOff"] = 0
            elif command == "toggle":
                values["onOff"] = 0 if values.get("onOff") else 1
        elif cluster == "genLevelCtrl" and command.startswith("moveToLevel"):
            values["currentLevel"] = payload["level"]
        elif cluster == "lightingColorCtrl":
            if command == "moveToColorTemp":
                values["colorTemperature"] = payload["colortemp"]
            elif command == "moveToColor":
                values["currentX"] = payload["colorx"]
                values["currentY"] = payload["colory"]
            elif command == "moveToHueAndSaturation":
                values["currentHue"] = payload["hue"]
                values["currentSaturation"] = payload["saturation"]


DEMO_LIGHT = "0x0017880104e45517"
DEMO_PLUG = "0x00158d0001234567"


def demo_network() -> InMemoryNetwork:
    """A simulated network with one colour bulb and one metering plug."""
    network = InMemoryNetwork()
    network.add_device(simulated_light(DEMO_LIGHT))
    network.add_device(simulated_plug(DEMO_PLUG))
    return network
