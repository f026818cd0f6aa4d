"""
Network Controller interface.

The Network Controller owns the radio: pairing, routing, framing and the
persisted device database. zigctl only talks to it through this
interface, so a simulated network and a bridge to a radio-owning
sidecar process are interchangeable.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, Sequence

from ..devices.models import DeviceRecord
from ..errors import TransportFailureError, TransportTimeoutError, ZigctlError, format_error


class NetworkEventType(str, Enum):
    """Raw notifications emitted by a Network Controller."""
    DEVICE_JOINED = "deviceJoined"
    DEVICE_LEAVE = "deviceLeave"
    DEVICE_INTERVIEW = "deviceInterview"
    DEVICE_ANNOUNCE = "deviceAnnounce"
    MESSAGE = "message"
    ADAPTER_DISCONNECTED = "adapterDisconnected"
    PERMIT_JOIN_CHANGED = "permitJoinChanged"


@dataclass
class NetworkEvent:
    """
    One raw notification.

    Which fields are set depends on the type: joins, interviews and
    announces carry a record, leaves only an address, messages a
    cluster and data, permit-join changes the window flag and time.
    """
    type: NetworkEventType
    ieee_address: Optional[str] = None
    record: Optional[DeviceRecord] = None
    status: Optional[str] = None
    message_type: Optional[str] = None
    cluster: Optional[str] = None
    endpoint_id: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)
    permitted: Optional[bool] = None
    time: Optional[int] = None

    @property
    def address(self) -> Optional[str]:
        if self.record is not None:
            return self.record.ieee_address
        return self.ieee_address

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkEvent":
        """Deserialize a notification received over the wire."""
        record = data.get("device")
        return cls(
            type=NetworkEventType(data["type"]),
            ieee_address=data.get("ieee_address"),
            record=DeviceRecord.from_dict(record) if record else None,
            status=data.get("status"),
            message_type=data.get("message_type"),
            cluster=data.get("cluster"),
            endpoint_id=data.get("endpoint_id"),
            data=data.get("data") or {},
            meta=data.get("meta") or {},
            permitted=data.get("permitted"),
            time=data.get("time"),
        )


@dataclass
class StartResult:
    """Outcome of opening the network session."""
    result: str  # resumed, reset or restored
    coordinator_address: Optional[str] = None


class NetworkController(ABC):
    """
    Radio-owning collaborator.

    Every method may suspend for a full round-trip to the radio or a
    device. Implementations raise TransportFailureError (or its
    AttributeUnsupportedError subclass) for failures; timeouts are
    enforced by the caller.
    """

    @abstractmethod
    async def start(self, config: Any) -> StartResult:
        """Open the transport and form or resume the network."""

    @abstractmethod
    async def stop(self) -> None:
        """Close the transport."""

    @abstractmethod
    async def list_known_devices(self) -> List[DeviceRecord]:
        """Devices from the controller's persisted database."""

    @abstractmethod
    async def issue_command(
        self,
        ieee_address: str,
        endpoint_id: int,
        cluster: str,
        command: str,
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Send a cluster command to a device endpoint."""

    @abstractmethod
    async def read_attributes(
        self,
        ieee_address: str,
        endpoint_id: int,
        cluster: str,
        attributes: Sequence[str],
    ) -> Dict[str, Any]:
        """Read cluster attributes from a device endpoint."""

    @abstractmethod
    async def set_pairing_window(self, seconds: int) -> None:
        """Open the network for joins for ``seconds`` (0 closes it)."""

    @abstractmethod
    def events(self) -> AsyncIterator[NetworkEvent]:
        """Feed of raw network notifications, ending when the session closes."""

    async def bind(
        self,
        source_address: str,
        source_endpoint: int,
        cluster: str,
        target_address: str,
        target_endpoint: int,
    ) -> None:
        """Bind a source endpoint's cluster to a target endpoint."""
        raise NotImplementedError

    async def unbind(
        self,
        source_address: str,
        source_endpoint: int,
        cluster: str,
        target_address: str,
        target_endpoint: int,
    ) -> None:
        """Remove a binding."""
        raise NotImplementedError

    async def configure_reporting(
        self,
        ieee_address: str,
        endpoint_id: int,
        cluster: str,
        attributes: List[Dict[str, Any]],
    ) -> None:
        """Configure attribute reporting intervals on a device."""
        raise NotImplementedError


async def bounded(
    coro: Awaitable[Any],
    operation: str,
    timeout: float,
    ieee_address: Optional[str] = None,
) -> Any:
    """
    Await a controller round-trip with a time bound.

    Timeouts become TransportTimeoutError; foreign exceptions are wrapped
    in TransportFailureError. zigctl errors pass through unchanged.
    """
    try:
        return await asyncio.wait_for(coro, timeout)
    except asyncio.TimeoutError:
        raise TransportTimeoutError(operation, timeout, ieee_address) from None
    except ZigctlError:
        raise
    except Exception as e:
        target = f" on {ieee_address}" if ieee_address else ""
        raise TransportFailureError(
            f"{operation}{target} failed: {format_error(e)}",
            ieee_address=ieee_address,
            cause=e,
        ) from e
