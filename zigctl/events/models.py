"""
Domain events emitted by the device layer.

The event feed is one typed channel over exactly eight event kinds.
Consumers dispatch on ``event.kind`` (or ``isinstance``) from a single
loop instead of registering per-event callbacks.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Union

from ..devices.models import Device, DeviceState


class EventKind(str, Enum):
    """The eight domain event kinds."""
    DEVICE_JOINED = "device.joined"
    DEVICE_LEFT = "device.left"
    DEVICE_INTERVIEW = "device.interview"
    DEVICE_ANNOUNCED = "device.announced"
    MESSAGE_RECEIVED = "message.received"
    STATE_CHANGED = "state.changed"
    ADAPTER_DISCONNECTED = "adapter.disconnected"
    PAIRING_WINDOW_CHANGED = "pairing_window.changed"


class InterviewStatus(str, Enum):
    STARTED = "started"
    SUCCESSFUL = "successful"
    FAILED = "failed"


@dataclass(frozen=True)
class DeviceJoined:
    kind: ClassVar[EventKind] = EventKind.DEVICE_JOINED
    device: Device
    timestamp: float = field(default_factory=time.time)

    def payload(self) -> Dict[str, Any]:
        return {"device": self.device.to_dict()}


@dataclass(frozen=True)
class DeviceLeft:
    kind: ClassVar[EventKind] = EventKind.DEVICE_LEFT
    ieee_address: str
    timestamp: float = field(default_factory=time.time)

    def payload(self) -> Dict[str, Any]:
        return {"ieee_address": self.ieee_address}


@dataclass(frozen=True)
class DeviceInterview:
    kind: ClassVar[EventKind] = EventKind.DEVICE_INTERVIEW
    device: Device
    status: InterviewStatus
    timestamp: float = field(default_factory=time.time)

    def payload(self) -> Dict[str, Any]:
        return {"device": self.device.to_dict(), "status": self.status.value}


@dataclass(frozen=True)
class DeviceAnnounced:
    kind: ClassVar[EventKind] = EventKind.DEVICE_ANNOUNCED
    device: Device
    timestamp: float = field(default_factory=time.time)

    def payload(self) -> Dict[str, Any]:
        return {"device": self.device.to_dict()}


@dataclass(frozen=True)
class MessageReceived:
    """An attribute report, read response or command from a known device."""
    kind: ClassVar[EventKind] = EventKind.MESSAGE_RECEIVED
    device: Device
    message_type: str
    cluster: str
    data: Dict[str, Any]
    endpoint_id: Optional[int] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def payload(self) -> Dict[str, Any]:
        return {
            "device": self.device.to_dict(),
            "type": self.message_type,
            "cluster": self.cluster,
            "endpoint_id": self.endpoint_id,
            "data": dict(self.data),
            "meta": dict(self.meta),
        }


@dataclass(frozen=True)
class StateChanged:
    """Carries the full merged snapshot, not just the delta."""
    kind: ClassVar[EventKind] = EventKind.STATE_CHANGED
    ieee_address: str
    state: DeviceState
    device: Optional[Device] = None
    timestamp: float = field(default_factory=time.time)

    def payload(self) -> Dict[str, Any]:
        return {
            "ieee_address": self.ieee_address,
            "device": self.device.to_dict() if self.device else None,
            "state": self.state.to_dict(),
        }


@dataclass(frozen=True)
class AdapterDisconnected:
    kind: ClassVar[EventKind] = EventKind.ADAPTER_DISCONNECTED
    timestamp: float = field(default_factory=time.time)

    def payload(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class PairingWindowChanged:
    kind: ClassVar[EventKind] = EventKind.PAIRING_WINDOW_CHANGED
    enabled: bool
    duration: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def payload(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "duration": self.duration}


DomainEvent = Union[
    DeviceJoined,
    DeviceLeft,
    DeviceInterview,
    DeviceAnnounced,
    MessageReceived,
    StateChanged,
    AdapterDisconnected,
    PairingWindowChanged,
]


def event_to_dict(event: DomainEvent) -> Dict[str, Any]:
    """Serialize an event for JSON transports."""
    return {
        "type": event.kind.value,
        "timestamp": event.timestamp,
        "payload": event.payload(),
    }
