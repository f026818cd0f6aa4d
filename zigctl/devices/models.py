"""
Device models and data structures.

Defines the core data types for mesh device representation: raw records
as the Network Controller reports them, the directory's Device view,
per-device state snapshots and intent options.
"""

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..errors import InvalidParameterError


class ClusterType(IntEnum):
    """ZCL cluster IDs used by the translation layer."""
    BASIC = 0x0000
    ON_OFF = 0x0006
    LEVEL_CONTROL = 0x0008
    COLOR_CONTROL = 0x0300
    METERING = 0x0702
    ELECTRICAL_MEASUREMENT = 0x0B04

    @property
    def cluster_name(self) -> str:
        """Name of the cluster as the Network Controller addresses it."""
        return CLUSTER_NAMES[self]

    @classmethod
    def from_name(cls, name: str) -> Optional["ClusterType"]:
        """Look up a cluster by its controller name."""
        for cluster, cluster_name in CLUSTER_NAMES.items():
            if cluster_name == name:
                return cluster
        return None


CLUSTER_NAMES: Dict[ClusterType, str] = {
    ClusterType.BASIC: "genBasic",
    ClusterType.ON_OFF: "genOnOff",
    ClusterType.LEVEL_CONTROL: "genLevelCtrl",
    ClusterType.COLOR_CONTROL: "lightingColorCtrl",
    ClusterType.METERING: "seMetering",
    ClusterType.ELECTRICAL_MEASUREMENT: "haElectricalMeasurement",
}


class DeviceKind(str, Enum):
    """Semantic device kind."""
    LIGHT = "light"
    PLUG = "plug"
    SENSOR = "sensor"
    UNKNOWN = "unknown"


class NodeType(str, Enum):
    """Role of a node in the mesh."""
    COORDINATOR = "Coordinator"
    ROUTER = "Router"
    END_DEVICE = "EndDevice"
    GREEN_POWER = "GreenPower"
    UNKNOWN = "Unknown"


class PowerState(str, Enum):
    """On/Off state values."""
    ON = "ON"
    OFF = "OFF"
    TOGGLE = "TOGGLE"


# Attribute names held in a DeviceState snapshot
STATE_ATTRIBUTES = (
    "state",
    "brightness",
    "color_temp",
    "color",
    "power",
    "energy",
    "voltage",
    "current",
)


@dataclass
class Endpoint:
    """A numbered sub-address on a device."""
    endpoint_id: int
    input_clusters: List[int] = field(default_factory=list)
    output_clusters: List[int] = field(default_factory=list)

    def accepts(self, cluster: int) -> bool:
        """Check if commands for the cluster are receivable here."""
        return int(cluster) in self.input_clusters

    def emits(self, cluster: int) -> bool:
        """Check if the cluster is only advertised as sent."""
        return int(cluster) in self.output_clusters

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint_id": self.endpoint_id,
            "input_clusters": list(self.input_clusters),
            "output_clusters": list(self.output_clusters),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Endpoint":
        return cls(
            endpoint_id=int(data["endpoint_id"]),
            input_clusters=[int(c) for c in data.get("input_clusters", [])],
            output_clusters=[int(c) for c in data.get("output_clusters", [])],
        )


@dataclass
class DeviceRecord:
    """
    A device as reported by the Network Controller.

    This is the raw, unresolved view: no semantic kind, no capabilities.
    """
    ieee_address: str
    network_address: int
    node_type: NodeType = NodeType.UNKNOWN
    model_id: Optional[str] = None
    manufacturer_name: Optional[str] = None
    power_source: Optional[str] = None
    interview_completed: bool = False
    endpoints: List[Endpoint] = field(default_factory=list)
    last_seen: Optional[float] = None

    @property
    def is_coordinator(self) -> bool:
        return self.node_type == NodeType.COORDINATOR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ieee_address": self.ieee_address,
            "network_address": self.network_address,
            "node_type": self.node_type.value,
            "model_id": self.model_id,
            "manufacturer_name": self.manufacturer_name,
            "power_source": self.power_source,
            "interview_completed": self.interview_completed,
            "endpoints": [ep.to_dict() for ep in self.endpoints],
            "last_seen": self.last_seen,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceRecord":
        """Deserialize from dictionary."""
        try:
            node_type = NodeType(data.get("node_type", "Unknown"))
        except ValueError:
            node_type = NodeType.UNKNOWN

        return cls(
            ieee_address=data["ieee_address"],
            network_address=int(data.get("network_address", 0)),
            node_type=node_type,
            model_id=data.get("model_id"),
            manufacturer_name=data.get("manufacturer_name"),
            power_source=data.get("power_source"),
            interview_completed=bool(data.get("interview_completed", False)),
            endpoints=[Endpoint.from_dict(ep) for ep in data.get("endpoints", [])],
            last_seen=data.get("last_seen"),
        )


@dataclass
class Device:
    """
    A paired network node as tracked by the device directory.

    The IEEE address is the immutable primary key; the network address
    may be reassigned by the network layer.
    """
    ieee_address: str
    network_address: int
    model_id: Optional[str] = None
    manufacturer_name: Optional[str] = None
    power_source: Optional[str] = None
    kind: DeviceKind = DeviceKind.UNKNOWN
    endpoints: List[Endpoint] = field(default_factory=list)
    interview_completed: bool = False
    last_seen: Optional[float] = None
    friendly_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        """Get display name (friendly name, model or address)."""
        return self.friendly_name or self.model_id or self.ieee_address

    @property
    def endpoint_ids(self) -> List[int]:
        return [ep.endpoint_id for ep in self.endpoints]

    def get_endpoint(self, endpoint_id: int) -> Optional[Endpoint]:
        """Get an endpoint by ID."""
        for ep in self.endpoints:
            if ep.endpoint_id == endpoint_id:
                return ep
        return None

    def find_endpoint(self, cluster: int) -> Optional[Endpoint]:
        """
        Find the endpoint serving a cluster.

        Prefers an endpoint where the cluster is receivable and falls back
        to one where it is only advertised as sent.
        """
        for ep in self.endpoints:
            if ep.accepts(cluster):
                return ep
        for ep in self.endpoints:
            if ep.emits(cluster):
                return ep
        return None

    def touch(self, timestamp: Optional[float] = None) -> None:
        """Record that the device was just heard from."""
        self.last_seen = timestamp if timestamp is not None else time.time()

    @classmethod
    def from_record(
        cls,
        record: DeviceRecord,
        kind: DeviceKind = DeviceKind.UNKNOWN,
        friendly_name: Optional[str] = None,
    ) -> "Device":
        """Build a directory entry from a controller record."""
        return cls(
            ieee_address=record.ieee_address,
            network_address=record.network_address,
            model_id=record.model_id,
            manufacturer_name=record.manufacturer_name,
            power_source=record.power_source,
            kind=kind,
            endpoints=[
                Endpoint(ep.endpoint_id, list(ep.input_clusters), list(ep.output_clusters))
                for ep in record.endpoints
            ],
            interview_completed=record.interview_completed,
            last_seen=record.last_seen,
            friendly_name=friendly_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "ieee_address": self.ieee_address,
            "network_address": self.network_address,
            "friendly_name": self.display_name,
            "model_id": self.model_id,
            "manufacturer_name": self.manufacturer_name,
            "power_source": self.power_source,
            "kind": self.kind.value,
            "endpoints": self.endpoint_ids,
            "interview_completed": self.interview_completed,
            "last_seen": self.last_seen,
        }


@dataclass(frozen=True)
class DeviceState:
    """
    Last known attribute values of a device.

    Snapshots are immutable; merging produces a new snapshot in which the
    partial values overlay the old ones and nothing is erased.
    """
    values: Mapping[str, Any] = field(default_factory=dict)
    updated_at: Optional[float] = None

    def merged(self, partial: Mapping[str, Any], timestamp: Optional[float] = None) -> "DeviceState":
        """Return a new snapshot with ``partial`` laid over this one."""
        values = dict(self.values)
        values.update(partial)
        return DeviceState(
            values=values,
            updated_at=timestamp if timestamp is not None else time.time(),
        )

    def get(self, attribute: str, default: Any = None) -> Any:
        return self.values.get(attribute, default)

    def __contains__(self, attribute: str) -> bool:
        return attribute in self.values

    def __len__(self) -> int:
        return len(self.values)

    @property
    def is_empty(self) -> bool:
        return not self.values

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.values)


@dataclass
class ColorSpec:
    """
    A colour request.

    Exactly one representation is forwarded to the device; when several
    are present the hex string wins over RGB, and RGB over hue/saturation.
    """
    hex: Optional[str] = None
    rgb: Optional[Tuple[int, int, int]] = None
    hue: Optional[float] = None
    saturation: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.hex is None
            and self.rgb is None
            and (self.hue is None or self.saturation is None)
        )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ColorSpec":
        """
        Build from a mapping.

        ``rgb`` may be given as ``{"r": .., "g": .., "b": ..}``, a sequence
        of three ints, or an ``"r,g,b"`` string.
        """
        if not data:
            return cls()

        return cls(
            hex=data.get("hex"),
            rgb=parse_rgb(data.get("rgb")),
            hue=data.get("hue"),
            saturation=data.get("saturation"),
        )


def parse_rgb(value: Any) -> Optional[Tuple[int, int, int]]:
    """
    Parse an RGB triple from a mapping, a sequence or an "r,g,b" string.

    Raises:
        InvalidParameterError: Unless exactly three integer channels are given
    """
    if value is None:
        return None
    try:
        if isinstance(value, dict):
            channels = [value["r"], value["g"], value["b"]]
        elif isinstance(value, str):
            channels = value.split(",")
        else:
            channels = list(value)
        if len(channels) != 3:
            raise ValueError(f"expected 3 channels, got {len(channels)}")
        r, g, b = (int(c) for c in channels)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidParameterError(f"Invalid RGB colour {value!r}: {e}", param="rgb") from None
    return r, g, b


@dataclass
class LightOptions:
    """Options for the compound turn-on-light operation."""
    brightness: Optional[float] = None  # 0-100 percent
    color_temp: Optional[float] = None  # mireds, or Kelvin above 500
    color: Optional[ColorSpec] = None
    transition: Optional[float] = None  # seconds

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LightOptions":
        if not data:
            return cls()
        color = data.get("color")
        return cls(
            brightness=data.get("brightness"),
            color_temp=data.get("color_temp"),
            color=color if isinstance(color, ColorSpec) else (ColorSpec.from_dict(color) if color else None),
            transition=data.get("transition"),
        )
