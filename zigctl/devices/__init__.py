"""Device records, directory entries and state snapshots."""

from .models import (
    ClusterType,
    ColorSpec,
    Device,
    DeviceKind,
    DeviceRecord,
    DeviceState,
    Endpoint,
    LightOptions,
    NodeType,
    PowerState,
)

__all__ = [
    "ClusterType",
    "ColorSpec",
    "Device",
    "DeviceKind",
    "DeviceRecord",
    "DeviceState",
    "Endpoint",
    "LightOptions",
    "NodeType",
    "PowerState",
]
