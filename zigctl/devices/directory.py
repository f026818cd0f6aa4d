"""
Device Directory - tracks every known device of the running session.

The directory is a read-through cache rebuilt from the Network
Controller's backing store at startup; it never persists devices itself.
It owns no behavior beyond storage and lookup.
"""

import logging
from typing import Dict, List, Optional

from ..errors import DeviceNotFoundError
from .models import Device
from .state import StateCache

logger = logging.getLogger(__name__)


def normalize_address(ieee_address: str) -> str:
    """Canonical form of an IEEE address: lowercase with a 0x prefix."""
    address = ieee_address.strip().lower()
    if not address.startswith("0x"):
        address = f"0x{address}"
    return address


class DeviceDirectory:
    """
    Identity-keyed store of Device entries.

    Insertion order is kept; removing a device also drops its cached
    state, replacing its metadata does not.
    """

    def __init__(self, state_cache: Optional[StateCache] = None):
        self.state_cache = state_cache or StateCache()
        self.state_cache.bind_directory(self.find)
        self._devices: Dict[str, Device] = {}
        self.coordinator_address: Optional[str] = None

    def upsert(self, device: Device) -> Device:
        """Insert or replace a device's metadata."""
        key = normalize_address(device.ieee_address)
        device.ieee_address = key
        existing = self._devices.get(key)
        if existing is not None:
            if device.friendly_name is None:
                device.friendly_name = existing.friendly_name
            if device.last_seen is None:
                device.last_seen = existing.last_seen
            logger.debug(f"Device updated: {key} ({device.model_id or 'unknown model'})")
        else:
            logger.debug(f"Device added: {key} ({device.model_id or 'unknown model'})")
        self._devices[key] = device
        return device

    def remove(self, ieee_address: str) -> Optional[Device]:
        """Delete a device and its cached state."""
        key = normalize_address(ieee_address)
        device = self._devices.pop(key, None)
        self.state_cache.drop(key)
        if device is not None:
            logger.debug(f"Device removed: {key}")
        return device

    def get(self, ieee_address: str) -> Device:
        """
        Get a device by IEEE address.

        Raises:
            DeviceNotFoundError: If the device is not in the directory
        """
        device = self.find(ieee_address)
        if device is None:
            raise DeviceNotFoundError(ieee_address)
        return device

    def find(self, ieee_address: str) -> Optional[Device]:
        """Get a device by IEEE address, or None."""
        return self._devices.get(normalize_address(ieee_address))

    def list(self) -> List[Device]:
        """All devices in insertion order, excluding the coordinator radio."""
        return [
            device for key, device in self._devices.items()
            if key != self.coordinator_address
        ]

    def clear(self) -> None:
        """Forget all devices and their states."""
        self._devices.clear()
        self.state_cache.clear()
        self.coordinator_address = None

    def __contains__(self, ieee_address: str) -> bool:
        return normalize_address(ieee_address) in self._devices

    def __len__(self) -> int:
        return len(self.list())
