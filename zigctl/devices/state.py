"""
State cache for device attributes.

Holds the most recent merged snapshot per device. Mutations are
serialized per device identity so that an incoming report and the result
of a just-issued command cannot overwrite each other's attributes.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from ..events.bus import EventBus
from ..events.models import StateChanged
from .models import Device, DeviceState

logger = logging.getLogger(__name__)


class StateCache:
    """
    Per-device attribute snapshots.

    Features:
    - Attribute-wise merge (unspecified attributes are kept)
    - One mutation in flight per device
    - StateChanged event with the full snapshot after every merge
    """

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        device_lookup: Optional[Callable[[str], Optional[Device]]] = None,
    ):
        self._bus = bus
        self._device_lookup = device_lookup
        self._states: Dict[str, DeviceState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def bind_directory(self, device_lookup: Callable[[str], Optional[Device]]) -> None:
        """Let StateChanged events carry the owning device."""
        self._device_lookup = device_lookup

    def _lock_for(self, ieee_address: str) -> asyncio.Lock:
        lock = self._locks.get(ieee_address)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ieee_address] = lock
        return lock

    async def merge(self, ieee_address: str, partial: Mapping[str, Any]) -> DeviceState:
        """
        Overlay a partial state onto the device's snapshot.

        Returns:
            The full merged snapshot
        """
        async with self._lock_for(ieee_address):
            device = None
            if self._device_lookup is not None:
                device = self._device_lookup(ieee_address)
                if device is None:
                    # Entries live only as long as their directory device
                    logger.debug(f"Ignoring state for unknown device {ieee_address}")
                    return self.get(ieee_address)

            now = time.time()
            current = self._states.get(ieee_address, DeviceState())
            merged = current.merged(partial, timestamp=now)
            self._states[ieee_address] = merged

            if device is not None:
                device.touch(now)

            if self._bus is not None:
                await self._bus.publish(StateChanged(
                    ieee_address=ieee_address,
                    state=merged,
                    device=device,
                ))

        logger.debug(f"State merged for {ieee_address}: {dict(partial)}")
        return merged

    def get(self, ieee_address: str) -> DeviceState:
        """Get the last merged snapshot, or an empty state."""
        return self._states.get(ieee_address, DeviceState())

    def has(self, ieee_address: str) -> bool:
        return ieee_address in self._states

    def drop(self, ieee_address: str) -> None:
        """Forget a device's state."""
        self._states.pop(ieee_address, None)
        self._locks.pop(ieee_address, None)

    def clear(self) -> None:
        """Forget every device's state."""
        self._states.clear()
        self._locks.clear()
        logger.debug("State cache cleared")

    @property
    def size(self) -> int:
        """Number of devices with a cached state."""
        return len(self._states)
