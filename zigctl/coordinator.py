"""
Coordinator Lifecycle.

A small state machine gating everything else:

    stopped -> starting -> running -> stopping -> stopped
                  |           |
                  +-> faulted <+   (unrecoverable transport loss)

Only one session talks to the radio at a time. ``start`` from any state
but ``stopped`` is a no-op that reports the current state.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .capabilities.resolver import CapabilityResolver
from .config import Config
from .devices.directory import DeviceDirectory, normalize_address
from .devices.models import Device
from .errors import NotRunningError, ZigctlError, classify_start_failure, format_error
from .events.bus import EventBus
from .events.models import AdapterDisconnected, PairingWindowChanged
from .events.router import EventRouter
from .network.base import NetworkController, bounded

logger = logging.getLogger(__name__)

PAIRING_MIN_SECONDS = 1
PAIRING_MAX_SECONDS = 254


class CoordinatorState(str, Enum):
    """Lifecycle state of the coordinator."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAULTED = "faulted"


@dataclass
class PairingWindow:
    """
    Time-bounded permission for new devices to join.

    Not persisted; reset to disabled when the coordinator stops.
    """
    enabled: bool = False
    duration: Optional[int] = None
    opened_at: Optional[float] = None  # time.monotonic()

    @property
    def remaining(self) -> int:
        """Seconds left before the window closes by itself."""
        if not self.enabled or self.duration is None or self.opened_at is None:
            return 0
        return max(0, math.ceil(self.duration - (time.monotonic() - self.opened_at)))

    @property
    def is_open(self) -> bool:
        return self.enabled and self.remaining > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.is_open,
            "duration": self.duration,
            "remaining": self.remaining,
        }


def clamp_pairing_duration(seconds: Optional[int]) -> int:
    """Clamp a pairing window duration to what the radio accepts."""
    if seconds is None:
        return PAIRING_MAX_SECONDS
    return max(PAIRING_MIN_SECONDS, min(PAIRING_MAX_SECONDS, int(seconds)))


class Coordinator:
    """
    Owns the session with one radio.

    Usage:
        coordinator = Coordinator(controller, directory, resolver, bus)
        await coordinator.start(config)
        await coordinator.set_pairing_window(True, 60)
        ...
        await coordinator.stop()
    """

    def __init__(
        self,
        controller: NetworkController,
        directory: DeviceDirectory,
        resolver: CapabilityResolver,
        bus: EventBus,
        config: Optional[Config] = None,
    ):
        self.controller = controller
        self.directory = directory
        self.resolver = resolver
        self.bus = bus
        self.config = config or Config()
        self.router = EventRouter(directory, resolver, bus, self)

        self._state = CoordinatorState.STOPPED
        self._lock = asyncio.Lock()
        self._pump_task: Optional[asyncio.Task] = None
        self.pairing_window = PairingWindow()
        self.start_result = None

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == CoordinatorState.RUNNING

    @property
    def request_timeout(self) -> float:
        return self.config.request_timeout

    def require_running(self, operation: Optional[str] = None) -> None:
        """
        Raises:
            NotRunningError: Unless the coordinator is running
        """
        if self._state != CoordinatorState.RUNNING:
            raise NotRunningError(self._state, operation)

    # ==================== LIFECYCLE ====================

    async def start(self, config: Optional[Config] = None) -> CoordinatorState:
        """
        Open the network session and load known devices.

        Returns:
            The resulting state

        Raises:
            StartFailureError: If the transport could not be opened
        """
        async with self._lock:
            if self._state != CoordinatorState.STOPPED:
                logger.warning(f"Coordinator already {self._state.value}, ignoring start")
                return self._state

            if config is not None:
                self.config = config
            serial = self.config.serial

            self._state = CoordinatorState.STARTING
            logger.info(f"Starting coordinator on {serial.port} ({serial.adapter})...")

            try:
                self.start_result = await bounded(
                    self.controller.start(self.config),
                    "start",
                    self.config.start_timeout,
                )
                await self._load_devices()
            except asyncio.CancelledError:
                logger.warning("Coordinator start cancelled")
                await self._abort_start()
                raise
            except Exception as e:
                error = classify_start_failure(
                    getattr(e, "cause", None) or e, serial.port, serial.adapter
                )
                logger.error(f"Coordinator start failed: {error.message}")
                await self._abort_start()
                raise error from e

            self._state = CoordinatorState.RUNNING
            self._pump_task = asyncio.create_task(self._pump())

            result = getattr(self.start_result, "result", "unknown")
            logger.info(
                f"Coordinator running ({result}), {len(self.directory)} device(s) known"
            )
            return self._state

    async def _load_devices(self) -> None:
        if self.start_result is not None and self.start_result.coordinator_address:
            self.directory.coordinator_address = normalize_address(self.start_result.coordinator_address)

        records = await bounded(
            self.controller.list_known_devices(),
            "list known devices",
            self.config.request_timeout,
        )
        for record in records:
            if record.is_coordinator:
                self.directory.coordinator_address = normalize_address(record.ieee_address)
                continue
            device = Device.from_record(record, kind=self.resolver.kind_of(record))
            self.directory.upsert(device)
            logger.debug(f"Loaded {device.ieee_address} as {device.kind.value}")

    async def _abort_start(self) -> None:
        try:
            await asyncio.wait_for(self.controller.stop(), self.config.request_timeout)
        except Exception as e:
            logger.debug(f"Closing transport after failed start: {format_error(e)}")
        finally:
            self.directory.clear()
            self.start_result = None
            self._state = CoordinatorState.STOPPED

    async def stop(self) -> CoordinatorState:
        """
        Close the session.

        Clears the pairing window, the directory and the state cache; a
        restart re-synchronizes from the controller's own database.
        """
        async with self._lock:
            if self._state not in (CoordinatorState.RUNNING, CoordinatorState.FAULTED):
                logger.warning(f"Coordinator is {self._state.value}, ignoring stop")
                return self._state

            self._state = CoordinatorState.STOPPING
            logger.info("Stopping coordinator...")

            if self._pump_task is not None:
                self._pump_task.cancel()
                try:
                    await self._pump_task
                except asyncio.CancelledError:
                    pass
                self._pump_task = None

            try:
                await bounded(self.controller.stop(), "stop", self.config.request_timeout)
            except ZigctlError as e:
                logger.error(f"Error while stopping transport: {e.message}")

            was_open = self.pairing_window.is_open
            self.pairing_window = PairingWindow()
            self.directory.clear()
            self.start_result = None
            self._state = CoordinatorState.STOPPED

        if was_open:
            await self.bus.publish(PairingWindowChanged(enabled=False))
        logger.info("Coordinator stopped")
        return self._state

    def mark_faulted(self, reason: str = "adapter disconnected") -> bool:
        """
        Move to ``faulted`` after an unrecoverable transport loss.

        Returns:
            True if the state changed
        """
        if self._state not in (CoordinatorState.STARTING, CoordinatorState.RUNNING):
            return False
        self._state = CoordinatorState.FAULTED
        self.pairing_window = PairingWindow()
        logger.error(f"Coordinator faulted: {reason}. Stop and start it again to recover.")
        return True

    async def _pump(self) -> None:
        """Feed controller notifications to the router until the session ends."""
        try:
            async for raw in self.controller.events():
                try:
                    await self.router.handle(raw)
                except ZigctlError as e:
                    logger.error(f"Failed to handle {raw.type.value} event: {e.message}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Network event feed failed: {format_error(e)}")
            if self.mark_faulted("event feed lost"):
                await self.bus.publish(AdapterDisconnected())

    # ==================== PAIRING ====================

    async def set_pairing_window(self, enabled: bool, duration: Optional[int] = None) -> PairingWindow:
        """
        Open or close the network for joins.

        ``duration`` is clamped to 1-254 seconds when enabling.
        """
        self.require_running("set pairing window")

        if enabled:
            duration = clamp_pairing_duration(
                duration if duration is not None else self.config.pairing_duration
            )
            seconds = duration
        else:
            duration = None
            seconds = 0

        await bounded(
            self.controller.set_pairing_window(seconds),
            "set pairing window",
            self.config.request_timeout,
        )
        if enabled:
            logger.info(f"Pairing enabled for {duration} seconds")
        else:
            logger.info("Pairing disabled")

        await self.bus.publish(self.apply_pairing_window(enabled, duration))
        return self.pairing_window

    async def disable_pairing(self) -> PairingWindow:
        return await self.set_pairing_window(False)

    def apply_pairing_window(self, enabled: bool, duration: Optional[int] = None) -> PairingWindowChanged:
        """Record a pairing window change and return the event describing it."""
        self.pairing_window = PairingWindow(
            enabled=enabled,
            duration=duration if enabled else None,
            opened_at=time.monotonic() if enabled else None,
        )
        return PairingWindowChanged(enabled=enabled, duration=self.pairing_window.duration)

    def status(self) -> Dict[str, Any]:
        """Summary for status displays."""
        return {
            "state": self._state.value,
            "port": self.config.serial.port,
            "adapter": self.config.serial.adapter,
            "devices": len(self.directory) if self.is_running else 0,
            "pairing": self.pairing_window.to_dict(),
            "start_result": getattr(self.start_result, "result", None),
        }
