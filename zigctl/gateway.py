"""
Gateway - the public facade of zigctl.

Wires the device layer together (directory, state cache, resolver,
translator, event bus, coordinator) around one Network Controller and
exposes queries, commands, lifecycle and the event feed.

Usage:
    gateway = Gateway(BridgeController(config.bridge), config)
    async with gateway:
        await gateway.turn_on("0x00158d0001234567")
        with gateway.subscribe() as events:
            async for event in events:
                print(event.kind.value)
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from .capabilities.catalog import CapabilityCatalog, StaticCatalog
from .capabilities.resolver import CapabilityResolver, Resolution
from .config import Config, get_config
from .coordinator import Coordinator, CoordinatorState, PairingWindow
from .devices.directory import DeviceDirectory
from .devices.models import ClusterType, ColorSpec, Device, DeviceState, LightOptions, PowerState
from .devices.state import StateCache
from .events.bus import EventBus, OverflowPolicy, Subscription
from .events.models import EventKind
from .network.base import NetworkController
from .translator.translator import CommandTranslator

logger = logging.getLogger(__name__)


def build_controller(config: Config, simulate: bool = False) -> NetworkController:
    """Pick the Network Controller for a configuration."""
    if simulate:
        from .network.memory import demo_network
        return demo_network()
    from .network.bridge import BridgeController
    return BridgeController(config.bridge)


class Gateway:
    """
    One radio, its devices and everything needed to drive them.

    Queries and commands require the coordinator to be running; the
    coordinator state and pairing window can be read at any time.
    """

    def __init__(
        self,
        controller: NetworkController,
        config: Optional[Config] = None,
        catalog: Optional[CapabilityCatalog] = None,
    ):
        self.config = config or get_config()
        self.controller = controller

        if catalog is None:
            catalog = StaticCatalog()
            if self.config.catalog_path:
                catalog.load_file(self.config.catalog_path)
        self.catalog = catalog

        self.bus = EventBus(maxsize=self.config.event_queue_size)
        self.state_cache = StateCache(self.bus)
        self.directory = DeviceDirectory(self.state_cache)
        self.resolver = CapabilityResolver(self.catalog)
        self.coordinator = Coordinator(controller, self.directory, self.resolver, self.bus, self.config)
        self.translator = CommandTranslator(
            controller,
            self.directory,
            self.resolver,
            self.coordinator,
            request_timeout=self.config.request_timeout,
        )

    # ==================== LIFECYCLE ====================

    @property
    def state(self) -> CoordinatorState:
        return self.coordinator.state

    async def start(self, config: Optional[Config] = None) -> CoordinatorState:
        if config is not None:
            self.config = config
            self.translator.request_timeout = config.request_timeout
        return await self.coordinator.start(self.config)

    async def stop(self) -> CoordinatorState:
        return await self.coordinator.stop()

    async def __aenter__(self) -> "Gateway":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()
        self.bus.close()

    def status(self) -> Dict[str, Any]:
        return self.coordinator.status()

    # ==================== QUERIES ====================

    def list_devices(self) -> List[Device]:
        self.coordinator.require_running("list devices")
        return self.directory.list()

    def get_device(self, ieee_address: str) -> Device:
        self.coordinator.require_running("get device")
        return self.directory.get(ieee_address)

    def get_state(self, ieee_address: str) -> DeviceState:
        """Last known state of a device (empty if nothing is cached yet)."""
        device = self.get_device(ieee_address)
        return self.state_cache.get(device.ieee_address)

    def get_capabilities(self, ieee_address: str) -> Resolution:
        return self.resolver.resolve(self.get_device(ieee_address))

    def rename_device(self, ieee_address: str, friendly_name: Optional[str]) -> Device:
        device = self.get_device(ieee_address)
        device.friendly_name = friendly_name or None
        return device

    @property
    def pairing_window(self) -> PairingWindow:
        return self.coordinator.pairing_window

    # ==================== COMMANDS ====================

    async def turn_on(self, ieee_address: str) -> DeviceState:
        return await self.translator.turn_on(ieee_address)

    async def turn_off(self, ieee_address: str) -> DeviceState:
        return await self.translator.turn_off(ieee_address)

    async def toggle(self, ieee_address: str) -> DeviceState:
        return await self.translator.toggle(ieee_address)

    async def set_power_state(self, ieee_address: str, state: Union[PowerState, str]) -> DeviceState:
        return await self.translator.set_power_state(ieee_address, state)

    async def set_brightness(self, ieee_address: str, percent: float, transition: Optional[float] = None) -> DeviceState:
        return await self.translator.set_brightness(ieee_address, percent, transition)

    async def set_color_temperature(self, ieee_address: str, value: float, transition: Optional[float] = None) -> DeviceState:
        return await self.translator.set_color_temperature(ieee_address, value, transition)

    async def set_color(
        self,
        ieee_address: str,
        color: Union[ColorSpec, Dict[str, Any]],
        transition: Optional[float] = None,
    ) -> Optional[DeviceState]:
        return await self.translator.set_color(ieee_address, color, transition)

    async def turn_on_light(
        self,
        ieee_address: str,
        options: Union[LightOptions, Dict[str, Any], None] = None,
    ) -> DeviceState:
        return await self.translator.turn_on_light(ieee_address, options)

    async def read_state(self, ieee_address: str) -> Dict[str, Any]:
        return await self.translator.read_state(ieee_address)

    async def read_power_consumption(self, ieee_address: str) -> Dict[str, Any]:
        return await self.translator.read_power_consumption(ieee_address)

    async def bind(self, source: str, target: str, clusters: Iterable[Union[ClusterType, str]]) -> None:
        await self.translator.bind(source, target, list(clusters))

    async def unbind(self, source: str, target: str, clusters: Iterable[Union[ClusterType, str]]) -> None:
        await self.translator.unbind(source, target, list(clusters))

    async def configure_reporting(
        self,
        ieee_address: str,
        cluster: Union[ClusterType, str],
        attributes: List[Dict[str, Any]],
    ) -> None:
        await self.translator.configure_reporting(ieee_address, cluster, attributes)

    async def set_pairing_window(self, enabled: bool, duration: Optional[int] = None) -> PairingWindow:
        return await self.coordinator.set_pairing_window(enabled, duration)

    async def disable_pairing(self) -> PairingWindow:
        return await self.coordinator.disable_pairing()

    # ==================== EVENTS ====================

    def subscribe(
        self,
        kinds: Optional[Iterable[EventKind]] = None,
        maxsize: Optional[int] = None,
        overflow: Optional[OverflowPolicy] = None,
    ) -> Subscription:
        """Open a subscription to the domain event feed."""
        return self.bus.subscribe(kinds, maxsize=maxsize, overflow=overflow)
