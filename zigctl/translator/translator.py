"""
Command Translator - semantic intents to low-level cluster commands.

Each operation resolves the device against the catalog, checks its
preconditions locally (coordinator running, device known, interview
complete, intent supported) and only then talks to the Network
Controller. Successful commands fold the state they imply back into the
State Cache.

Compound operations are not transactional: when a later step fails the
earlier ones have already taken effect on the device.
"""

import colorsys
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..capabilities.catalog import AttributeBinding
from ..capabilities.resolver import CapabilityDescriptor, CapabilityResolver, Intent, Resolution
from ..devices.directory import DeviceDirectory
from ..devices.models import ClusterType, ColorSpec, Device, DeviceState, Endpoint, LightOptions, PowerState
from ..errors import (
    AttributeUnsupportedError,
    CapabilityUnknownError,
    InvalidParameterError,
    UnsupportedActionError,
    ZigctlError,
)
from ..network.base import NetworkController, bounded
from .conversions import (
    decode_color,
    decode_electrical,
    decode_level,
    decode_metering,
    decode_on_off,
    hue_to_native,
    parse_hex,
    percent_to_level,
    rgb_to_xy,
    saturation_to_native,
    to_mireds,
    transition_to_transtime,
    xy_to_native,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0

ReadStep = Tuple[str, Callable[[], Awaitable[Dict[str, Any]]]]


async def best_effort(reads: Iterable[ReadStep]) -> Dict[str, Any]:
    """
    Run reads one after another and merge what they return.

    A read failing because the cluster or attribute is absent is skipped;
    timeouts and other transport failures propagate.
    """
    result: Dict[str, Any] = {}
    for label, read in reads:
        try:
            result.update(await read())
        except AttributeUnsupportedError as e:
            logger.debug(f"Skipping {label}: {e}")
    return result


# Attribute reads per semantic attribute: (attributes to read, decoder)
READ_PLAN: Dict[str, Tuple[Tuple[str, ...], Callable[[Dict[str, Any]], Dict[str, Any]]]] = {
    "state": (("onOff",), decode_on_off),
    "brightness": (("currentLevel",), decode_level),
    "color_temp": (("colorTemperature",), decode_color),
    "power": (("activePower", "rmsVoltage", "rmsCurrent"), decode_electrical),
    "energy": (("currentSummDelivered",), decode_metering),
}


class CommandTranslator:
    """
    Translates intents into Network Controller calls.

    Usage:
        translator = CommandTranslator(controller, directory, resolver, coordinator)
        await translator.turn_on("0x00158d0001234567")
        await translator.set_brightness("0x00158d0001234567", 50)
    """

    def __init__(
        self,
        controller: NetworkController,
        directory: DeviceDirectory,
        resolver: CapabilityResolver,
        coordinator: Any,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.controller = controller
        self.directory = directory
        self.resolver = resolver
        self.coordinator = coordinator
        self.request_timeout = request_timeout

    # ==================== PRECONDITIONS ====================

    def _prepare(self, ieee_address: str, intent: Intent) -> Tuple[Device, Resolution, CapabilityDescriptor]:
        """Check every precondition of an intent; no transport call is made."""
        self.coordinator.require_running(intent.value)
        device = self.directory.get(ieee_address)
        if not device.interview_completed:
            raise CapabilityUnknownError(device.ieee_address, intent.value)

        resolution = self.resolver.resolve(device)
        descriptor = resolution.descriptor(intent)
        if not descriptor.supported:
            raise UnsupportedActionError(intent.value, device.ieee_address)
        return device, resolution, descriptor

    def _endpoint_for(self, device: Device, binding: AttributeBinding, intent: Intent) -> Endpoint:
        endpoint = device.find_endpoint(binding.cluster)
        if endpoint is not None:
            return endpoint

        if binding.cluster == ClusterType.ON_OFF:
            logger.warning(
                f"Device {device.ieee_address} does not expose the On/Off cluster on any endpoint"
            )
            raise UnsupportedActionError(intent.value, device.ieee_address)

        fallback = device.get_endpoint(1) or (device.endpoints[0] if device.endpoints else None)
        if fallback is None:
            raise UnsupportedActionError(intent.value, device.ieee_address)
        return fallback

    # ==================== TRANSPORT ====================

    async def _call(self, operation: str, ieee_address: str, coro: Awaitable[Any]) -> Any:
        """Bound a controller round-trip by the request timeout."""
        return await bounded(coro, operation, self.request_timeout, ieee_address)

    async def _issue(
        self,
        device: Device,
        endpoint: Endpoint,
        cluster: ClusterType,
        command: str,
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        result = await self._call(
            f"{cluster.cluster_name}.{command}",
            device.ieee_address,
            self.controller.issue_command(
                device.ieee_address, endpoint.endpoint_id, cluster.cluster_name, command, payload
            ),
        )
        logger.debug(
            f"Command {cluster.cluster_name}.{command}={payload} sent to "
            f"{device.ieee_address} (endpoint {endpoint.endpoint_id})"
        )
        return result or {}

    async def _read(self, device: Device, endpoint: Endpoint, binding: AttributeBinding, attributes: Sequence[str]) -> Dict[str, Any]:
        return await self._call(
            f"read {binding.cluster_name}",
            device.ieee_address,
            self.controller.read_attributes(
                device.ieee_address, endpoint.endpoint_id, binding.cluster_name, list(attributes)
            ),
        ) or {}

    async def _fold(self, device: Device, partial: Dict[str, Any]) -> DeviceState:
        if not partial:
            return self.directory.state_cache.get(device.ieee_address)
        return await self.directory.state_cache.merge(device.ieee_address, partial)

    # ==================== ON / OFF ====================

    async def _on_off(self, ieee_address: str, intent: Intent) -> DeviceState:
        device, _, descriptor = self._prepare(ieee_address, intent)
        endpoint = self._endpoint_for(device, descriptor.binding, intent)
        command = descriptor.commands[0]

        logger.info(f'Sending "{command}" to {device.ieee_address} (endpoint {endpoint.endpoint_id})')
        await self._issue(device, endpoint, ClusterType.ON_OFF, command, {})

        if intent == Intent.TURN_ON:
            new_state = PowerState.ON.value
        elif intent == Intent.TURN_OFF:
            new_state = PowerState.OFF.value
        else:
            current = self.directory.state_cache.get(device.ieee_address).get("state")
            new_state = {
                PowerState.ON.value: PowerState.OFF.value,
                PowerState.OFF.value: PowerState.ON.value,
            }.get(current)

        return await self._fold(device, {"state": new_state} if new_state else {})

    async def turn_on(self, ieee_address: str) -> DeviceState:
        """Turn a light or plug on."""
        return await self._on_off(ieee_address, Intent.TURN_ON)

    async def turn_off(self, ieee_address: str) -> DeviceState:
        """Turn a light or plug off."""
        return await self._on_off(ieee_address, Intent.TURN_OFF)

    async def toggle(self, ieee_address: str) -> DeviceState:
        """Toggle a light or plug."""
        return await self._on_off(ieee_address, Intent.TOGGLE)

    async def set_power_state(self, ieee_address: str, state: Union[PowerState, str]) -> DeviceState:
        """Apply an ON/OFF/TOGGLE value."""
        state = PowerState(str(getattr(state, "value", state)).upper())
        intent = {
            PowerState.ON: Intent.TURN_ON,
            PowerState.OFF: Intent.TURN_OFF,
            PowerState.TOGGLE: Intent.TOGGLE,
        }[state]
        return await self._on_off(ieee_address, intent)

    # ==================== LIGHTS ====================

    async def set_brightness(
        self,
        ieee_address: str,
        percent: float,
        transition: Optional[float] = None,
    ) -> DeviceState:
        """
        Set brightness in percent.

        0-100 is rescaled to the native 0-254 level; values outside the
        documented domain are clamped rather than rejected.
        """
        device, _, descriptor = self._prepare(ieee_address, Intent.SET_BRIGHTNESS)
        binding = descriptor.binding
        endpoint = self._endpoint_for(device, binding, Intent.SET_BRIGHTNESS)

        level = percent_to_level(percent)
        await self._issue(device, endpoint, binding.cluster, descriptor.commands[0], {
            "level": level,
            "transtime": transition_to_transtime(transition),
        })
        return await self._fold(device, {"brightness": level})

    async def set_color_temperature(
        self,
        ieee_address: str,
        value: float,
        transition: Optional[float] = None,
    ) -> DeviceState:
        """
        Set colour temperature.

        Values up to 500 are mireds; larger values are Kelvin.
        """
        device, _, descriptor = self._prepare(ieee_address, Intent.SET_COLOR_TEMPERATURE)
        binding = descriptor.binding
        endpoint = self._endpoint_for(device, binding, Intent.SET_COLOR_TEMPERATURE)

        mireds = to_mireds(value)
        if descriptor.value_range is not None and mireds not in descriptor.value_range:
            logger.debug(
                f"Colour temperature {mireds} mireds is outside {device.ieee_address}'s "
                f"range {descriptor.value_range.minimum:g}-{descriptor.value_range.maximum:g}"
            )

        await self._issue(device, endpoint, binding.cluster, descriptor.commands[0], {
            "colortemp": mireds,
            "transtime": transition_to_transtime(transition),
        })
        return await self._fold(device, {"color_temp": mireds})

    async def set_color(
        self,
        ieee_address: str,
        color: Union[ColorSpec, Dict[str, Any], None],
        transition: Optional[float] = None,
    ) -> Optional[DeviceState]:
        """
        Set colour from exactly one representation.

        Precedence is hex, then RGB, then hue/saturation. With none of
        them present nothing is sent and None is returned.
        """
        spec = color if isinstance(color, ColorSpec) else ColorSpec.from_dict(color)
        if spec.is_empty:
            return None

        device, _, descriptor = self._prepare(ieee_address, Intent.SET_COLOR)
        binding = descriptor.binding
        endpoint = self._endpoint_for(device, binding, Intent.SET_COLOR)
        transtime = transition_to_transtime(transition)

        if spec.hex is not None:
            command, payload, folded = self._color_from_rgb(parse_hex(spec.hex), descriptor, transtime)
        elif spec.rgb is not None:
            command, payload, folded = self._color_from_rgb(spec.rgb, descriptor, transtime)
        else:
            command, payload, folded = self._color_from_hs(spec.hue, spec.saturation, descriptor, transtime)

        await self._issue(device, endpoint, binding.cluster, command, payload)
        return await self._fold(device, {"color": folded})

    def _color_from_rgb(
        self,
        rgb: Tuple[int, int, int],
        descriptor: CapabilityDescriptor,
        transtime: int,
    ) -> Tuple[str, Dict[str, Any], Dict[str, Any]]:
        if "moveToColor" not in descriptor.commands:
            hue, saturation, _ = colorsys.rgb_to_hsv(*(channel / 255 for channel in rgb))
            return self._color_from_hs(hue * 360, saturation * 100, descriptor, transtime)

        x, y = rgb_to_xy(*rgb)
        colorx, colory = xy_to_native(x, y)
        return "moveToColor", {"colorx": colorx, "colory": colory, "transtime": transtime}, {"x": x, "y": y}

    def _color_from_hs(
        self,
        hue: float,
        saturation: float,
        descriptor: CapabilityDescriptor,
        transtime: int,
    ) -> Tuple[str, Dict[str, Any], Dict[str, Any]]:
        if "moveToHueAndSaturation" not in descriptor.commands:
            r, g, b = colorsys.hsv_to_rgb((hue % 360) / 360, saturation / 100, 1.0)
            return self._color_from_rgb(
                (round(r * 255), round(g * 255), round(b * 255)), descriptor, transtime
            )

        payload = {
            "hue": hue_to_native(hue),
            "saturation": saturation_to_native(saturation),
            "transtime": transtime,
        }
        return "moveToHueAndSaturation", payload, {"hue": hue, "saturation": saturation}

    async def turn_on_light(
        self,
        ieee_address: str,
        options: Union[LightOptions, Dict[str, Any], None] = None,
    ) -> DeviceState:
        """
        Turn a light on, then apply brightness, colour temperature and colour.

        Each step is awaited before the next starts. There is no rollback:
        if a later step fails the earlier ones stay applied and only the
        failing step's error is raised.
        """
        options = options if isinstance(options, LightOptions) else LightOptions.from_dict(options)
        applied: List[str] = []

        try:
            state = await self.turn_on(ieee_address)
            applied.append("state")

            if options.brightness is not None:
                state = await self.set_brightness(ieee_address, options.brightness, options.transition)
                applied.append("brightness")

            if options.color_temp is not None:
                state = await self.set_color_temperature(ieee_address, options.color_temp, options.transition)
                applied.append("color_temp")

            if options.color is not None and not options.color.is_empty:
                state = await self.set_color(ieee_address, options.color, options.transition)
                applied.append("color")
        except ZigctlError as e:
            if applied:
                logger.warning(
                    f"turn_on_light on {ieee_address} partially applied ({', '.join(applied)}): {e}"
                )
            raise

        return state

    # ==================== READS ====================

    def _read_steps(self, device: Device, descriptor: CapabilityDescriptor, intent: Intent) -> List[ReadStep]:
        steps: List[ReadStep] = []
        for binding in descriptor.bindings:
            plan = READ_PLAN.get(binding.attribute)
            if plan is None:
                continue
            attributes, decode = plan
            endpoint = device.find_endpoint(binding.cluster)
            if endpoint is None:
                logger.debug(f"{device.ieee_address} has no endpoint serving {binding.cluster_name}")
                continue

            async def read(binding=binding, endpoint=endpoint, attributes=attributes, decode=decode):
                return decode(await self._read(device, endpoint, binding, attributes))

            steps.append((f"{binding.cluster_name} on {device.ieee_address}", read))
        return steps

    async def read_state(self, ieee_address: str) -> Dict[str, Any]:
        """
        Read on/off, level and colour temperature from the device.

        Attributes the device does not support are left out of the
        result; the read as a whole does not fail because of them.
        """
        device, _, descriptor = self._prepare(ieee_address, Intent.READ_STATE)
        state = await best_effort(self._read_steps(device, descriptor, Intent.READ_STATE))
        await self._fold(device, state)
        return state

    async def read_power_consumption(self, ieee_address: str) -> Dict[str, Any]:
        """
        Read instantaneous power, voltage, current and cumulative energy.

        Values are normalized to W, V, A and kWh.
        """
        device, _, descriptor = self._prepare(ieee_address, Intent.READ_POWER)
        readings = await best_effort(self._read_steps(device, descriptor, Intent.READ_POWER))
        await self._fold(device, readings)
        return readings

    # ==================== NETWORK MANAGEMENT ====================

    def _cluster(self, cluster: Union[ClusterType, str, int]) -> ClusterType:
        if isinstance(cluster, ClusterType):
            return cluster
        found = ClusterType.from_name(cluster) if isinstance(cluster, str) else None
        if found is None:
            try:
                found = ClusterType(cluster) if isinstance(cluster, int) else ClusterType[cluster.upper()]
            except (KeyError, ValueError):
                raise InvalidParameterError(f"Unknown cluster: {cluster}", param="cluster") from None
        return found

    def _management_endpoint(self, device: Device, cluster: ClusterType) -> Endpoint:
        endpoint = device.find_endpoint(cluster) or device.get_endpoint(1)
        if endpoint is None and device.endpoints:
            endpoint = device.endpoints[0]
        if endpoint is None:
            raise UnsupportedActionError(f"{cluster.cluster_name} management", device.ieee_address)
        return endpoint

    async def bind(self, source_address: str, target_address: str, clusters: Sequence[Union[ClusterType, str]]) -> None:
        """Bind clusters of one device to another (e.g. a switch to a light)."""
        await self._binding("bind", source_address, target_address, clusters)

    async def unbind(self, source_address: str, target_address: str, clusters: Sequence[Union[ClusterType, str]]) -> None:
        """Remove a binding between two devices."""
        await self._binding("unbind", source_address, target_address, clusters)

    async def _binding(
        self,
        operation: str,
        source_address: str,
        target_address: str,
        clusters: Sequence[Union[ClusterType, str]],
    ) -> None:
        self.coordinator.require_running(operation)
        source = self.directory.get(source_address)
        target = self.directory.get(target_address)
        method = self.controller.bind if operation == "bind" else self.controller.unbind

        for cluster in (self._cluster(c) for c in clusters):
            source_endpoint = self._management_endpoint(source, cluster)
            target_endpoint = self._management_endpoint(target, cluster)
            await self._call(
                f"{operation} {cluster.cluster_name}",
                source.ieee_address,
                method(
                    source.ieee_address,
                    source_endpoint.endpoint_id,
                    cluster.cluster_name,
                    target.ieee_address,
                    target_endpoint.endpoint_id,
                ),
            )
            logger.info(
                f"{operation.capitalize()}: {source.ieee_address} -> {target.ieee_address} "
                f"({cluster.cluster_name})"
            )

    async def configure_reporting(
        self,
        ieee_address: str,
        cluster: Union[ClusterType, str],
        attributes: List[Dict[str, Any]],
    ) -> None:
        """
        Configure automatic attribute reporting.

        Each attribute entry carries ``attribute``,
        ``minimum_report_interval``, ``maximum_report_interval`` and
        ``reportable_change``.
        """
        self.coordinator.require_running("configure reporting")
        device = self.directory.get(ieee_address)
        cluster = self._cluster(cluster)
        endpoint = self._management_endpoint(device, cluster)

        await self._call(
            f"configure reporting {cluster.cluster_name}",
            device.ieee_address,
            self.controller.configure_reporting(
                device.ieee_address, endpoint.endpoint_id, cluster.cluster_name, attributes
            ),
        )
        logger.info(f"Reporting configured for {device.ieee_address} on cluster {cluster.cluster_name}")
