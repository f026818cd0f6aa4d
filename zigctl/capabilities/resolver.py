"""
Capability Resolver - what kind of device is this, and what can it do?

Given a device, looks its model up in the Capability Catalog and derives
its semantic kind, the set of supported intents and one descriptor per
intent. Resolution is deliberately not cached: the catalog may change
independently and resolving is cheap and side-effect-free.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from ..devices.models import Device, DeviceKind, DeviceRecord
from .catalog import AttributeBinding, CapabilityCatalog, DeviceDefinition, ValueRange

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    """Caller-facing semantic commands."""
    TURN_ON = "turn_on"
    TURN_OFF = "turn_off"
    TOGGLE = "toggle"
    SET_BRIGHTNESS = "set_brightness"
    SET_COLOR_TEMPERATURE = "set_color_temperature"
    SET_COLOR = "set_color"
    READ_STATE = "read_state"
    READ_POWER = "read_power"


# Semantic attributes each intent needs, in the order they are used
INTENT_ATTRIBUTES: Dict[Intent, Tuple[str, ...]] = {
    Intent.TURN_ON: ("state",),
    Intent.TURN_OFF: ("state",),
    Intent.TOGGLE: ("state",),
    Intent.SET_BRIGHTNESS: ("brightness",),
    Intent.SET_COLOR_TEMPERATURE: ("color_temp",),
    Intent.SET_COLOR: ("color",),
    Intent.READ_STATE: ("state", "brightness", "color_temp"),
    Intent.READ_POWER: ("power", "energy"),
}

# Low-level command each On/Off intent issues
ON_OFF_COMMANDS: Dict[Intent, str] = {
    Intent.TURN_ON: "on",
    Intent.TURN_OFF: "off",
    Intent.TOGGLE: "toggle",
}

# When turning a light on with extra settings, "state" goes first
COMPOUND_ORDER: Tuple[Intent, ...] = (
    Intent.TURN_ON,
    Intent.SET_BRIGHTNESS,
    Intent.SET_COLOR_TEMPERATURE,
    Intent.SET_COLOR,
)

_AFTER_ON = (Intent.TURN_ON,)


@dataclass(frozen=True)
class CapabilityDescriptor:
    """
    How one intent maps onto a device model.

    Derived, never mutated: a re-resolution produces new descriptors.
    """
    intent: Intent
    supported: bool
    bindings: Tuple[AttributeBinding, ...] = ()
    commands: Tuple[str, ...] = ()
    value_range: Optional[ValueRange] = None
    after: Tuple[Intent, ...] = ()

    @property
    def binding(self) -> Optional[AttributeBinding]:
        """Primary binding of the intent."""
        return self.bindings[0] if self.bindings else None


@dataclass(frozen=True)
class Resolution:
    """Result of resolving a device against the catalog."""
    kind: DeviceKind
    supported: FrozenSet[Intent]
    descriptors: Mapping[Intent, CapabilityDescriptor] = field(
        default_factory=lambda: MappingProxyType({})
    )
    definition: Optional[DeviceDefinition] = None

    def supports(self, intent: Intent) -> bool:
        return intent in self.supported

    def descriptor(self, intent: Intent) -> CapabilityDescriptor:
        """Get the descriptor for an intent (unsupported if unknown)."""
        descriptor = self.descriptors.get(intent)
        if descriptor is None:
            return CapabilityDescriptor(intent=intent, supported=False)
        return descriptor

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "supported": sorted(intent.value for intent in self.supported),
            "model": self.definition.model if self.definition else None,
            "vendor": self.definition.vendor if self.definition else None,
        }


UNKNOWN_RESOLUTION = Resolution(kind=DeviceKind.UNKNOWN, supported=frozenset())


def infer_kind(definition: DeviceDefinition) -> DeviceKind:
    """
    Infer the semantic kind from a definition's exposes.

    A light control surface makes a light; otherwise a switch surface or
    a "power" reading makes a plug; anything else is unknown.
    """
    if any(expose.type == "light" for expose in definition.exposes):
        return DeviceKind.LIGHT
    if any(expose.type == "switch" or expose.name == "power" for expose in definition.exposes):
        return DeviceKind.PLUG
    return DeviceKind.UNKNOWN


def _describe(intent: Intent, definition: DeviceDefinition) -> CapabilityDescriptor:
    bindings = [
        binding for binding in (
            definition.binding(attribute) for attribute in INTENT_ATTRIBUTES[intent]
        )
        if binding is not None
    ]
    if not bindings:
        return CapabilityDescriptor(intent=intent, supported=False)

    primary = bindings[0]
    if intent in ON_OFF_COMMANDS:
        command = ON_OFF_COMMANDS[intent]
        if command not in primary.commands:
            return CapabilityDescriptor(intent=intent, supported=False)
        commands: Tuple[str, ...] = (command,)
    else:
        commands = primary.commands

    return CapabilityDescriptor(
        intent=intent,
        supported=True,
        bindings=tuple(bindings),
        commands=commands,
        value_range=primary.value_range,
        after=_AFTER_ON if intent in COMPOUND_ORDER[1:] else (),
    )


class CapabilityResolver:
    """
    Resolves devices against a Capability Catalog.

    Usage:
        resolver = CapabilityResolver(StaticCatalog())
        resolution = resolver.resolve(device)
        if resolution.supports(Intent.SET_BRIGHTNESS):
            ...
    """

    def __init__(self, catalog: CapabilityCatalog):
        self.catalog = catalog

    def resolve(self, device: Union[Device, DeviceRecord]) -> Resolution:
        """
        Resolve a device's kind, supported intents and descriptors.

        Never raises for a missing catalog entry: an unknown model
        resolves to kind ``unknown`` with no supported intents.
        """
        definition = self.catalog.lookup(device)
        if definition is None:
            logger.debug(
                f"No definition for {device.ieee_address} "
                f"(model: {device.model_id or 'unknown'})"
            )
            return UNKNOWN_RESOLUTION

        descriptors = {intent: _describe(intent, definition) for intent in Intent}
        supported = frozenset(
            intent for intent, descriptor in descriptors.items() if descriptor.supported
        )
        return Resolution(
            kind=infer_kind(definition),
            supported=supported,
            descriptors=MappingProxyType(descriptors),
            definition=definition,
        )

    def kind_of(self, device: Union[Device, DeviceRecord]) -> DeviceKind:
        return self.resolve(device).kind

    def supported_intents(self, device: Union[Device, DeviceRecord]) -> List[Intent]:
        resolution = self.resolve(device)
        return [intent for intent in Intent if intent in resolution.supported]
