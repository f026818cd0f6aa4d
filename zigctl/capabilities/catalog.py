"""
Capability Catalog - per-model definitions of what a device can do.

A definition lists the control surfaces a model exposes and, for each
semantic attribute, the low-level cluster command or attribute read that
sets or reads it. The resolver and translator never probe clusters on
their own; everything they know about a model comes from here.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..devices.models import ClusterType, Device, DeviceRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValueRange:
    """Native value domain of an attribute."""
    minimum: float
    maximum: float

    def clamp(self, value: float) -> float:
        return max(self.minimum, min(self.maximum, value))

    def __contains__(self, value: float) -> bool:
        return self.minimum <= value <= self.maximum


@dataclass(frozen=True)
class Expose:
    """A control surface or reading exposed by a model."""
    type: str  # light, switch, numeric, binary
    name: Optional[str] = None
    features: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AttributeBinding:
    """Low-level binding of one semantic attribute."""
    attribute: str
    cluster: ClusterType
    commands: Tuple[str, ...] = ()
    read_attributes: Tuple[str, ...] = ()
    value_range: Optional[ValueRange] = None

    @property
    def cluster_name(self) -> str:
        return self.cluster.cluster_name


@dataclass
class DeviceDefinition:
    """Catalog entry for one device model."""
    model: str
    vendor: str
    description: str
    zigbee_models: List[str]
    exposes: List[Expose] = field(default_factory=list)
    bindings: Dict[str, AttributeBinding] = field(default_factory=dict)
    manufacturer_names: List[str] = field(default_factory=list)

    def matches(self, model_id: Optional[str], manufacturer_name: Optional[str]) -> bool:
        """Check whether a device fingerprint belongs to this model."""
        if not model_id or model_id not in self.zigbee_models:
            return False
        if self.manufacturer_names and manufacturer_name not in self.manufacturer_names:
            return False
        return True

    def binding(self, attribute: str) -> Optional[AttributeBinding]:
        return self.bindings.get(attribute)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceDefinition":
        """
        Deserialize from the catalog file format.

        Example:
            {
                "zigbee_models": ["TRADFRI bulb E27 WS opal 980lm"],
                "model": "LED1545G12",
                "vendor": "IKEA",
                "description": "TRADFRI bulb E27, white spectrum",
                "light": {"color_temp": [250, 454]},
                "electricity_meter": false
            }
        """
        exposes: List[Expose] = []
        bindings: Dict[str, AttributeBinding] = {}

        light_data = data.get("light")
        if light_data is not None:
            light_data = light_data if isinstance(light_data, dict) else {}
            color_temp = light_data.get("color_temp")
            light_exposes, light_bindings = light(
                brightness=light_data.get("brightness", True),
                color_temp=tuple(color_temp) if isinstance(color_temp, list) else bool(color_temp),
                color=light_data.get("color", False),
            )
            exposes += light_exposes
            bindings.update(light_bindings)

        if data.get("switch"):
            switch_exposes, switch_bindings = switch()
            exposes += switch_exposes
            bindings.update(switch_bindings)

        if data.get("electricity_meter"):
            meter_exposes, meter_bindings = electricity_meter()
            exposes += meter_exposes
            bindings.update(meter_bindings)

        for extra in data.get("exposes", []):
            exposes.append(Expose(
                type=extra["type"],
                name=extra.get("name"),
                features=tuple(extra.get("features", [])),
            ))

        return cls(
            model=data["model"],
            vendor=data.get("vendor", "Unknown"),
            description=data.get("description", ""),
            zigbee_models=list(data["zigbee_models"]),
            exposes=exposes,
            bindings=bindings,
            manufacturer_names=list(data.get("manufacturer_names", [])),
        )


# =============================================================================
# BINDING BUILDERS
# =============================================================================

STATE_BINDING = AttributeBinding(
    attribute="state",
    cluster=ClusterType.ON_OFF,
    commands=("on", "off", "toggle"),
    read_attributes=("onOff",),
)

BRIGHTNESS_BINDING = AttributeBinding(
    attribute="brightness",
    cluster=ClusterType.LEVEL_CONTROL,
    commands=("moveToLevel",),
    read_attributes=("currentLevel",),
    value_range=ValueRange(0, 254),
)

COLOR_BINDING = AttributeBinding(
    attribute="color",
    cluster=ClusterType.COLOR_CONTROL,
    commands=("moveToColor", "moveToHueAndSaturation"),
    read_attributes=("currentX", "currentY", "currentHue", "currentSaturation"),
    value_range=ValueRange(0, 65279),
)

POWER_BINDING = AttributeBinding(
    attribute="power",
    cluster=ClusterType.ELECTRICAL_MEASUREMENT,
    read_attributes=("activePower", "rmsVoltage", "rmsCurrent"),
)

ENERGY_BINDING = AttributeBinding(
    attribute="energy",
    cluster=ClusterType.METERING,
    read_attributes=("currentSummDelivered",),
)

DEFAULT_COLOR_TEMP_RANGE = (153, 500)


def color_temp_binding(minimum: float = 153, maximum: float = 500) -> AttributeBinding:
    return AttributeBinding(
        attribute="color_temp",
        cluster=ClusterType.COLOR_CONTROL,
        commands=("moveToColorTemp",),
        read_attributes=("colorTemperature",),
        value_range=ValueRange(minimum, maximum),
    )


def light(
    brightness: bool = True,
    color_temp: Union[bool, Tuple[float, float]] = False,
    color: bool = False,
) -> Tuple[List[Expose], Dict[str, AttributeBinding]]:
    """Exposes and bindings of a light."""
    features = ["state"]
    bindings = {"state": STATE_BINDING}

    if brightness:
        features.append("brightness")
        bindings["brightness"] = BRIGHTNESS_BINDING
    if color_temp:
        features.append("color_temp")
        low, high = color_temp if isinstance(color_temp, tuple) else DEFAULT_COLOR_TEMP_RANGE
        bindings["color_temp"] = color_temp_binding(low, high)
    if color:
        features += ["color_xy", "color_hs"]
        bindings["color"] = COLOR_BINDING

    return [Expose(type="light", features=tuple(features))], bindings


def switch() -> Tuple[List[Expose], Dict[str, AttributeBinding]]:
    """Exposes and bindings of an on/off switch or plug."""
    return [Expose(type="switch", features=("state",))], {"state": STATE_BINDING}


def electricity_meter() -> Tuple[List[Expose], Dict[str, AttributeBinding]]:
    """Exposes and bindings of a metering plug."""
    exposes = [
        Expose(type="numeric", name="power"),
        Expose(type="numeric", name="voltage"),
        Expose(type="numeric", name="current"),
        Expose(type="numeric", name="energy"),
    ]
    return exposes, {"power": POWER_BINDING, "energy": ENERGY_BINDING}


def _definition(
    zigbee_models: List[str],
    model: str,
    vendor: str,
    description: str,
    *extends: Tuple[List[Expose], Dict[str, AttributeBinding]],
    manufacturer_names: Optional[List[str]] = None,
    exposes: Optional[List[Expose]] = None,
) -> DeviceDefinition:
    all_exposes: List[Expose] = []
    bindings: Dict[str, AttributeBinding] = {}
    for extend_exposes, extend_bindings in extends:
        all_exposes += extend_exposes
        bindings.update(extend_bindings)
    all_exposes += exposes or []
    return DeviceDefinition(
        model=model,
        vendor=vendor,
        description=description,
        zigbee_models=zigbee_models,
        exposes=all_exposes,
        bindings=bindings,
        manufacturer_names=manufacturer_names or [],
    )


# =============================================================================
# BUILT-IN DEFINITIONS
# =============================================================================

BUILTIN_DEFINITIONS: List[DeviceDefinition] = [
    # --- Lights ---
    _definition(
        ["TRADFRI bulb E27 WS opal 980lm", "TRADFRI bulb E27 WS opal 1000lm"],
        "LED1545G12", "IKEA", "TRADFRI bulb E26/E27, white spectrum, globe, opal",
        light(color_temp=(250, 454)),
    ),
    _definition(
        ["TRADFRI bulb E27 W opal 1000lm"],
        "LED1623G12", "IKEA", "TRADFRI bulb E27, dimmable, opal",
        light(),
    ),
    _definition(
        ["LCT015", "LCA001", "LCA002"],
        "9290012573A", "Philips", "Hue white and color ambiance E26/E27",
        light(color_temp=(153, 500), color=True),
    ),
    _definition(
        ["LWB010"],
        "8718696449691", "Philips", "Hue white A60 bulb E27",
        light(),
    ),
    _definition(
        ["RB 285 C"],
        "RB 285 C", "Innr", "E27 bulb RGBW",
        light(color_temp=(153, 555), color=True),
    ),

    # --- Plugs ---
    _definition(
        ["S31 Lite zb"],
        "S31ZB", "SONOFF", "Zigbee smart plug (US)",
        switch(),
    ),
    _definition(
        ["S26R2ZB"],
        "S26R2ZB", "SONOFF", "Zigbee smart plug",
        switch(),
    ),
    _definition(
        ["TRADFRI control outlet"],
        "E1603/E1702/E1708", "IKEA", "TRADFRI control outlet",
        switch(),
    ),
    _definition(
        ["TS011F"],
        "TS011F_plug_1", "Tuya", "Smart plug (with power monitoring)",
        switch(), electricity_meter(),
    ),
    _definition(
        ["SP 120"],
        "SP 120", "Innr", "Smart plug with power monitoring",
        switch(), electricity_meter(),
    ),

    # --- Sensors ---
    _definition(
        ["lumi.sensor_ht", "lumi.sens"],
        "WSDCGQ01LM", "Xiaomi", "MiJia temperature & humidity sensor",
        exposes=[
            Expose(type="numeric", name="temperature"),
            Expose(type="numeric", name="humidity"),
            Expose(type="numeric", name="battery"),
        ],
    ),
]


class CapabilityCatalog(ABC):
    """Lookup of device definitions by device fingerprint."""

    @abstractmethod
    def lookup(self, record: Union[DeviceRecord, Device]) -> Optional[DeviceDefinition]:
        """Find the definition for a device, or None if the model is unknown."""


class StaticCatalog(CapabilityCatalog):
    """
    In-process catalog backed by a list of definitions.

    Usage:
        catalog = StaticCatalog()
        catalog.load_file(Path("~/.zigctl/catalog.json"))
        definition = catalog.lookup(record)
    """

    def __init__(
        self,
        definitions: Optional[List[DeviceDefinition]] = None,
        include_builtin: bool = True,
    ):
        self._definitions: List[DeviceDefinition] = []
        if include_builtin:
            self._definitions.extend(BUILTIN_DEFINITIONS)
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: DeviceDefinition) -> None:
        """Add a definition; later registrations take precedence."""
        self._definitions.insert(0, definition)

    def load_file(self, path: Path) -> int:
        """
        Load extra definitions from a JSON file.

        Returns:
            Number of definitions loaded
        """
        path = Path(path).expanduser()
        with open(path, "r") as f:
            data = json.load(f)

        entries = data.get("definitions", []) if isinstance(data, dict) else data
        for entry in entries:
            self.register(DeviceDefinition.from_dict(entry))

        logger.info(f"Loaded {len(entries)} device definitions from {path}")
        return len(entries)

    def lookup(self, record: Union[DeviceRecord, Device]) -> Optional[DeviceDefinition]:
        for definition in self._definitions:
            if definition.matches(record.model_id, record.manufacturer_name):
                return definition
        return None

    @property
    def definitions(self) -> List[DeviceDefinition]:
        return list(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)
