"""
Unit conversions between caller-facing values and native device units.
"""

import math
import re
from typing import Any, Callable, Dict, Optional, Tuple

from ..errors import InvalidParameterError

NATIVE_LEVEL_MAX = 254

# Inputs at or below this are already mireds, above it they are Kelvin.
# 4000 K and 250 mireds both land on 250: the heuristic is inherently
# ambiguous and is kept as-is for compatibility.
MIREDS_THRESHOLD = 500

# Raw electrical readings are divided by these to get W, V, A and kWh
POWER_DIVISOR = 10
VOLTAGE_DIVISOR = 10
CURRENT_DIVISOR = 1000
ENERGY_DIVISOR = 100

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def js_round(value: float) -> int:
    """Round half up (2.5 -> 3), matching the device firmware tables."""
    return int(math.floor(value + 0.5))


def percent_to_level(percent: float) -> int:
    """Rescale 0-100 % to the native 0-254 level, clamping out-of-range input."""
    level = js_round(percent / 100 * NATIVE_LEVEL_MAX)
    return max(0, min(NATIVE_LEVEL_MAX, level))


def level_to_percent(level: float) -> int:
    return js_round(level / NATIVE_LEVEL_MAX * 100)


def to_mireds(value: float) -> float:
    """
    Interpret a colour temperature.

    Values up to 500 are taken as mireds and passed through; larger
    values are Kelvin and converted with ``1_000_000 / kelvin``.
    """
    if value > MIREDS_THRESHOLD:
        return js_round(1_000_000 / value)
    return value


def mireds_to_kelvin(mireds: float) -> Optional[int]:
    if mireds <= 0:
        return None
    return js_round(1_000_000 / mireds)


def transition_to_transtime(seconds: Optional[float]) -> int:
    """Seconds to ZCL transition time (tenths of a second)."""
    if seconds is None or seconds <= 0:
        return 0
    return js_round(seconds * 10)


def parse_hex(value: str) -> Tuple[int, int, int]:
    """
    Parse a "#RRGGBB" or "#RGB" colour.

    Raises:
        InvalidParameterError: If the string is not a hex colour
    """
    match = _HEX_RE.match(value.strip())
    if not match:
        raise InvalidParameterError(f"Invalid hex colour: {value!r}", param="hex")
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def _gamma(channel: float) -> float:
    if channel > 0.04045:
        return ((channel + 0.055) / 1.055) ** 2.4
    return channel / 12.92


def rgb_to_xy(r: int, g: int, b: int) -> Tuple[float, float]:
    """Convert sRGB (0-255) to CIE 1931 xy chromaticity."""
    for name, channel in (("r", r), ("g", g), ("b", b)):
        if not 0 <= channel <= 255:
            raise InvalidParameterError(f"RGB channel {name}={channel} out of range 0-255", param="rgb")

    red, green, blue = _gamma(r / 255), _gamma(g / 255), _gamma(b / 255)
    x = red * 0.4124 + green * 0.3576 + blue * 0.1805
    y = red * 0.2126 + green * 0.7152 + blue * 0.0722
    z = red * 0.0193 + green * 0.1192 + blue * 0.9505
    total = x + y + z
    if total == 0:
        return 0.0, 0.0
    return round(x / total, 4), round(y / total, 4)


def xy_to_native(x: float, y: float) -> Tuple[int, int]:
    """Scale xy chromaticity to the ZCL 0-65279 domain."""
    return js_round(x * 65535), js_round(y * 65535)


def hue_to_native(hue: float) -> int:
    """Degrees (0-360) to the native 0-254 hue."""
    return max(0, min(NATIVE_LEVEL_MAX, js_round((hue % 360) / 360 * NATIVE_LEVEL_MAX)))


def saturation_to_native(saturation: float) -> int:
    """Percent (0-100) to the native 0-254 saturation."""
    return max(0, min(NATIVE_LEVEL_MAX, js_round(saturation / 100 * NATIVE_LEVEL_MAX)))


# =============================================================================
# ATTRIBUTE DECODING
# =============================================================================

def decode_on_off(values: Dict[str, Any]) -> Dict[str, Any]:
    if values.get("onOff") is None:
        return {}
    return {"state": "ON" if values["onOff"] else "OFF"}


def decode_level(values: Dict[str, Any]) -> Dict[str, Any]:
    if values.get("currentLevel") is None:
        return {}
    return {"brightness": values["currentLevel"]}


def decode_color(values: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    if values.get("colorTemperature") is not None:
        result["color_temp"] = values["colorTemperature"]
    if values.get("currentX") is not None and values.get("currentY") is not None:
        result["color"] = {
            "x": round(values["currentX"] / 65535, 4),
            "y": round(values["currentY"] / 65535, 4),
        }
    return result


def decode_electrical(values: Dict[str, Any]) -> Dict[str, Any]:
    """activePower, rmsVoltage and rmsCurrent to W, V and A."""
    result = {}
    if values.get("activePower") is not None:
        result["power"] = values["activePower"] / POWER_DIVISOR
    if values.get("rmsVoltage") is not None:
        result["voltage"] = values["rmsVoltage"] / VOLTAGE_DIVISOR
    if values.get("rmsCurrent") is not None:
        result["current"] = values["rmsCurrent"] / CURRENT_DIVISOR
    return result


def decode_metering(values: Dict[str, Any]) -> Dict[str, Any]:
    """currentSummDelivered to kWh."""
    if values.get("currentSummDelivered") is None:
        return {}
    return {"energy": values["currentSummDelivered"] / ENERGY_DIVISOR}


REPORT_DECODERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "genOnOff": decode_on_off,
    "genLevelCtrl": decode_level,
    "lightingColorCtrl": decode_color,
    "haElectricalMeasurement": decode_electrical,
    "seMetering": decode_metering,
}


def decode_report(cluster: str, values: Dict[str, Any]) -> Dict[str, Any]:
    """Semantic state carried by an attribute report, empty if none."""
    decoder = REPORT_DECODERS.get(cluster)
    if decoder is None or not values:
        return {}
    return decoder(values)
