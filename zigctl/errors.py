"""
Error taxonomy for zigctl.

Every failure surfaced by the device layer is a ZigctlError carrying a
machine-readable code. Translation preconditions (device lookup, interview
state, capability gating, lifecycle) are raised locally before any
transport call; transport errors come from the Network Controller and are
propagated unchanged.
"""

from enum import Enum
from typing import Any, Optional


class ZigctlError(Exception):
    """Base exception for all zigctl errors."""

    def __init__(self, message: str, code: str = "ZIGCTL_ERROR", retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable


class DeviceNotFoundError(ZigctlError):
    """Raised when an identity is absent from the device directory."""

    def __init__(self, ieee_address: str):
        super().__init__(f"Device not found: {ieee_address}", code="DEVICE_NOT_FOUND")
        self.ieee_address = ieee_address


class CapabilityUnknownError(ZigctlError):
    """Raised when a device has not completed its interview yet."""

    def __init__(self, ieee_address: str, intent: Optional[str] = None):
        action = f' for "{intent}"' if intent else ""
        super().__init__(
            f"Capabilities of device {ieee_address} are unknown{action}: interview not completed",
            code="CAPABILITY_UNKNOWN",
        )
        self.ieee_address = ieee_address
        self.intent = intent


class UnsupportedActionError(ZigctlError):
    """Raised when a device does not support the requested intent."""

    def __init__(self, intent: str, ieee_address: str):
        super().__init__(
            f'Action "{intent}" is not supported on device "{ieee_address}".',
            code="UNSUPPORTED_ACTION",
        )
        self.intent = intent
        self.ieee_address = ieee_address


class NotRunningError(ZigctlError):
    """Raised when an operation needs a running coordinator."""

    def __init__(self, state: Any = None, operation: Optional[str] = None):
        current = getattr(state, "value", state)
        message = f"Coordinator is not running (state: {current}). Start it first."
        if operation:
            message = f"Cannot {operation}: {message}"
        super().__init__(message, code="NOT_RUNNING")
        self.state = state
        self.operation = operation


class InvalidParameterError(ZigctlError, ValueError):
    """Raised when an intent parameter cannot be interpreted."""

    def __init__(self, message: str, param: Optional[str] = None):
        super().__init__(message, code="INVALID_PARAMETER")
        self.param = param


class TransportError(ZigctlError):
    """Base class for failures reported by the Network Controller."""


class TransportTimeoutError(TransportError):
    """A round-trip to the Network Controller exceeded its bound."""

    def __init__(self, operation: str, timeout: float, ieee_address: Optional[str] = None):
        target = f" on {ieee_address}" if ieee_address else ""
        super().__init__(
            f"{operation}{target} timed out after {timeout:g}s",
            code="TRANSPORT_TIMEOUT",
            retryable=True,
        )
        self.operation = operation
        self.timeout = timeout
        self.ieee_address = ieee_address


class TransportFailureError(TransportError):
    """The Network Controller reported a non-timeout failure."""

    def __init__(
        self,
        message: str,
        ieee_address: Optional[str] = None,
        cause: Optional[BaseException] = None,
        code: str = "TRANSPORT_FAILURE",
    ):
        super().__init__(message, code=code)
        self.ieee_address = ieee_address
        self.cause = cause


class AttributeUnsupportedError(TransportFailureError):
    """
    The device answered that a cluster or attribute is not available.

    This is the capability-absent failure that best-effort reads skip.
    """

    def __init__(self, ieee_address: str, cluster: str, attributes: Any = None):
        names = f" {list(attributes)}" if attributes else ""
        super().__init__(
            f"Cluster {cluster}{names} is not supported by {ieee_address}",
            ieee_address=ieee_address,
            code="UNSUPPORTED_ATTRIBUTE",
        )
        self.cluster = cluster
        self.attributes = list(attributes or [])


class StartFailureReason(str, Enum):
    """Classified causes of a failed coordinator start."""
    PORT_UNAVAILABLE = "port_unavailable"
    PERMISSION_DENIED = "permission_denied"
    PORT_BUSY = "port_busy"
    RADIO_UNRESPONSIVE = "radio_unresponsive"
    UNKNOWN = "unknown"


class StartFailureError(ZigctlError):
    """Raised when the coordinator cannot open its transport."""

    def __init__(
        self,
        reason: StartFailureReason,
        message: str,
        hint: str = "",
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, code=f"START_FAILURE_{reason.name}")
        self.reason = reason
        self.hint = hint
        self.cause = cause

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\n   {self.hint}"
        return self.message


# Substrings reported by serial drivers and radio firmware, checked in order.
_START_FAILURE_PATTERNS = [
    (StartFailureReason.PORT_UNAVAILABLE, ("ENOENT", "no such file", "cannot find", "could not open port")),
    (StartFailureReason.PERMISSION_DENIED, ("EACCES", "permission denied")),
    (StartFailureReason.PORT_BUSY, ("EBUSY", "resource busy", "port is locked", "cannot lock port")),
    (StartFailureReason.RADIO_UNRESPONSIVE, (
        "HOST_FATAL_ERROR",
        "failure to connect",
        "RSTACK",
        "bootloader",
        "could not connect",
        "reset loop",
        "timed out",
    )),
]


def classify_start_failure(
    error: BaseException,
    port: str,
    adapter: Optional[str] = None,
) -> StartFailureError:
    """
    Map a raw transport start failure to a StartFailureError.

    Args:
        error: The exception raised by the Network Controller
        port: Serial port the coordinator tried to open
        adapter: Adapter driver name, used to tailor the radio hint

    Returns:
        A StartFailureError with its reason and remediation hint
    """
    if isinstance(error, StartFailureError):
        return error

    text = format_error(error)
    lowered = text.lower()
    reason = StartFailureReason.UNKNOWN
    for candidate, needles in _START_FAILURE_PATTERNS:
        if any(needle.lower() in lowered for needle in needles):
            reason = candidate
            break

    if reason == StartFailureReason.PORT_UNAVAILABLE:
        return StartFailureError(
            reason,
            f'Serial port "{port}" not found.',
            hint="Check ZIGBEE_SERIAL_PORT and make sure the dongle is plugged in.",
            cause=error,
        )
    if reason == StartFailureReason.PERMISSION_DENIED:
        return StartFailureError(
            reason,
            f'Permission denied on "{port}".',
            hint=f"On Linux run: sudo chmod 666 {port} (or add your user to the dialout group).",
            cause=error,
        )
    if reason == StartFailureReason.PORT_BUSY:
        return StartFailureError(
            reason,
            f'Port "{port}" is busy.',
            hint="Check another process is not using this port and close it.",
            cause=error,
        )
    if reason == StartFailureReason.RADIO_UNRESPONSIVE:
        hint = (
            "Stop any other program using the port (Home Assistant, Zigbee2MQTT, ZHA), "
            "power-cycle the dongle and verify the serial port."
        )
        if adapter == "ezsp":
            hint += ' The legacy "ezsp" driver is deprecated: set ZIGBEE_ADAPTER=ember.'
        return StartFailureError(
            reason,
            f'Could not connect to the radio on "{port}": it never answered the reset request.',
            hint=hint,
            cause=error,
        )
    return StartFailureError(reason, f"Failed to start coordinator: {text}", cause=error)


def format_error(error: BaseException) -> str:
    """Format an exception into a readable message."""
    text = str(error)
    return text if text else type(error).__name__
