"""
zigctl - control Zigbee lights and plugs

Drives a Zigbee coordinator radio through a Network Controller and
exposes semantic intents (turn on, set brightness, set colour, read
power) instead of clusters and attributes.

Example:
    >>> from zigctl import Gateway
    >>> from zigctl.network.memory import demo_network
    >>> gateway = Gateway(demo_network())
    >>> async with gateway:
    ...     await gateway.set_brightness("0x0017880104e45517", 75)
"""

__version__ = "0.1.0"

from .config import Config, get_config
from .errors import ZigctlError
from .gateway import Gateway

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "Gateway",
    "ZigctlError",
]
