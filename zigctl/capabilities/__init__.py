"""
Capability catalog and resolver.

Maps device models to what they can do and how each intent reaches the
device.
"""

from .catalog import CapabilityCatalog, DeviceDefinition, StaticCatalog
from .resolver import CapabilityDescriptor, CapabilityResolver, Intent, Resolution

__all__ = [
    "CapabilityCatalog",
    "CapabilityDescriptor",
    "CapabilityResolver",
    "DeviceDefinition",
    "Intent",
    "Resolution",
    "StaticCatalog",
]
