"""
Network Controllers.

- base: the controller interface and raw network events
- memory: an in-memory network for tests and --simulate
- bridge: a WebSocket/JSON-RPC client for a radio-owning sidecar
"""

from .base import NetworkController, NetworkEvent, NetworkEventType, StartResult
from .memory import InMemoryNetwork

__all__ = [
    "InMemoryNetwork",
    "NetworkController",
    "NetworkEvent",
    "NetworkEventType",
    "StartResult",
]
