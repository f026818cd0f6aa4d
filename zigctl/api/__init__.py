"""
HTTP API for zigctl.

Provides REST and WebSocket endpoints for:
- Coordinator lifecycle and pairing
- Device listing, state and commands
- The domain event feed
"""

from .server import create_app, run_server
from .routes import router

__all__ = [
    "create_app",
    "run_server",
    "router",
]
