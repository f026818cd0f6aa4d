"""
FastAPI server for zigctl.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import Config, get_config
from ..errors import (
    CapabilityUnknownError,
    DeviceNotFoundError,
    InvalidParameterError,
    NotRunningError,
    StartFailureError,
    TransportFailureError,
    TransportTimeoutError,
    UnsupportedActionError,
    ZigctlError,
)
from ..gateway import Gateway, build_controller

logger = logging.getLogger(__name__)

# Checked in order; subclasses before their bases
ERROR_STATUS = [
    (DeviceNotFoundError, 404),
    (UnsupportedActionError, 409),
    (CapabilityUnknownError, 409),
    (InvalidParameterError, 422),
    (NotRunningError, 503),
    (TransportTimeoutError, 504),
    (TransportFailureError, 502),
    (StartFailureError, 502),
]

# Global gateway instance (shared with routes.py)
_gateway: Optional[Gateway] = None


def get_gateway() -> Optional[Gateway]:
    """Get the global gateway instance."""
    return _gateway


def status_for(error: ZigctlError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


async def zigctl_error_handler(request: Request, exc: ZigctlError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    content = {"error": exc.code, "detail": exc.message}
    if isinstance(exc, StartFailureError):
        content["reason"] = exc.reason.value
        content["hint"] = exc.hint
    return JSONResponse(status_code=status, content=content)


def create_app(gateway: Gateway, manage_lifecycle: bool = False) -> FastAPI:
    """
    Create the FastAPI application around a gateway.

    With ``manage_lifecycle`` the coordinator is started when the app
    starts and stopped when it shuts down; otherwise the caller owns it.
    """
    global _gateway
    from .routes import router

    _gateway = gateway

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            try:
                await gateway.start()
            except ZigctlError as e:
                # Stay up so /api/coordinator can report and retry
                logger.error(f"Failed to start coordinator: {e}")
        yield
        if manage_lifecycle:
            await gateway.stop()
            gateway.bus.close()

    app = FastAPI(
        title="zigctl",
        description="Control Zigbee lights and plugs",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=gateway.config.server.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ZigctlError, zigctl_error_handler)
    app.include_router(router, prefix="/api")
    app.state.gateway = gateway
    return app


def run_server(
    config: Optional[Config] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    simulate: bool = False,
):
    """Run the server with uvicorn."""
    config = config or get_config()
    gateway = Gateway(build_controller(config, simulate), config)
    app = create_app(gateway, manage_lifecycle=True)
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.log_level.lower(),
    )
