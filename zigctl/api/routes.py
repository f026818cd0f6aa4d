"""
API routes for zigctl.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, WebSocket
from pydantic import BaseModel, Field

from ..devices.models import Device, DeviceState
from ..gateway import Gateway
from .server import get_gateway
from .websocket import events_endpoint, parse_kinds

logger = logging.getLogger(__name__)

router = APIRouter()


# ============ Request/Response Models ============

class CoordinatorAction(BaseModel):
    """Start or stop the coordinator."""
    action: str = Field(..., description="start or stop")


class PairingRequest(BaseModel):
    """Open or close the pairing window."""
    enabled: bool = True
    duration: Optional[int] = Field(default=None, description="Seconds, clamped to 1-254")


class PairingStatus(BaseModel):
    enabled: bool
    duration: Optional[int] = None
    remaining: int = 0


class RenameRequest(BaseModel):
    friendly_name: Optional[str] = None


class BrightnessRequest(BaseModel):
    brightness: float = Field(..., description="Brightness in percent (0-100)")
    transition: Optional[float] = Field(default=None, description="Transition time in seconds")


class ColorTempRequest(BaseModel):
    value: float = Field(..., description="Mireds, or Kelvin when above 500")
    transition: Optional[float] = None


class ColorRequest(BaseModel):
    """A colour; hex wins over rgb, rgb over hue/saturation."""
    hex: Optional[str] = None
    rgb: Optional[List[int]] = Field(default=None, description="[r, g, b]")
    hue: Optional[float] = None
    saturation: Optional[float] = None
    transition: Optional[float] = None

    def color(self) -> Dict[str, Any]:
        return {"hex": self.hex, "rgb": self.rgb, "hue": self.hue, "saturation": self.saturation}


class LightRequest(BaseModel):
    brightness: Optional[float] = None
    color_temp: Optional[float] = None
    color: Optional[ColorRequest] = None
    transition: Optional[float] = None


class StateResponse(BaseModel):
    ieee_address: str
    state: Dict[str, Any] = Field(default_factory=dict)


class ReadingsResponse(BaseModel):
    ieee_address: str
    readings: Dict[str, Any] = Field(default_factory=dict)


# ============ Helpers ============

def require_gateway() -> Gateway:
    gateway = get_gateway()
    if gateway is None:
        raise HTTPException(status_code=503, detail="Gateway not ready")
    return gateway


def device_info(gateway: Gateway, device: Device) -> Dict[str, Any]:
    info = device.to_dict()
    info["capabilities"] = gateway.resolver.resolve(device).to_dict()
    return info


def state_response(ieee_address: str, state: Optional[DeviceState]) -> StateResponse:
    return StateResponse(ieee_address=ieee_address, state=state.to_dict() if state is not None else {})


# ============ Routes ============

@router.get("/health")
async def health():
    gateway = get_gateway()
    return {
        "status": "ok",
        "coordinator": gateway.state.value if gateway else None,
    }


@router.get("/coordinator")
async def coordinator_status():
    """Coordinator state, radio settings and pairing window."""
    return require_gateway().status()


@router.post("/coordinator")
async def coordinator_action(request: CoordinatorAction):
    """
    Start or stop the coordinator.

    A start failure answers 502 with the classified reason and a hint.
    """
    gateway = require_gateway()
    if request.action == "start":
        await gateway.start()
    elif request.action == "stop":
        await gateway.stop()
    else:
        raise HTTPException(status_code=422, detail=f'Unknown action "{request.action}" (start, stop)')
    return gateway.status()


@router.get("/pairing", response_model=PairingStatus)
async def pairing_status():
    return PairingStatus(**require_gateway().pairing_window.to_dict())


@router.post("/pairing", response_model=PairingStatus)
async def set_pairing(request: PairingRequest):
    """Open (or close) the network for new devices."""
    window = await require_gateway().set_pairing_window(request.enabled, request.duration)
    return PairingStatus(**window.to_dict())


@router.get("/devices")
async def list_devices():
    """List paired devices with their resolved capabilities."""
    gateway = require_gateway()
    return {"devices": [device_info(gateway, device) for device in gateway.list_devices()]}


@router.get("/devices/{ieee_address}")
async def get_device(ieee_address: str):
    gateway = require_gateway()
    device = gateway.get_device(ieee_address)
    info = device_info(gateway, device)
    info["state"] = gateway.get_state(device.ieee_address).to_dict()
    return info


@router.patch("/devices/{ieee_address}")
async def rename_device(ieee_address: str, request: RenameRequest):
    gateway = require_gateway()
    return device_info(gateway, gateway.rename_device(ieee_address, request.friendly_name))


@router.get("/devices/{ieee_address}/state", response_model=StateResponse)
async def get_state(ieee_address: str):
    """Last known state, without querying the device."""
    gateway = require_gateway()
    device = gateway.get_device(ieee_address)
    return state_response(device.ieee_address, gateway.get_state(device.ieee_address))


@router.post("/devices/{ieee_address}/on", response_model=StateResponse)
async def turn_on(ieee_address: str):
    return state_response(ieee_address, await require_gateway().turn_on(ieee_address))


@router.post("/devices/{ieee_address}/off", response_model=StateResponse)
async def turn_off(ieee_address: str):
    return state_response(ieee_address, await require_gateway().turn_off(ieee_address))


@router.post("/devices/{ieee_address}/toggle", response_model=StateResponse)
async def toggle(ieee_address: str):
    return state_response(ieee_address, await require_gateway().toggle(ieee_address))


@router.post("/devices/{ieee_address}/brightness", response_model=StateResponse)
async def set_brightness(ieee_address: str, request: BrightnessRequest):
    state = await require_gateway().set_brightness(ieee_address, request.brightness, request.transition)
    return state_response(ieee_address, state)


@router.post("/devices/{ieee_address}/color-temp", response_model=StateResponse)
async def set_color_temperature(ieee_address: str, request: ColorTempRequest):
    state = await require_gateway().set_color_temperature(ieee_address, request.value, request.transition)
    return state_response(ieee_address, state)


@router.post("/devices/{ieee_address}/color", response_model=StateResponse)
async def set_color(ieee_address: str, request: ColorRequest):
    """Set a colour. An empty colour is a no-op and returns an empty state."""
    state = await require_gateway().set_color(ieee_address, request.color(), request.transition)
    return state_response(ieee_address, state)


@router.post("/devices/{ieee_address}/light", response_model=StateResponse)
async def turn_on_light(ieee_address: str, request: LightRequest):
    """
    Turn a light on, then apply brightness, colour temperature and colour.

    Steps run in that order; the first failing step aborts the rest.
    """
    options = {
        "brightness": request.brightness,
        "color_temp": request.color_temp,
        "color": request.color.color() if request.color else None,
        "transition": request.transition,
    }
    state = await require_gateway().turn_on_light(ieee_address, options)
    return state_response(ieee_address, state)


@router.post("/devices/{ieee_address}/read-state", response_model=StateResponse)
async def read_state(ieee_address: str):
    """Query the device for its current state."""
    state = await require_gateway().read_state(ieee_address)
    return StateResponse(ieee_address=ieee_address, state=state)


@router.post("/devices/{ieee_address}/power", response_model=ReadingsResponse)
async def read_power(ieee_address: str):
    """Read power (W), voltage (V), current (A) and energy (kWh)."""
    readings = await require_gateway().read_power_consumption(ieee_address)
    return ReadingsResponse(ieee_address=ieee_address, readings=readings)


@router.websocket("/events")
async def events(websocket: WebSocket, kinds: Optional[str] = Query(default=None)):
    """
    WebSocket feed of domain events as JSON.

    ``?kinds=state.changed,device.joined`` limits the feed to those kinds.
    """
    gateway = get_gateway()
    try:
        selected = parse_kinds(kinds)
    except ValueError:
        await websocket.close(code=1008)
        return
    if gateway is None:
        await websocket.close(code=1011)
        return

    # Subscribe before accepting so nothing published after the handshake is missed
    await events_endpoint(websocket, gateway.subscribe(selected))
