"""
zigctl CLI - command line control of Zigbee lights and plugs.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import click
from rich.console import Console
from rich.table import Table

from .config import Config, set_config
from .coordinator import CoordinatorState
from .devices.models import DeviceState
from .errors import StartFailureError, ZigctlError
from .events.models import DomainEvent, event_to_dict
from .gateway import Gateway, build_controller

console = Console()


def setup_logging(verbose: bool = False, level: str = "INFO"):
    """Set up logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[logging.StreamHandler()]
    )


def run_async(coro):
    """Run an async function."""
    return asyncio.run(coro)


def _fail(error: ZigctlError) -> None:
    console.print(f"[red]✗ {error.message}[/red]")
    if isinstance(error, StartFailureError) and error.hint:
        console.print(f"   {error.hint}")
    sys.exit(1)


def run_session(ctx, action: Callable[[Gateway], Awaitable[Any]]) -> Any:
    """Start a coordinator session, run ``action`` against it and stop."""
    config: Config = ctx.obj["config"]

    async def _run():
        gateway = Gateway(build_controller(config, ctx.obj["simulate"]), config)
        await gateway.start()
        try:
            return await action(gateway)
        finally:
            if gateway.state != CoordinatorState.STOPPED:
                await gateway.stop()

    try:
        return run_async(_run())
    except ZigctlError as e:
        _fail(e)


def _print_state(state: Optional[Dict[str, Any]], title: str = "State") -> None:
    if not state:
        console.print(f"[dim]{title}: nothing known yet[/dim]")
        return

    table = Table(show_header=False, box=None)
    table.add_column("Attribute", style="dim")
    table.add_column("Value")
    for key, value in state.items():
        if key == "state":
            value = f"[green]{value}[/green]" if value == "ON" else f"[yellow]{value}[/yellow]"
        table.add_row(key, str(value))

    console.print(f"\n[bold]{title}[/bold]")
    console.print(table)
    console.print()


def _print_result(message: str, state: Optional[DeviceState]) -> None:
    console.print(f"[green]✓ {message}[/green]")
    if state is not None:
        _print_state(state.to_dict())


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--data-dir', type=click.Path(), help='Data directory')
@click.option('--simulate', is_flag=True, help='Run against a simulated network')
@click.pass_context
def main(ctx, verbose, data_dir, simulate):
    """zigctl - control Zigbee lights and plugs"""
    ctx.ensure_object(dict)
    config = Config.load(Path(data_dir) if data_dir else None)
    set_config(config)

    ctx.obj['verbose'] = verbose
    ctx.obj['simulate'] = simulate
    ctx.obj['config'] = config
    setup_logging(verbose, config.log_level)


@main.command()
@click.option('--port', '-p', 'serial_port', help='Serial port of the coordinator radio')
@click.option('--adapter', '-a', help='Adapter driver (ember, ezsp, zstack, deconz, zigate, zboss)')
@click.option('--baud-rate', type=int, help='Serial baud rate')
@click.option('--bridge-url', help='WebSocket URL of the radio bridge')
@click.pass_context
def init(ctx, serial_port, adapter, baud_rate, bridge_url):
    """Write the configuration file."""
    config: Config = ctx.obj["config"]

    if serial_port:
        config.serial.port = serial_port
    if adapter:
        config.serial.adapter = adapter.lower()
    if baud_rate:
        config.serial.baud_rate = baud_rate
    if bridge_url:
        config.bridge.url = bridge_url

    try:
        config.validate()
    except ZigctlError as e:
        _fail(e)

    config.save()
    console.print("\n[bold green]✓ Configuration saved[/bold green]\n")

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Config", str(config.config_path))
    table.add_row("Serial port", config.serial.port)
    table.add_row("Adapter", config.serial.adapter)
    table.add_row("Baud rate", str(config.serial.baud_rate))
    table.add_row("Bridge", config.bridge.url or "[dim]not set[/dim]")
    table.add_row("Database", str(config.resolved_database_path))
    console.print(table)
    console.print()


@main.command()
@click.pass_context
def devices(ctx):
    """List paired devices."""

    async def _list(gateway: Gateway):
        return [(device, gateway.get_capabilities(device.ieee_address)) for device in gateway.list_devices()]

    rows = run_session(ctx, _list)
    if not rows:
        console.print("[dim]No devices paired. Use 'zigctl permit-join' to pair one.[/dim]")
        return

    table = Table(title="Devices")
    table.add_column("IEEE address", style="cyan")
    table.add_column("Name")
    table.add_column("Model")
    table.add_column("Kind")
    table.add_column("Interview")
    table.add_column("Supports", style="dim")

    for device, resolution in rows:
        table.add_row(
            device.ieee_address,
            device.display_name,
            device.model_id or "?",
            device.kind.value,
            "[green]done[/green]" if device.interview_completed else "[yellow]pending[/yellow]",
            ", ".join(sorted(intent.value for intent in resolution.supported)),
        )
    console.print(table)


@main.command()
@click.argument('address')
@click.pass_context
def show(ctx, address):
    """Show one device, its capabilities and last known state."""

    async def _show(gateway: Gateway):
        device = gateway.get_device(address)
        return device, gateway.get_capabilities(address), gateway.get_state(address)

    device, resolution, state = run_session(ctx, _show)

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("IEEE address", f"[cyan]{device.ieee_address}[/cyan]")
    table.add_row("Network address", f"0x{device.network_address:04x}")
    table.add_row("Model", f"{device.model_id or '?'} ({device.manufacturer_name or '?'})")
    if resolution.definition is not None:
        table.add_row("Definition", f"{resolution.definition.vendor} {resolution.definition.model}")
    table.add_row("Kind", device.kind.value)
    table.add_row("Power source", device.power_source or "?")
    table.add_row("Endpoints", ", ".join(str(ep) for ep in device.endpoint_ids))
    table.add_row("Supports", ", ".join(sorted(intent.value for intent in resolution.supported)) or "-")

    console.print(f"\n[bold]{device.display_name}[/bold]")
    console.print(table)
    _print_state(state.to_dict())


@main.command('on')
@click.argument('address')
@click.pass_context
def turn_on(ctx, address):
    """Turn a device on."""
    state = run_session(ctx, lambda gateway: gateway.turn_on(address))
    _print_result(f"{address} turned on", state)


@main.command('off')
@click.argument('address')
@click.pass_context
def turn_off(ctx, address):
    """Turn a device off."""
    state = run_session(ctx, lambda gateway: gateway.turn_off(address))
    _print_result(f"{address} turned off", state)


@main.command()
@click.argument('address')
@click.pass_context
def toggle(ctx, address):
    """Toggle a device."""
    state = run_session(ctx, lambda gateway: gateway.toggle(address))
    _print_result(f"{address} toggled", state)


@main.command()
@click.argument('address')
@click.argument('percent', type=float)
@click.option('--transition', '-t', type=float, help='Transition time in seconds')
@click.pass_context
def brightness(ctx, address, percent, transition):
    """Set brightness (0-100 %)."""
    state = run_session(ctx, lambda gateway: gateway.set_brightness(address, percent, transition))
    _print_result(f"Brightness of {address} set to {percent:g}%", state)


@main.command('color-temp')
@click.argument('address')
@click.argument('value', type=float)
@click.option('--transition', '-t', type=float, help='Transition time in seconds')
@click.pass_context
def color_temp(ctx, address, value, transition):
    """Set colour temperature (mireds, or Kelvin above 500)."""
    state = run_session(ctx, lambda gateway: gateway.set_color_temperature(address, value, transition))
    _print_result(f"Colour temperature of {address} set", state)


def _color_options(hex_color, rgb, hue, saturation) -> Dict[str, Any]:
    color: Dict[str, Any] = {}
    if hex_color:
        color["hex"] = hex_color
    if rgb:
        color["rgb"] = rgb
    if hue is not None and saturation is not None:
        color["hue"] = hue
        color["saturation"] = saturation
    return color


@main.command()
@click.argument('address')
@click.option('--hex', 'hex_color', help='Hex colour, e.g. "#FF5500"')
@click.option('--rgb', help='RGB as "r,g,b"')
@click.option('--hue', type=float, help='Hue in degrees (with --saturation)')
@click.option('--saturation', type=float, help='Saturation in percent (with --hue)')
@click.option('--transition', '-t', type=float, help='Transition time in seconds')
@click.pass_context
def color(ctx, address, hex_color, rgb, hue, saturation, transition):
    """Set colour from hex, RGB or hue/saturation."""
    spec = _color_options(hex_color, rgb, hue, saturation)
    if not spec:
        console.print("[yellow]No colour given. Use --hex, --rgb or --hue with --saturation.[/yellow]")
        return

    state = run_session(ctx, lambda gateway: gateway.set_color(address, spec, transition))
    _print_result(f"Colour of {address} set", state)


@main.command()
@click.argument('address')
@click.option('--brightness', '-b', type=float, help='Brightness (0-100 %)')
@click.option('--color-temp', '-c', type=float, help='Colour temperature (mireds or Kelvin)')
@click.option('--hex', 'hex_color', help='Hex colour')
@click.option('--transition', '-t', type=float, help='Transition time in seconds')
@click.pass_context
def light(ctx, address, brightness, color_temp, hex_color, transition):
    """Turn a light on with brightness, colour temperature and colour."""
    options = {
        "brightness": brightness,
        "color_temp": color_temp,
        "color": {"hex": hex_color} if hex_color else None,
        "transition": transition,
    }
    state = run_session(ctx, lambda gateway: gateway.turn_on_light(address, options))
    _print_result(f"{address} turned on", state)


@main.command('read-state')
@click.argument('address')
@click.pass_context
def read_state(ctx, address):
    """Read the current state from the device."""
    state = run_session(ctx, lambda gateway: gateway.read_state(address))
    _print_state(state, f"State of {address}")


@main.command()
@click.argument('address')
@click.pass_context
def power(ctx, address):
    """Read power consumption (W, V, A, kWh)."""
    readings = run_session(ctx, lambda gateway: gateway.read_power_consumption(address))
    units = {"power": "W", "voltage": "V", "current": "A", "energy": "kWh"}
    _print_state(
        {key: f"{value:g} {units.get(key, '')}".strip() for key, value in readings.items()},
        f"Power consumption of {address}",
    )


@main.command('permit-join')
@click.argument('seconds', type=int, default=254)
@click.option('--disable', is_flag=True, help='Close the pairing window')
@click.pass_context
def permit_join(ctx, seconds, disable):
    """Open the network for new devices (1-254 seconds)."""

    async def _pair(gateway: Gateway):
        if disable:
            return await gateway.disable_pairing(), []

        window = await gateway.set_pairing_window(True, seconds)
        console.print(f"[bold blue]Pairing open for {window.duration}s. Put your device in pairing mode...[/bold blue]")
        joined = []
        with gateway.subscribe() as events:
            while gateway.pairing_window.is_open:
                try:
                    event = await events.get(timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                except StopAsyncIteration:
                    break
                if event.kind.value == "device.interview" and event.status.value == "successful":
                    console.print(f"[green]✓ Paired {event.device.ieee_address} ({event.device.kind.value})[/green]")
                    joined.append(event.device)
        return window, joined

    try:
        window, joined = run_session(ctx, _pair)
    except KeyboardInterrupt:
        return

    if disable:
        console.print("[green]✓ Pairing disabled[/green]")
    else:
        console.print(f"Pairing window closed, {len(joined)} device(s) paired")


def _describe_event(event: DomainEvent) -> str:
    payload = event_to_dict(event)["payload"]
    device = payload.get("device") or {}
    address = device.get("ieee_address") or payload.get("ieee_address") or ""
    details = {k: v for k, v in payload.items() if k not in ("device", "ieee_address")}
    return f"[cyan]{event.kind.value:<24}[/cyan] {address} {details if details else ''}"


@main.command()
@click.option('--duration', '-d', type=float, help='Stop after this many seconds')
@click.pass_context
def monitor(ctx, duration):
    """Start the coordinator and stream domain events."""

    async def _monitor(gateway: Gateway):
        console.print("[bold blue]Listening for events (Ctrl+C to stop)...[/bold blue]")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration if duration else None
        with gateway.subscribe() as events:
            while deadline is None or loop.time() < deadline:
                try:
                    event = await events.get(timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                except StopAsyncIteration:
                    break
                console.print(_describe_event(event))

    try:
        run_session(ctx, _monitor)
    except KeyboardInterrupt:
        console.print("\nStopped")


@main.command()
@click.argument('source')
@click.argument('target')
@click.option('--cluster', '-c', 'clusters', multiple=True, default=['genOnOff'], help='Cluster to bind')
@click.option('--unbind', 'remove', is_flag=True, help='Remove the binding instead')
@click.pass_context
def bind(ctx, source, target, clusters, remove):
    """Bind a source device (e.g. a remote) to a target device."""
    if remove:
        run_session(ctx, lambda gateway: gateway.unbind(source, target, clusters))
        console.print(f"[green]✓ Unbound {source} from {target}[/green]")
    else:
        run_session(ctx, lambda gateway: gateway.bind(source, target, clusters))
        console.print(f"[green]✓ Bound {source} to {target} ({', '.join(clusters)})[/green]")


@main.command()
@click.option('--host', '-h', help='Host to bind to')
@click.option('--port', '-p', type=int, help='Port to bind to')
@click.pass_context
def serve(ctx, host: Optional[str], port: Optional[int]):
    """Start the HTTP API server."""
    config: Config = ctx.obj["config"]
    host = host or config.server.host
    port = port or config.server.port

    console.print("\n[bold blue]Starting zigctl API server[/bold blue]")
    console.print(f"   Listening on: http://{host}:{port}")
    if ctx.obj["simulate"]:
        console.print("   [yellow]Simulated network[/yellow]")
    console.print("   Press Ctrl+C to stop\n")

    from .api.server import run_server
    run_server(config, host=host, port=port, simulate=ctx.obj["simulate"])


if __name__ == "__main__":
    main()
