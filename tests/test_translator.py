"""
Tests for intent translation against the in-memory network.
"""

import pytest

from zigctl.errors import (
    CapabilityUnknownError,
    DeviceNotFoundError,
    InvalidParameterError,
    NotRunningError,
    TransportFailureError,
    TransportTimeoutError,
    UnsupportedActionError,
)
from zigctl.network.memory import simulated_light
from zigctl.translator.conversions import parse_hex, rgb_to_xy, xy_to_native

from conftest import LIGHT, PLUG, SWITCH_PLUG, onoff_only_light


def commands(network, ieee_address):
    return [(call.cluster, call.name) for call in network.calls_for("issue_command", ieee_address)]


class TestOnOff:
    """Tests for on/off/toggle."""

    @pytest.mark.asyncio
    async def test_turn_on_light(self, gateway, network):
        """Turning on sends one On/Off command on the light's endpoint."""
        await gateway.start()

        state = await gateway.turn_on(LIGHT)

        calls = network.calls_for("issue_command", LIGHT)
        assert len(calls) == 1
        assert calls[0].cluster == "genOnOff"
        assert calls[0].name == "on"
        assert calls[0].endpoint_id == 11
        assert state.to_dict() == {"state": "ON"}
        assert network.attribute(LIGHT, "genOnOff", "onOff") == 1

    @pytest.mark.asyncio
    async def test_turn_off_plug(self, gateway, network):
        """Plugs accept the same intents as lights."""
        await gateway.start()

        state = await gateway.turn_off(PLUG)

        assert commands(network, PLUG) == [("genOnOff", "off")]
        assert state.get("state") == "OFF"

    @pytest.mark.asyncio
    async def test_toggle_flips_known_state(self, gateway, network):
        """Toggle folds the flipped state when the previous one is known."""
        await gateway.start()
        await gateway.turn_on(LIGHT)

        state = await gateway.toggle(LIGHT)

        assert state.get("state") == "OFF"
        assert commands(network, LIGHT)[-1] == ("genOnOff", "toggle")

    @pytest.mark.asyncio
    async def test_toggle_unknown_state(self, gateway):
        """Toggle with nothing cached leaves the state unknown."""
        await gateway.start()

        state = await gateway.toggle(LIGHT)

        assert "state" not in state

    @pytest.mark.asyncio
    async def test_set_power_state(self, gateway, network):
        """ON/OFF/TOGGLE strings map onto the on/off intents."""
        await gateway.start()

        await gateway.set_power_state(PLUG, "on")
        await gateway.set_power_state(PLUG, "OFF")

        assert commands(network, PLUG) == [("genOnOff", "on"), ("genOnOff", "off")]


class TestPreconditions:
    """Preconditions are checked before anything reaches the network."""

    @pytest.mark.asyncio
    async def test_not_running(self, gateway, network):
        """Commands need a running coordinator."""
        with pytest.raises(NotRunningError):
            await gateway.turn_on(LIGHT)

        assert network.calls_for("issue_command") == []

    @pytest.mark.asyncio
    async def test_unknown_device(self, gateway, network):
        """Unknown addresses are reported as not found."""
        await gateway.start()

        with pytest.raises(DeviceNotFoundError):
            await gateway.turn_on("0xdeadbeefdeadbeef")

        assert network.calls_for("issue_command") == []

    @pytest.mark.asyncio
    async def test_interview_incomplete(self, gateway, network):
        """Capabilities are unknown until the interview completes."""
        pending = "0x000b57fffe123456"
        network.add_device(simulated_light(pending, interview_completed=False))
        await gateway.start()

        with pytest.raises(CapabilityUnknownError):
            await gateway.set_brightness(pending, 50)

        assert network.calls_for("issue_command", pending) == []

    @pytest.mark.asyncio
    async def test_unsupported_action(self, gateway, network):
        """Colour on a plug is rejected without a transport call."""
        await gateway.start()

        with pytest.raises(UnsupportedActionError) as exc_info:
            await gateway.set_color(PLUG, {"hex": "#FF0000"})

        assert "set_color" in exc_info.value.message
        assert network.calls_for("issue_command") == []

    @pytest.mark.asyncio
    async def test_address_is_case_insensitive(self, gateway, network):
        """Addresses are normalized before lookup."""
        await gateway.start()

        await gateway.turn_on(LIGHT.upper().replace("0X", "0x"))

        assert len(network.calls_for("issue_command", LIGHT)) == 1


class TestLights:
    """Tests for brightness, colour temperature and colour."""

    @pytest.mark.asyncio
    async def test_brightness(self, gateway, network):
        """75 % becomes level 191 with the transition in tenths."""
        await gateway.start()

        state = await gateway.set_brightness(LIGHT, 75, transition=1.5)

        calls = network.calls_for("issue_command", LIGHT)
        assert calls[0].cluster == "genLevelCtrl"
        assert calls[0].name == "moveToLevel"
        assert calls[0].payload == {"level": 191, "transtime": 15}
        assert state.get("brightness") == 191

    @pytest.mark.asyncio
    async def test_color_temperature_kelvin(self, gateway, network):
        """Kelvin input is converted to mireds."""
        await gateway.start()

        state = await gateway.set_color_temperature(LIGHT, 4000)

        calls = network.calls_for("issue_command", LIGHT)
        assert calls[0].name == "moveToColorTemp"
        assert calls[0].payload["colortemp"] == 250
        assert state.get("color_temp") == 250

    @pytest.mark.asyncio
    async def test_color_temperature_outside_range(self, gateway, network):
        """Out-of-range values are sent as given."""
        await gateway.start()

        await gateway.set_color_temperature(LIGHT, 100)

        assert network.calls_for("issue_command", LIGHT)[0].payload["colortemp"] == 100

    @pytest.mark.asyncio
    async def test_hex_wins(self, gateway, network):
        """With hex, rgb and hue all given, exactly one command carries the hex colour."""
        await gateway.start()

        await gateway.set_color(LIGHT, {
            "hex": "#FF5500",
            "rgb": {"r": 0, "g": 0, "b": 255},
            "hue": 120,
            "saturation": 100,
        })

        calls = network.calls_for("issue_command", LIGHT)
        assert len(calls) == 1
        assert calls[0].name == "moveToColor"
        colorx, colory = xy_to_native(*rgb_to_xy(*parse_hex("#FF5500")))
        assert calls[0].payload == {"colorx": colorx, "colory": colory, "transtime": 0}

    @pytest.mark.asyncio
    async def test_rgb_over_hue(self, gateway, network):
        """RGB is used when no hex is given."""
        await gateway.start()

        state = await gateway.set_color(LIGHT, {"rgb": "0,0,255", "hue": 120, "saturation": 100})

        calls = network.calls_for("issue_command", LIGHT)
        assert len(calls) == 1
        assert calls[0].name == "moveToColor"
        assert state.get("color") == dict(zip(("x", "y"), rgb_to_xy(0, 0, 255)))

    @pytest.mark.asyncio
    async def test_hue_saturation(self, gateway, network):
        """Hue and saturation are scaled to 0-254."""
        await gateway.start()

        await gateway.set_color(LIGHT, {"hue": 180, "saturation": 50})

        calls = network.calls_for("issue_command", LIGHT)
        assert calls[0].name == "moveToHueAndSaturation"
        assert calls[0].payload == {"hue": 127, "saturation": 127, "transtime": 0}

    @pytest.mark.asyncio
    async def test_empty_color(self, gateway, network):
        """No representation means nothing is sent."""
        await gateway.start()

        assert await gateway.set_color(LIGHT, {}) is None
        assert await gateway.set_color(LIGHT, {"hue": 120}) is None
        assert network.calls_for("issue_command") == []

    @pytest.mark.asyncio
    async def test_invalid_hex(self, gateway, network):
        """A malformed hex colour is an invalid parameter."""
        await gateway.start()

        with pytest.raises(InvalidParameterError):
            await gateway.set_color(LIGHT, {"hex": "orange"})

        assert network.calls_for("issue_command") == []


class TestTurnOnLight:
    """Tests for the compound turn-on-light operation."""

    @pytest.mark.asyncio
    async def test_steps_in_order(self, gateway, network):
        """State goes first, then brightness, colour temperature and colour."""
        await gateway.start()

        state = await gateway.turn_on_light(LIGHT, {
            "brightness": 50,
            "color_temp": 4000,
            "color": {"hex": "#00FF00"},
            "transition": 2,
        })

        assert [name for _, name in commands(network, LIGHT)] == [
            "on", "moveToLevel", "moveToColorTemp", "moveToColor",
        ]
        assert state.get("state") == "ON"
        assert state.get("brightness") == 127
        assert state.get("color_temp") == 250

    @pytest.mark.asyncio
    async def test_plug_keeps_earlier_steps(self, gateway, network):
        """A switch-only plug turns on, then rejects brightness."""
        await gateway.start()

        with pytest.raises(UnsupportedActionError):
            await gateway.turn_on_light(SWITCH_PLUG, {"brightness": 80})

        assert commands(network, SWITCH_PLUG) == [("genOnOff", "on")]
        assert gateway.get_state(SWITCH_PLUG).to_dict() == {"state": "ON"}

    @pytest.mark.asyncio
    async def test_no_options(self, gateway, network):
        """Without options it is just turn on."""
        await gateway.start()

        await gateway.turn_on_light(LIGHT)

        assert commands(network, LIGHT) == [("genOnOff", "on")]


class TestTransportErrors:
    """Tests for transport failures."""

    @pytest.mark.asyncio
    async def test_timeout(self, gateway, network):
        """A stalled controller times out and the state is left alone."""
        await gateway.start()
        network.stall_requests = True

        with pytest.raises(TransportTimeoutError) as exc_info:
            await gateway.turn_on(LIGHT)

        assert exc_info.value.retryable
        assert gateway.get_state(LIGHT).is_empty

    @pytest.mark.asyncio
    async def test_delivery_failure(self, gateway, network):
        """Controller failures propagate as transport failures."""
        await gateway.start()
        network.fail_commands(PLUG, "MAC no ack")

        with pytest.raises(TransportFailureError) as exc_info:
            await gateway.turn_on(PLUG)

        assert "MAC no ack" in exc_info.value.message
        assert gateway.get_state(PLUG).is_empty


class TestReads:
    """Tests for best-effort reads."""

    @pytest.mark.asyncio
    async def test_read_state(self, gateway, network):
        """On/off, level and colour temperature are read."""
        await gateway.start()

        state = await gateway.read_state(LIGHT)

        assert state == {"state": "OFF", "brightness": 254, "color_temp": 370}
        assert gateway.get_state(LIGHT).to_dict() == state

    @pytest.mark.asyncio
    async def test_read_state_partial_device(self, gateway, network):
        """Clusters the device lacks are left out instead of failing."""
        partial = "0x0017880100aabbcc"
        network.add_device(onoff_only_light(partial))
        await gateway.start()

        state = await gateway.read_state(partial)

        assert state == {"state": "ON"}
        assert [call.cluster for call in network.calls_for("read_attributes", partial)] == ["genOnOff"]

    @pytest.mark.asyncio
    async def test_read_power(self, gateway, network):
        """Readings are normalized to W, V, A and kWh."""
        await gateway.start()

        readings = await gateway.read_power_consumption(PLUG)

        assert readings == {"power": 123.4, "voltage": 230.1, "current": 0.536, "energy": 45.67}

    @pytest.mark.asyncio
    async def test_read_power_unsupported(self, gateway, network):
        """Plugs without metering do not support power reads."""
        await gateway.start()

        with pytest.raises(UnsupportedActionError):
            await gateway.read_power_consumption(SWITCH_PLUG)

        assert network.calls_for("read_attributes") == []

    @pytest.mark.asyncio
    async def test_read_timeout_propagates(self, gateway, network):
        """Only missing attributes are skipped, timeouts are not."""
        await gateway.start()
        network.stall_requests = True

        with pytest.raises(TransportTimeoutError):
            await gateway.read_state(LIGHT)


class TestManagement:
    """Tests for binding and reporting configuration."""

    @pytest.mark.asyncio
    async def test_bind(self, gateway, network):
        """A binding is made per cluster between the serving endpoints."""
        await gateway.start()

        await gateway.bind(PLUG, LIGHT, ["genOnOff"])

        calls = network.calls_for("bind", PLUG)
        assert len(calls) == 1
        assert calls[0].endpoint_id == 1
        assert calls[0].payload == {"target": LIGHT, "target_endpoint": 11}

    @pytest.mark.asyncio
    async def test_unknown_cluster(self, gateway, network):
        """Unknown cluster names are invalid parameters."""
        await gateway.start()

        with pytest.raises(InvalidParameterError):
            await gateway.unbind(PLUG, LIGHT, ["genFoo"])

    @pytest.mark.asyncio
    async def test_configure_reporting(self, gateway, network):
        """Reporting is configured on the endpoint serving the cluster."""
        await gateway.start()
        attributes = [{
            "attribute": "activePower",
            "minimum_report_interval": 5,
            "maximum_report_interval": 300,
            "reportable_change": 10,
        }]

        await gateway.configure_reporting(PLUG, "haElectricalMeasurement", attributes)

        calls = network.calls_for("configure_reporting", PLUG)
        assert calls[0].cluster == "haElectricalMeasurement"
        assert calls[0].payload == {"attributes": attributes}
