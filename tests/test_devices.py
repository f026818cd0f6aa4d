"""
Tests for the device directory and state cache.
"""

import pytest

from zigctl.devices.directory import DeviceDirectory, normalize_address
from zigctl.devices.models import (
    ColorSpec,
    Device,
    DeviceKind,
    DeviceRecord,
    DeviceState,
    Endpoint,
    LightOptions,
    NodeType,
)
from zigctl.devices.state import StateCache
from zigctl.errors import DeviceNotFoundError, InvalidParameterError
from zigctl.events.bus import EventBus
from zigctl.events.models import EventKind


def make_device(ieee_address="0x00158d0001234567", **kwargs) -> Device:
    return Device(ieee_address=ieee_address, network_address=0x1234, **kwargs)


class TestModels:
    """Tests for device data structures."""

    def test_record_roundtrip(self):
        """Records survive the wire format, unknown node types included."""
        record = DeviceRecord(
            ieee_address="0x00158d0001234567",
            network_address=0x3C4D,
            node_type=NodeType.ROUTER,
            model_id="TS011F",
            interview_completed=True,
            endpoints=[Endpoint(1, [0, 6], [25])],
        )
        restored = DeviceRecord.from_dict(record.to_dict())
        assert restored == record

        odd = DeviceRecord.from_dict({"ieee_address": "0x01", "node_type": "Repeater"})
        assert odd.node_type == NodeType.UNKNOWN

    def test_find_endpoint(self):
        """Input clusters are preferred over output clusters."""
        device = make_device(endpoints=[Endpoint(1, [0], [6]), Endpoint(2, [6], [])])
        assert device.find_endpoint(6).endpoint_id == 2
        assert device.find_endpoint(0x0300) is None

    def test_display_name(self):
        """Friendly name, then model, then address."""
        device = make_device(model_id="LCT015")
        assert device.display_name == "LCT015"
        device.friendly_name = "Desk lamp"
        assert device.display_name == "Desk lamp"

    def test_state_merge_keeps_attributes(self):
        """Merging overlays and never erases."""
        state = DeviceState({"state": "ON", "brightness": 100})
        merged = state.merged({"brightness": 200})
        assert merged.to_dict() == {"state": "ON", "brightness": 200}
        assert state.get("brightness") == 100

    def test_color_spec_forms(self):
        """RGB may be a dict, a sequence or a string."""
        assert ColorSpec.from_dict({"rgb": {"r": 1, "g": 2, "b": 3}}).rgb == (1, 2, 3)
        assert ColorSpec.from_dict({"rgb": [1, 2, 3]}).rgb == (1, 2, 3)
        assert ColorSpec.from_dict({"rgb": "1,2,3"}).rgb == (1, 2, 3)
        assert ColorSpec.from_dict(None).is_empty

    @pytest.mark.parametrize("rgb", [[1, 2], "1,2", {"r": 1}, "a,b,c", [1, 2, 3, 4], 7])
    def test_color_spec_bad_rgb(self, rgb):
        """Malformed RGB is an invalid parameter."""
        with pytest.raises(InvalidParameterError) as exc_info:
            ColorSpec.from_dict({"rgb": rgb})

        assert exc_info.value.param == "rgb"

    def test_light_options(self):
        """Nested colour dicts become a ColorSpec."""
        options = LightOptions.from_dict({"brightness": 80, "color": {"hex": "#fff"}})
        assert options.brightness == 80
        assert options.color.hex == "#fff"


class TestDirectory:
    """Tests for the device directory."""

    def test_normalize_address(self):
        """Lowercase with a 0x prefix."""
        assert normalize_address("00158D0001234567") == "0x00158d0001234567"
        assert normalize_address(" 0x00158D0001234567 ") == "0x00158d0001234567"

    def test_upsert_and_get(self):
        """Devices are found by any spelling of their address."""
        directory = DeviceDirectory()
        directory.upsert(make_device("0x00158D0001234567"))

        assert directory.get("00158d0001234567").ieee_address == "0x00158d0001234567"
        assert "0x00158d0001234567" in directory
        assert len(directory) == 1

    def test_get_unknown(self):
        """Unknown devices raise DeviceNotFoundError."""
        with pytest.raises(DeviceNotFoundError):
            DeviceDirectory().get("0x01")

    def test_upsert_keeps_friendly_name(self):
        """Replacing metadata keeps the user's name."""
        directory = DeviceDirectory()
        first = directory.upsert(make_device())
        first.friendly_name = "Kettle"

        directory.upsert(make_device(kind=DeviceKind.PLUG))

        assert directory.get("0x00158d0001234567").friendly_name == "Kettle"
        assert directory.get("0x00158d0001234567").kind == DeviceKind.PLUG

    def test_list_excludes_coordinator(self):
        """The coordinator radio is not a paired device."""
        directory = DeviceDirectory()
        directory.upsert(make_device("0x00124b0000000001"))
        directory.upsert(make_device("0x00158d0001234567"))
        directory.coordinator_address = "0x00124b0000000001"

        assert [d.ieee_address for d in directory.list()] == ["0x00158d0001234567"]

    @pytest.mark.asyncio
    async def test_remove_drops_state(self):
        """Removing a device forgets its state too."""
        directory = DeviceDirectory()
        directory.upsert(make_device())
        await directory.state_cache.merge("0x00158d0001234567", {"state": "ON"})

        directory.remove("0x00158d0001234567")

        assert not directory.state_cache.has("0x00158d0001234567")

    @pytest.mark.asyncio
    async def test_clear(self):
        """Clearing forgets devices and states."""
        directory = DeviceDirectory()
        directory.upsert(make_device())
        await directory.state_cache.merge("0x00158d0001234567", {"state": "ON"})

        directory.clear()

        assert len(directory) == 0
        assert directory.state_cache.size == 0


class TestStateCache:
    """Tests for the state cache."""

    @pytest.mark.asyncio
    async def test_merge_publishes_full_snapshot(self):
        """StateChanged carries the merged snapshot, not the delta."""
        bus = EventBus()
        cache = StateCache(bus)
        sub = bus.subscribe([EventKind.STATE_CHANGED])

        await cache.merge("0x01", {"state": "ON"})
        await cache.merge("0x01", {"brightness": 127})

        events = sub.drain()
        assert len(events) == 2
        assert events[1].state.to_dict() == {"state": "ON", "brightness": 127}

    @pytest.mark.asyncio
    async def test_merge_idempotent(self):
        """Merging the same partial twice equals merging it once."""
        bus = EventBus()
        cache = StateCache(bus)
        sub = bus.subscribe([EventKind.STATE_CHANGED])
        await cache.merge("0x01", {"state": "ON"})

        once = await cache.merge("0x01", {"brightness": 80})
        twice = await cache.merge("0x01", {"brightness": 80})

        assert once.to_dict() == twice.to_dict() == {"state": "ON", "brightness": 80}
        events = sub.drain()
        assert len(events) == 3
        assert events[1].state.to_dict() == events[2].state.to_dict()

    @pytest.mark.asyncio
    async def test_unknown_device_ignored(self):
        """With a directory bound, states of unknown devices are dropped."""
        directory = DeviceDirectory()

        state = await directory.state_cache.merge("0x02", {"state": "ON"})

        assert state.is_empty
        assert not directory.state_cache.has("0x02")

    @pytest.mark.asyncio
    async def test_merge_touches_device(self):
        """A merge records when the device was last heard from."""
        directory = DeviceDirectory()
        device = directory.upsert(make_device())

        await directory.state_cache.merge(device.ieee_address, {"state": "OFF"})

        assert device.last_seen is not None

    def test_get_unknown_is_empty(self):
        """Nothing cached is an empty state."""
        assert StateCache().get("0x03").is_empty
