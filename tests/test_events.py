"""
Tests for the event bus and the event router.
"""

import asyncio

import pytest

from zigctl.capabilities.catalog import StaticCatalog
from zigctl.capabilities.resolver import CapabilityResolver
from zigctl.coordinator import PairingWindow
from zigctl.devices.directory import DeviceDirectory
from zigctl.devices.models import Device, DeviceKind
from zigctl.devices.state import StateCache
from zigctl.errors import CapabilityUnknownError
from zigctl.events.bus import EventBus, OverflowPolicy
from zigctl.events.models import (
    DeviceLeft,
    EventKind,
    InterviewStatus,
    PairingWindowChanged,
    StateChanged,
    event_to_dict,
)
from zigctl.events.router import EventRouter
from zigctl.network.base import NetworkEvent, NetworkEventType
from zigctl.network.memory import simulated_plug

from conftest import LIGHT, PLUG

NEW_PLUG = "0x00158d00000aaaaa"


class TestEventBus:
    """Tests for the event bus."""

    @pytest.mark.asyncio
    async def test_fan_out(self):
        """Every subscription gets every event, in order."""
        bus = EventBus()
        first, second = bus.subscribe(), bus.subscribe()

        await bus.publish(DeviceLeft(ieee_address="0x01"))
        await bus.publish(DeviceLeft(ieee_address="0x02"))

        assert [e.ieee_address for e in first.drain()] == ["0x01", "0x02"]
        assert [e.ieee_address for e in second.drain()] == ["0x01", "0x02"]

    @pytest.mark.asyncio
    async def test_kind_filter(self):
        """Subscriptions may ask for some kinds only."""
        bus = EventBus()
        sub = bus.subscribe([EventKind.PAIRING_WINDOW_CHANGED])

        await bus.publish(DeviceLeft(ieee_address="0x01"))
        await bus.publish(PairingWindowChanged(enabled=True, duration=60))

        events = sub.drain()
        assert len(events) == 1
        assert events[0].kind == EventKind.PAIRING_WINDOW_CHANGED

    @pytest.mark.asyncio
    async def test_drop_oldest(self):
        """A full queue drops its oldest event."""
        bus = EventBus(maxsize=2)
        sub = bus.subscribe()

        for address in ("0x01", "0x02", "0x03"):
            await bus.publish(DeviceLeft(ieee_address=address))

        assert sub.dropped == 1
        assert [e.ieee_address for e in sub.drain()] == ["0x02", "0x03"]

    @pytest.mark.asyncio
    async def test_block(self):
        """With the block policy the publisher waits for the consumer."""
        bus = EventBus()
        sub = bus.subscribe(maxsize=1, overflow=OverflowPolicy.BLOCK)
        await bus.publish(DeviceLeft(ieee_address="0x01"))

        publish = asyncio.create_task(bus.publish(DeviceLeft(ieee_address="0x02")))
        await asyncio.sleep(0)
        assert not publish.done()

        assert (await sub.get()).ieee_address == "0x01"
        await asyncio.wait_for(publish, 1)
        assert (await sub.get()).ieee_address == "0x02"

    @pytest.mark.asyncio
    async def test_block_released_on_close(self):
        """Closing a full subscription frees a waiting publisher."""
        bus = EventBus()
        sub = bus.subscribe(maxsize=1, overflow=OverflowPolicy.BLOCK)
        await bus.publish(DeviceLeft(ieee_address="0x01"))

        publish = asyncio.create_task(bus.publish(DeviceLeft(ieee_address="0x02")))
        await asyncio.sleep(0)
        assert not publish.done()

        sub.close()
        await asyncio.wait_for(publish, 1)

        assert sub.drain() == []
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self):
        """Closing the bus ends every subscription's iteration."""
        bus = EventBus()
        sub = bus.subscribe()
        await bus.publish(DeviceLeft(ieee_address="0x01"))
        bus.close()

        received = [event async for event in sub]

        assert [e.ieee_address for e in received] == ["0x01"]
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_get_timeout(self):
        """Waiting for an event can time out."""
        sub = EventBus().subscribe()
        with pytest.raises(asyncio.TimeoutError):
            await sub.get(timeout=0.01)

    def test_serialization(self):
        """Events serialize with their kind as type."""
        data = event_to_dict(PairingWindowChanged(enabled=True, duration=60))

        assert data["type"] == "pairing_window.changed"
        assert data["payload"] == {"enabled": True, "duration": 60}
        assert isinstance(data["timestamp"], float)


class RecordingBus(EventBus):
    """Records what the directory looked like when each event went out."""

    def __init__(self):
        super().__init__()
        self.directory = None
        self.seen = []

    async def publish(self, event):
        device = getattr(event, "device", None)
        known = self.directory.find(device.ieee_address) if device is not None else None
        self.seen.append((event, known))
        await super().publish(event)


class StubCoordinator:
    def __init__(self):
        self.pairing_window = PairingWindow()
        self.faulted = False

    def mark_faulted(self, reason="adapter disconnected"):
        self.faulted = True
        return True

    def apply_pairing_window(self, enabled, duration=None):
        self.pairing_window = PairingWindow(enabled=enabled, duration=duration)
        return PairingWindowChanged(enabled=enabled, duration=duration)


class TestEventRouterUnit:
    """Router ordering guarantees, without a running coordinator."""

    def setup_method(self):
        self.bus = RecordingBus()
        self.directory = DeviceDirectory(StateCache(self.bus))
        self.bus.directory = self.directory
        self.coordinator = StubCoordinator()
        self.router = EventRouter(
            self.directory, CapabilityResolver(StaticCatalog()), self.bus, self.coordinator
        )

    @pytest.mark.asyncio
    async def test_interview_upserts_before_event(self):
        """Subscribers see the resolved device already in the directory."""
        record = simulated_plug(NEW_PLUG).record

        event = await self.router.handle(NetworkEvent(
            NetworkEventType.DEVICE_INTERVIEW, record=record, status="successful"
        ))

        assert event.status == InterviewStatus.SUCCESSFUL
        _, known = self.bus.seen[-1]
        assert known is not None
        assert known.kind == DeviceKind.PLUG
        assert known.interview_completed

    @pytest.mark.asyncio
    async def test_state_merged_after_message(self):
        """The message event goes out before the state change it causes."""
        self.directory.upsert(Device.from_record(simulated_plug(NEW_PLUG).record, kind=DeviceKind.PLUG))

        await self.router.handle(NetworkEvent(
            NetworkEventType.MESSAGE,
            ieee_address=NEW_PLUG,
            message_type="attributeReport",
            cluster="genOnOff",
            data={"onOff": 1},
        ))

        kinds = [event.kind for event, _ in self.bus.seen]
        assert kinds == [EventKind.MESSAGE_RECEIVED, EventKind.STATE_CHANGED]
        assert isinstance(self.bus.seen[-1][0], StateChanged)
        assert self.bus.seen[-1][0].state.get("state") == "ON"

    @pytest.mark.asyncio
    async def test_unknown_interview_status(self):
        """Unknown statuses are dropped."""
        record = simulated_plug(NEW_PLUG).record

        event = await self.router.handle(NetworkEvent(
            NetworkEventType.DEVICE_INTERVIEW, record=record, status="paused"
        ))

        assert event is None
        assert self.bus.seen == []

    @pytest.mark.asyncio
    async def test_adapter_disconnected(self):
        """Adapter loss faults the coordinator."""
        event = await self.router.handle(NetworkEvent(NetworkEventType.ADAPTER_DISCONNECTED))

        assert event.kind == EventKind.ADAPTER_DISCONNECTED
        assert self.coordinator.faulted


class TestEventRouting:
    """Raw notifications through a running gateway."""

    @pytest.mark.asyncio
    async def test_pairing_sequence(self, gateway, network):
        """Join, interview started, interview successful."""
        await gateway.start()
        sub = gateway.subscribe()

        await network.simulate_pairing(simulated_plug(NEW_PLUG))

        events = sub.drain()
        assert [e.kind for e in events] == [
            EventKind.DEVICE_JOINED,
            EventKind.DEVICE_INTERVIEW,
            EventKind.DEVICE_INTERVIEW,
        ]
        assert [e.status for e in events[1:]] == [InterviewStatus.STARTED, InterviewStatus.SUCCESSFUL]
        assert gateway.get_device(NEW_PLUG).kind == DeviceKind.PLUG

        await gateway.turn_on(NEW_PLUG)
        assert network.attribute(NEW_PLUG, "genOnOff", "onOff") == 1

    @pytest.mark.asyncio
    async def test_joined_not_interviewed(self, gateway, network):
        """A joined device is known but not yet controllable."""
        await gateway.start()

        await network.simulate_join(simulated_plug(NEW_PLUG))

        assert not gateway.get_device(NEW_PLUG).interview_completed
        with pytest.raises(CapabilityUnknownError):
            await gateway.turn_on(NEW_PLUG)

    @pytest.mark.asyncio
    async def test_leave(self, gateway, network):
        """A leaving device is removed with its state."""
        await gateway.start()
        await gateway.turn_on(PLUG)
        sub = gateway.subscribe([EventKind.DEVICE_LEFT])

        await network.simulate_leave(PLUG)

        assert [e.ieee_address for e in sub.drain()] == [PLUG]
        assert PLUG not in gateway.directory
        assert not gateway.state_cache.has(PLUG)

    @pytest.mark.asyncio
    async def test_attribute_report(self, gateway, network):
        """Reports update the state cache."""
        await gateway.start()
        sub = gateway.subscribe([EventKind.MESSAGE_RECEIVED, EventKind.STATE_CHANGED])

        await network.simulate_message(LIGHT, "genLevelCtrl", {"currentLevel": 100})

        events = sub.drain()
        assert [e.kind for e in events] == [EventKind.MESSAGE_RECEIVED, EventKind.STATE_CHANGED]
        assert events[0].cluster == "genLevelCtrl"
        assert gateway.get_state(LIGHT).get("brightness") == 100

    @pytest.mark.asyncio
    async def test_command_message_keeps_state(self, gateway, network):
        """Commands sent by a device are reported but do not change state."""
        await gateway.start()
        sub = gateway.subscribe()

        await network.simulate_message(PLUG, "genOnOff", {"onOff": 1}, message_type="commandOn")

        assert [e.kind for e in sub.drain()] == [EventKind.MESSAGE_RECEIVED]
        assert gateway.get_state(PLUG).is_empty

    @pytest.mark.asyncio
    async def test_unknown_device_message_dropped(self, gateway, network):
        """Messages from devices outside the directory produce no events."""
        await gateway.start()
        sub = gateway.subscribe()

        await network.simulate_message("0x00aa00aa00aa00aa", "genOnOff", {"onOff": 1})

        assert sub.drain() == []

    @pytest.mark.asyncio
    async def test_announce(self, gateway, network):
        """Announces refresh the device."""
        await gateway.start()
        sub = gateway.subscribe([EventKind.DEVICE_ANNOUNCED])

        await network.simulate_announce(PLUG)

        events = sub.drain()
        assert len(events) == 1
        assert events[0].device.ieee_address == PLUG

    @pytest.mark.asyncio
    async def test_radio_closes_pairing(self, gateway, network):
        """A window closed by the radio is reported once."""
        await gateway.start()
        await gateway.set_pairing_window(True, 60)
        sub = gateway.subscribe([EventKind.PAIRING_WINDOW_CHANGED])

        await network.simulate_pairing_closed()
        await network.simulate_pairing_closed()

        assert [e.enabled for e in sub.drain()] == [False]
        assert not gateway.pairing_window.is_open
