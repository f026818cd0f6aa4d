"""
Event Router - raw network notifications in, domain events out.

Directory and State Cache are updated before the matching domain event
is published, so subscribers always see a directory consistent with the
event they are handling.
"""

import logging
from typing import Any, Optional

from ..capabilities.resolver import CapabilityResolver
from ..devices.directory import DeviceDirectory, normalize_address
from ..devices.models import Device, DeviceRecord
from ..network.base import NetworkEvent, NetworkEventType
from ..translator.conversions import decode_report
from .bus import EventBus
from .models import (
    AdapterDisconnected,
    DeviceAnnounced,
    DeviceInterview,
    DeviceJoined,
    DeviceLeft,
    DomainEvent,
    InterviewStatus,
    MessageReceived,
)

logger = logging.getLogger(__name__)

# Message types that carry attribute values worth folding into state
STATE_MESSAGE_TYPES = {"attributeReport", "readResponse"}


class EventRouter:
    """
    Normalizes NetworkEvents into the eight domain events.

    The coordinator is passed in so that adapter loss can fault it and
    controller-reported pairing window changes can update it.
    """

    def __init__(
        self,
        directory: DeviceDirectory,
        resolver: CapabilityResolver,
        bus: EventBus,
        coordinator: Any,
    ):
        self.directory = directory
        self.resolver = resolver
        self.bus = bus
        self.coordinator = coordinator

    async def handle(self, raw: NetworkEvent) -> Optional[DomainEvent]:
        """
        Route one raw notification.

        Returns:
            The published domain event, or None if the notification was dropped
        """
        handler = {
            NetworkEventType.DEVICE_JOINED: self._on_joined,
            NetworkEventType.DEVICE_LEAVE: self._on_left,
            NetworkEventType.DEVICE_INTERVIEW: self._on_interview,
            NetworkEventType.DEVICE_ANNOUNCE: self._on_announce,
            NetworkEventType.MESSAGE: self._on_message,
            NetworkEventType.ADAPTER_DISCONNECTED: self._on_adapter_disconnected,
            NetworkEventType.PERMIT_JOIN_CHANGED: self._on_permit_join,
        }[raw.type]

        return await handler(raw)

    async def _emit(self, event: DomainEvent) -> DomainEvent:
        await self.bus.publish(event)
        return event

    def _resolve(self, record: DeviceRecord) -> Device:
        """Re-derive a device from its record and store it."""
        resolution = self.resolver.resolve(record)
        device = Device.from_record(record, kind=resolution.kind)
        return self.directory.upsert(device)

    def _device_for(self, raw: NetworkEvent) -> Optional[Device]:
        if raw.record is not None:
            known = self.directory.find(raw.record.ieee_address)
            return known or Device.from_record(raw.record, kind=self.resolver.kind_of(raw.record))
        if raw.address:
            return self.directory.find(raw.address)
        return None

    async def _on_joined(self, raw: NetworkEvent) -> Optional[DomainEvent]:
        if raw.record is None:
            logger.warning(f"Join notification without device record ({raw.address})")
            return None
        device = self._resolve(raw.record)
        logger.info(f"Device joined: {device.ieee_address}")
        return await self._emit(DeviceJoined(device=device))

    async def _on_left(self, raw: NetworkEvent) -> Optional[DomainEvent]:
        if not raw.address:
            return None
        address = normalize_address(raw.address)
        self.directory.remove(address)
        logger.info(f"Device left: {address}")
        return await self._emit(DeviceLeft(ieee_address=address))

    async def _on_interview(self, raw: NetworkEvent) -> Optional[DomainEvent]:
        try:
            status = InterviewStatus(raw.status)
        except ValueError:
            logger.warning(f"Unknown interview status {raw.status!r} for {raw.address}")
            return None

        if status == InterviewStatus.SUCCESSFUL:
            if raw.record is None:
                logger.warning(f"Interview result without device record ({raw.address})")
                return None
            device = self._resolve(raw.record)
            logger.info(
                f"Interview successful: {device.ieee_address} "
                f"({device.model_id or 'unknown model'}, {device.kind.value})"
            )
        else:
            device = self._device_for(raw)
            if device is None:
                return None
            if status == InterviewStatus.FAILED:
                logger.warning(f"Interview failed: {device.ieee_address}")
            else:
                logger.info(f"Interview started: {device.ieee_address}")

        return await self._emit(DeviceInterview(device=device, status=status))

    async def _on_announce(self, raw: NetworkEvent) -> Optional[DomainEvent]:
        if raw.record is not None:
            device = self._resolve(raw.record)
        else:
            device = self.directory.find(raw.address) if raw.address else None
            if device is None:
                return None
            device.kind = self.resolver.kind_of(device)
            self.directory.upsert(device)
        logger.debug(f"Device announced: {device.ieee_address}")
        return await self._emit(DeviceAnnounced(device=device))

    async def _on_message(self, raw: NetworkEvent) -> Optional[DomainEvent]:
        device = self.directory.find(raw.address) if raw.address else None
        if device is None:
            # Messages can arrive before the interview completes
            logger.debug(f"Dropping message from unknown device {raw.address}")
            return None

        device.touch()
        event = MessageReceived(
            device=device,
            message_type=raw.message_type or "unknown",
            cluster=raw.cluster or "",
            data=dict(raw.data),
            endpoint_id=raw.endpoint_id,
            meta=dict(raw.meta),
        )
        await self._emit(event)

        if raw.message_type in STATE_MESSAGE_TYPES:
            partial = decode_report(raw.cluster or "", raw.data)
            if partial:
                await self.directory.state_cache.merge(device.ieee_address, partial)

        return event

    async def _on_adapter_disconnected(self, raw: NetworkEvent) -> Optional[DomainEvent]:
        self.coordinator.mark_faulted("adapter disconnected")
        return await self._emit(AdapterDisconnected())

    async def _on_permit_join(self, raw: NetworkEvent) -> Optional[DomainEvent]:
        enabled = bool(raw.permitted)
        if not enabled and not self.coordinator.pairing_window.is_open:
            return None
        event = self.coordinator.apply_pairing_window(enabled, raw.time if enabled else None)
        return await self._emit(event)
