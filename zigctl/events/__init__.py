"""Domain events and the bus that fans them out."""

from .bus import EventBus, OverflowPolicy, Subscription
from .models import DomainEvent, EventKind, InterviewStatus, event_to_dict

__all__ = [
    "DomainEvent",
    "EventBus",
    "EventKind",
    "InterviewStatus",
    "OverflowPolicy",
    "Subscription",
    "event_to_dict",
]
