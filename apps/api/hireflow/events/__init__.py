from hireflow.events.bus import EventBus, Subscription
from hireflow.events.types import DomainEvent, EventType, new_event

__all__ = ["DomainEvent", "EventBus", "EventType", "Subscription", "new_event"]
