"""Domain models and value objects."""

from src.domain.event import Actor, ActorRole, NegotiationEvent, NegotiationEventKind
from src.domain.money import Money
from src.domain.task import COST_BEARING_STATUSES, ContactPhone, StopNote, TaskLocation, TaskRecord, TaskStatus


__all__ = [
    "COST_BEARING_STATUSES",
    "Actor",
    "ActorRole",
    "ContactPhone",
    "Money",
    "NegotiationEvent",
    "NegotiationEventKind",
    "StopNote",
    "TaskLocation",
    "TaskRecord",
    "TaskStatus",
]
