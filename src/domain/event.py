"""Negotiation event models for the append-only audit trail."""

import uuid
from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from src.domain.task import as_utc


class ActorRole(StrEnum):
    """Who is acting on a task."""

    REQUESTER = "requester"  # Task owner / customer
    AGENT = "agent"  # Delivery worker
    SYSTEM = "system"  # Scheduler or back-office automation


class Actor(BaseModel):
    """Role plus identity of the party performing an action."""

    model_config = ConfigDict(frozen=True)

    role: ActorRole
    id: str = Field(..., min_length=1)

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=ActorRole.SYSTEM, id="system")


class NegotiationEventKind(StrEnum):
    """One kind per accepted transition."""

    TASK_CREATED = "task_created"
    REVIEW_STARTED = "review_started"
    REVIEW_CANCELLED = "review_cancelled"
    COST_PROPOSED = "cost_proposed"
    COST_PROPOSAL_UPDATED = "cost_proposal_updated"
    COST_ACCEPTED = "cost_accepted"
    COST_REJECTED = "cost_rejected"
    COUNTER_PROPOSED = "counter_proposed"
    COUNTER_CANCELLED = "counter_cancelled"
    COUNTER_ACCEPTED = "counter_accepted"
    COUNTER_REJECTED = "counter_rejected"
    AGENT_COUNTER_PROPOSED = "agent_counter_proposed"
    NEGOTIATION_CANCELLED = "negotiation_cancelled"
    NEGOTIATION_FINALIZED = "negotiation_finalized"
    TASK_ASSIGNED = "task_assigned"
    STOP_NOTE_ADDED = "stop_note_added"
    STOP_COMPLETED = "stop_completed"
    TASK_COMPLETED = "task_completed"
    TASK_EXPIRED = "task_expired"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list | tuple):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


class NegotiationEvent(BaseModel):
    """Immutable audit record emitted for every accepted transition."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Deterministic event ID")
    kind: NegotiationEventKind
    task_id: str
    actor: Actor
    timestamp: datetime
    payload: Mapping[str, Any] = Field(
        default_factory=lambda: MappingProxyType({}), description="Kind-specific details (costs, statuses), read-only"
    )

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("payload")
    @classmethod
    def _freeze_payload(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return _freeze(value)

    @field_serializer("payload")
    def _serialize_payload(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return _thaw(value)

    @classmethod
    def build(
        cls,
        *,
        kind: NegotiationEventKind,
        task_id: str,
        task_version: int,
        actor: Actor,
        timestamp: datetime,
        payload: dict[str, Any] | None = None,
    ) -> "NegotiationEvent":
        """Build an event whose ID depends only on its inputs, so replays yield the same ID."""
        seed = f"{task_id}/{task_version}/{kind.value}/{as_utc(timestamp).isoformat()}"
        return cls(
            id=str(uuid.uuid5(uuid.NAMESPACE_URL, seed)),
            kind=kind,
            task_id=task_id,
            actor=actor,
            timestamp=timestamp,
            payload=payload or {},
        )
