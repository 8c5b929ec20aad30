"""Pydantic models for engine and service return types.

Negotiation calls report expected domain failures as values instead of
raising, so callers branch on `error` rather than catching exceptions.
"""

from pydantic import BaseModel, ConfigDict, Field, SkipValidation

from src.core.errors import NegotiationError
from src.domain.event import NegotiationEvent
from src.domain.task import TaskRecord


class NegotiationResult(BaseModel):
    """Outcome of a negotiation operation.

    On success `task` is the new record and `events` holds the emitted events.
    On failure `task` is the record that was passed in, untouched, and `events` is empty.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    # Carried as-is: a refused operation hands back exactly the record it was given
    task: SkipValidation[TaskRecord]
    events: tuple[NegotiationEvent, ...] = Field(default=())
    error: NegotiationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, task: TaskRecord, *events: NegotiationEvent) -> "NegotiationResult":
        return cls(task=task, events=events)

    @classmethod
    def failure(cls, task: TaskRecord, error: NegotiationError) -> "NegotiationResult":
        return cls(task=task, error=error)

    def unwrap(self) -> TaskRecord:
        """Return the new task, raising the error for callers that prefer exceptions."""
        if self.error is not None:
            raise self.error
        return self.task


class NotificationResult(BaseModel):
    """Delivery status of one event to one sink."""

    event_id: str
    sink: str
    success: bool
    error: str | None = None
