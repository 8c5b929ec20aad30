"""Collaborator ports: persistence, notification delivery and time.

The engine never touches these; NegotiationService receives concrete
implementations from the host application.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Protocol

from src.domain.event import NegotiationEvent
from src.domain.task import TaskRecord


class TaskRepository(Protocol):
    """Storage for task records with optimistic concurrency."""

    async def load(self, task_id: str) -> TaskRecord:
        """Return the stored record. Raises TaskNotFoundError."""
        ...

    async def save(self, task: TaskRecord, expected_version: int) -> TaskRecord:
        """Persist if the stored version still equals expected_version.

        Returns the stored record with its new version. Raises VersionConflictError.
        """
        ...

    def subscribe(self, task_id: str) -> AsyncIterator[TaskRecord]:
        """Yield the record every time it is saved."""
        ...


class NotificationSink(Protocol):
    """Fire-and-forget delivery of negotiation events to push/realtime channels."""

    async def publish(self, event: NegotiationEvent) -> None: ...


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock returning timezone-aware UTC datetimes."""

    def now(self) -> datetime:
        return datetime.now(UTC)
