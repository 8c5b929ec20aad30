"""Negotiation service: runs engine operations against a repository.

This is the integration layer the engine leaves to its caller. For each call
it serializes work per task id, loads the current record, applies the pure
engine operation, saves with an optimistic version check (reloading and
retrying on conflict), and only then publishes the emitted events.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal

from src.core.config import Constants, Settings, settings as default_settings
from src.core.errors import TaskNotFoundError, VersionConflictError
from src.core.logging import log_with_task_context, span
from src.core.ports import Clock, NotificationSink, SystemClock, TaskRepository
from src.domain.event import Actor
from src.domain.money import Money
from src.domain.task import ContactPhone, TaskLocation, TaskRecord
from src.models.service_models import NegotiationResult
from src.services.negotiation_engine import NegotiationEngine
from src.services.notification_service import dispatch_events


logger = logging.getLogger(__name__)

Operation = Callable[[TaskRecord, datetime], NegotiationResult]


class NegotiationService:
    """Applies negotiation operations to stored tasks.

    Collaborators are injected; nothing here reaches for a process-wide instance.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        notifier: NotificationSink,
        clock: Clock | None = None,
        engine: NegotiationEngine | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.repository = repository
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.engine = engine or NegotiationEngine(settings=self.settings)
        # task id -> (lock, number of callers holding or waiting on it)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _task_lock(self, task_id: str) -> AsyncIterator[None]:
        """Serialize work on one task; the lock is dropped once nobody holds or awaits it."""
        lock, users = self._locks.get(task_id, (asyncio.Lock(), 0))
        self._locks[task_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[task_id]
            if users == 1:
                del self._locks[task_id]
            else:
                self._locks[task_id] = (lock, users - 1)

    def quote(self, value: str | int | Decimal, currency: str | None = None) -> Money:
        """Build Money from a major-unit amount in the configured default currency."""
        return Money.from_major(value, currency or self.settings.default_currency)

    async def _run(self, task_id: str, name: str, operation: Operation) -> NegotiationResult:
        with span(f"negotiation_service.{name}", task_id=task_id):
            async with self._task_lock(task_id):
                conflicts = 0
                while True:
                    task = await self.repository.load(task_id)
                    result = operation(task, self.clock.now())
                    if not result.ok:
                        return result

                    try:
                        saved = await self.repository.save(result.task, expected_version=task.version)
                    except VersionConflictError as e:
                        conflicts += 1
                        if conflicts > self.settings.max_save_retries:
                            log_with_task_context(
                                logger, "warning", "Giving up after version conflicts", task_id=task_id,
                                operation=name, attempts=conflicts,
                            )
                            return NegotiationResult.failure(task, e)
                        log_with_task_context(
                            logger, "info", "Version conflict, reloading", task_id=task_id,
                            operation=name, attempt=conflicts,
                        )
                        await asyncio.sleep(Constants.SAVE_RETRY_BASE_DELAY_SECONDS * 2 ** (conflicts - 1))
                        continue

                    await dispatch_events(self.notifier, result.events)
                    return NegotiationResult(task=saved, events=result.events)

    # Creation

    async def create_task(
        self,
        *,
        task_id: str,
        user_id: str,
        location: TaskLocation,
        description: str = "",
        additional_locations: Iterable[TaskLocation] = (),
        contacts: Iterable[ContactPhone] = (),
        scheduled_at: datetime | None = None,
        image_url: str | None = None,
    ) -> NegotiationResult:
        """Create and store a new task. Fails with a version conflict if the id is taken."""
        with span("negotiation_service.create_task", task_id=task_id):
            result = self.engine.create_task(
                task_id=task_id,
                user_id=user_id,
                location=location,
                now=self.clock.now(),
                description=description,
                additional_locations=tuple(additional_locations),
                contacts=tuple(contacts),
                scheduled_at=scheduled_at,
                image_url=image_url,
            )
            try:
                saved = await self.repository.save(result.task, expected_version=0)
            except VersionConflictError as e:
                return NegotiationResult.failure(result.task, e)

            await dispatch_events(self.notifier, result.events)
            return NegotiationResult(task=saved, events=result.events)

    # Operations

    async def begin_review(self, task_id: str, actor: Actor) -> NegotiationResult:
        return await self._run(task_id, "begin_review", lambda task, now: self.engine.begin_review(task, actor, at=now))

    async def cancel_review(self, task_id: str, actor: Actor) -> NegotiationResult:
        return await self._run(
            task_id, "cancel_review", lambda task, now: self.engine.cancel_review(task, actor, at=now)
        )

    async def propose_cost(
        self, task_id: str, actor: Actor, cost: Money, notes: str | None = None
    ) -> NegotiationResult:
        return await self._run(
            task_id,
            "propose_cost",
            lambda task, now: self.engine.propose_cost(task, actor, cost, at=now, notes=notes),
        )

    async def update_cost_proposal(
        self, task_id: str, actor: Actor, cost: Money, notes: str | None = None
    ) -> NegotiationResult:
        return await self._run(
            task_id,
            "update_cost_proposal",
            lambda task, now: self.engine.update_cost_proposal(task, actor, cost, at=now, notes=notes),
        )

    async def accept_cost(self, task_id: str, actor: Actor) -> NegotiationResult:
        return await self._run(task_id, "accept_cost", lambda task, now: self.engine.accept_cost(task, actor, at=now))

    async def reject_cost(self, task_id: str, actor: Actor) -> NegotiationResult:
        return await self._run(task_id, "reject_cost", lambda task, now: self.engine.reject_cost(task, actor, at=now))

    async def propose_counter_offer(
        self, task_id: str, actor: Actor, cost: Money, notes: str | None = None
    ) -> NegotiationResult:
        return await self._run(
            task_id,
            "propose_counter_offer",
            lambda task, now: self.engine.propose_counter_offer(task, actor, cost, at=now, notes=notes),
        )

    async def cancel_counter_offer(self, task_id: str, actor: Actor) -> NegotiationResult:
        return await self._run(
            task_id,
            "cancel_counter_offer",
            lambda task, now: self.engine.cancel_counter_offer(task, actor, at=now),
        )

    async def propose_agent_counter(
        self, task_id: str, actor: Actor, cost: Money, notes: str | None = None
    ) -> NegotiationResult:
        return await self._run(
            task_id,
            "propose_agent_counter",
            lambda task, now: self.engine.propose_agent_counter(task, actor, cost, at=now, notes=notes),
        )

    async def accept_counter_offer(self, task_id: str, actor: Actor) -> NegotiationResult:
        return await self._run(
            task_id,
            "accept_counter_offer",
            lambda task, now: self.engine.accept_counter_offer(task, actor, at=now),
        )

    async def reject_counter_offer(self, task_id: str, actor: Actor) -> NegotiationResult:
        return await self._run(
            task_id,
            "reject_counter_offer",
            lambda task, now: self.engine.reject_counter_offer(task, actor, at=now),
        )

    async def cancel_negotiation(self, task_id: str, actor: Actor) -> NegotiationResult:
        return await self._run(
            task_id, "cancel_negotiation", lambda task, now: self.engine.cancel_negotiation(task, actor, at=now)
        )

    async def finalize_negotiation(self, task_id: str, actor: Actor, final_cost: Money) -> NegotiationResult:
        return await self._run(
            task_id,
            "finalize_negotiation",
            lambda task, now: self.engine.finalize_negotiation(task, actor, final_cost, at=now),
        )

    async def finalize_assignment(self, task_id: str, actor: Actor, agent_id: str) -> NegotiationResult:
        return await self._run(
            task_id,
            "finalize_assignment",
            lambda task, now: self.engine.finalize_assignment(task, actor, agent_id, at=now),
        )

    async def add_stop_note(self, task_id: str, actor: Actor, stop_index: int, note: str) -> NegotiationResult:
        return await self._run(
            task_id,
            "add_stop_note",
            lambda task, now: self.engine.add_stop_note(task, actor, stop_index, note, at=now),
        )

    async def complete_stop(self, task_id: str, actor: Actor, stop_index: int) -> NegotiationResult:
        return await self._run(
            task_id,
            "complete_stop",
            lambda task, now: self.engine.complete_stop(task, actor, stop_index, at=now),
        )

    async def mark_completed(self, task_id: str, actor: Actor) -> NegotiationResult:
        return await self._run(
            task_id, "mark_completed", lambda task, now: self.engine.mark_completed(task, actor, at=now)
        )

    async def expire_if_due(self, task_id: str) -> NegotiationResult:
        """Expire the task when its scheduled time has passed, using the injected clock."""
        return await self._run(task_id, "expire", lambda task, now: self.engine.expire(task, now))

    async def expire_overdue(self, task_ids: Iterable[str]) -> list[TaskRecord]:
        """Sweep candidate tasks and return the ones that expired.

        Tasks that are not due, already moved on, or no longer exist are skipped.
        """
        with span("negotiation_service.expire_overdue"):
            expired = []
            for task_id in task_ids:
                try:
                    result = await self.expire_if_due(task_id)
                except TaskNotFoundError:
                    log_with_task_context(logger, "warning", "Skipping missing task in expiry sweep", task_id=task_id)
                    continue
                if result.ok:
                    expired.append(result.task)
            logger.info("Expired %d overdue tasks", len(expired))
            return expired

    # Realtime

    async def watch(self, task_id: str) -> AsyncIterator[TaskRecord]:
        """Yield the task each time it is saved, for read-only UI refresh."""
        async for task in self.repository.subscribe(task_id):
            yield task
