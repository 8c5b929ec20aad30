"""Negotiation engine: pure operations over TaskRecord.

Each operation takes the current record, the acting party and the time the
action happened, and returns a NegotiationResult holding the new record plus
exactly one event, or the untouched record plus a typed error. Nothing here
reads a clock or performs I/O; persisting the record and publishing the
events is the caller's job (see negotiation_service).
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from src.core.config import Settings
from src.core.errors import (
    IllegalTransitionError,
    InvalidCostError,
    InvalidStopError,
    NegotiationError,
    NoPriorProposalError,
    NotExpirableError,
)
from src.core.logging import span
from src.domain.event import Actor, ActorRole, NegotiationEvent, NegotiationEventKind
from src.domain.money import Money
from src.domain.task import (
    ContactPhone,
    StopNote,
    TaskLocation,
    TaskRecord,
    TaskStatus,
    as_utc,
    cost_currency_of,
    open_pool_status,
)
from src.models.service_models import NegotiationResult
from src.modules.tasks.state_machine import NegotiationStateMachine, TaskAction


logger = logging.getLogger(__name__)

_COUNTER_CLEARED: dict[str, Any] = {
    "user_counter_cost": None,
    "user_counter_notes": None,
    "user_counter_at": None,
}


def _money_payload(money: Money | None) -> dict[str, Any] | None:
    return {"amount": money.amount, "currency": money.currency} if money is not None else None


class NegotiationEngine:
    """Public API for task lifecycle and cost negotiation."""

    def __init__(
        self,
        *,
        state_machine: NegotiationStateMachine | None = None,
        settings: Settings | None = None,
    ) -> None:
        if state_machine is None:
            reject_target = settings.reject_cost_target if settings is not None else TaskStatus.COST_REVIEW
            state_machine = NegotiationStateMachine(reject_target=reject_target)
        self.state_machine = state_machine

    # Internals

    def _apply(
        self,
        task: TaskRecord,
        *,
        action: TaskAction,
        actor: Actor,
        at: datetime,
        kind: NegotiationEventKind,
        changes: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> NegotiationResult:
        outcome = self.state_machine.transition(task.status, action, actor.role)
        if outcome.error is not None:
            return self._refuse(task, outcome.error)

        status = outcome.status
        if status == TaskStatus.PENDING and task.status != TaskStatus.PENDING:
            status = open_pool_status(task.scheduled_at, at)
        updated = task.evolve(status=status, updated_at=at, **(changes or {}))
        event = NegotiationEvent.build(
            kind=kind,
            task_id=task.id,
            task_version=task.version,
            actor=actor,
            timestamp=at,
            payload={"from_status": task.status.value, "to_status": updated.status.value, **(payload or {})},
        )
        logger.info(
            "Transitioned task %s from %s to %s",
            task.id,
            task.status,
            updated.status,
            extra={"task_id": task.id, "action": action.value, "actor_id": actor.id, "event_kind": kind.value},
        )
        return NegotiationResult.success(updated, event)

    def _refuse(self, task: TaskRecord, error: NegotiationError) -> NegotiationResult:
        logger.info(
            "Refused operation on task %s: %s",
            task.id,
            error,
            extra={"task_id": task.id, "error_code": error.code},
        )
        return NegotiationResult.failure(task, error)

    def _check_cost(self, task: TaskRecord, cost: Money | None, *, label: str) -> InvalidCostError | None:
        if cost is None or not cost.is_positive:
            return InvalidCostError(f"{label} must be greater than 0")
        currency = cost_currency_of(task)
        if currency is not None and currency != cost.currency:
            return InvalidCostError(f"{label} currency {cost.currency} does not match task currency {currency}")
        return None

    # Creation

    def create_task(
        self,
        *,
        task_id: str,
        user_id: str,
        location: TaskLocation,
        now: datetime,
        description: str = "",
        additional_locations: Sequence[TaskLocation] = (),
        contacts: Sequence[ContactPhone] = (),
        scheduled_at: datetime | None = None,
        image_url: str | None = None,
    ) -> NegotiationResult:
        """Create a new task as submitted by its requester."""
        with span("negotiation_engine.create_task", task_id=task_id):
            task = TaskRecord.new(
                task_id=task_id,
                user_id=user_id,
                location=location,
                now=now,
                description=description,
                additional_locations=tuple(additional_locations),
                contacts=tuple(contacts),
                scheduled_at=scheduled_at,
                image_url=image_url,
            )
            event = NegotiationEvent.build(
                kind=NegotiationEventKind.TASK_CREATED,
                task_id=task.id,
                task_version=task.version,
                actor=Actor(role=ActorRole.REQUESTER, id=user_id),
                timestamp=now,
                payload={"to_status": task.status.value, "stops": len(task.all_locations)},
            )
            logger.info("Created task %s in %s", task.id, task.status, extra={"task_id": task.id})
            return NegotiationResult.success(task, event)

    # Agent review

    def begin_review(self, task: TaskRecord, actor: Actor, *, at: datetime) -> NegotiationResult:
        """Agent picks the task up to price it."""
        with span("negotiation_engine.begin_review", task_id=task.id):
            return self._apply(
                task,
                action=TaskAction.BEGIN_REVIEW,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.REVIEW_STARTED,
                changes={"reviewer_id": actor.id},
                payload={"reviewer_id": actor.id},
            )

    def cancel_review(self, task: TaskRecord, actor: Actor, *, at: datetime) -> NegotiationResult:
        """Agent drops the task before proposing a cost; it returns to the open pool (pending or scheduled)."""
        with span("negotiation_engine.cancel_review", task_id=task.id):
            return self._apply(
                task,
                action=TaskAction.CANCEL_REVIEW,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.REVIEW_CANCELLED,
                changes={"reviewer_id": None},
            )

    def propose_cost(
        self,
        task: TaskRecord,
        actor: Actor,
        cost: Money,
        *,
        at: datetime,
        notes: str | None = None,
    ) -> NegotiationResult:
        """Agent quotes a cost for a task under review."""
        with span("negotiation_engine.propose_cost", task_id=task.id):
            if (error := self._check_cost(task, cost, label="Proposed cost")) is not None:
                return self._refuse(task, error)
            return self._apply(
                task,
                action=TaskAction.PROPOSE_COST,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.COST_PROPOSED,
                changes={
                    "proposed_cost": cost,
                    "cost_notes": notes,
                    "cost_proposed_at": at,
                    "reviewer_id": actor.id,
                    **_COUNTER_CLEARED,
                },
                payload={"cost": _money_payload(cost), "notes": notes},
            )

    def update_cost_proposal(
        self,
        task: TaskRecord,
        actor: Actor,
        cost: Money,
        *,
        at: datetime,
        notes: str | None = None,
    ) -> NegotiationResult:
        """Agent revises its own quote before the requester has answered."""
        with span("negotiation_engine.update_cost_proposal", task_id=task.id):
            if (error := self._check_cost(task, cost, label="Updated cost")) is not None:
                return self._refuse(task, error)
            return self._apply(
                task,
                action=TaskAction.UPDATE_PROPOSAL,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.COST_PROPOSAL_UPDATED,
                changes={"proposed_cost": cost, "cost_notes": notes, "cost_proposed_at": at},
                payload={
                    "cost": _money_payload(cost),
                    "previous_cost": _money_payload(task.proposed_cost),
                    "notes": notes,
                },
            )

    # Requester responses

    def accept_cost(self, task: TaskRecord, actor: Actor, *, at: datetime) -> NegotiationResult:
        """Requester accepts the agent's proposal.

        While the requester's own counter is pending, accepting means taking the
        agent's proposal as quoted; the counter is discarded, never used.
        """
        with span("negotiation_engine.accept_cost", task_id=task.id):
            outcome = self.state_machine.transition(task.status, TaskAction.ACCEPT_COST, actor.role)
            if outcome.error is not None:
                return self._refuse(task, outcome.error)
            if task.proposed_cost is None:
                return self._refuse(task, NoPriorProposalError(f"Task {task.id} has no proposed cost to accept"))

            return self._apply(
                task,
                action=TaskAction.ACCEPT_COST,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.COST_ACCEPTED,
                changes={"accepted_cost": task.proposed_cost, "cost_accepted_at": at, **_COUNTER_CLEARED},
                payload={
                    "accepted_cost": _money_payload(task.proposed_cost),
                    "discarded_counter": _money_payload(task.user_counter_cost),
                },
            )

    def reject_cost(self, task: TaskRecord, actor: Actor, *, at: datetime) -> NegotiationResult:
        """Requester rejects the proposal so a new one can be made."""
        with span("negotiation_engine.reject_cost", task_id=task.id):
            changes: dict[str, Any] = {"proposed_cost": None, "cost_notes": None, "cost_proposed_at": None}
            if self.state_machine.reject_target == TaskStatus.PENDING:
                changes["reviewer_id"] = None
            return self._apply(
                task,
                action=TaskAction.REJECT_COST,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.COST_REJECTED,
                changes=changes,
                payload={"rejected_cost": _money_payload(task.proposed_cost)},
            )

    def propose_counter_offer(
        self,
        task: TaskRecord,
        actor: Actor,
        cost: Money,
        *,
        at: datetime,
        notes: str | None = None,
    ) -> NegotiationResult:
        """Requester answers the agent's proposal with a different cost."""
        with span("negotiation_engine.propose_counter_offer", task_id=task.id):
            if (error := self._check_cost(task, cost, label="Counter-offer")) is not None:
                return self._refuse(task, error)
            return self._apply(
                task,
                action=TaskAction.PROPOSE_COUNTER,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.COUNTER_PROPOSED,
                changes={"user_counter_cost": cost, "user_counter_notes": notes, "user_counter_at": at},
                payload={
                    "counter_cost": _money_payload(cost),
                    "proposed_cost": _money_payload(task.proposed_cost),
                    "notes": notes,
                },
            )

    def cancel_counter_offer(self, task: TaskRecord, actor: Actor, *, at: datetime) -> NegotiationResult:
        """Requester withdraws their counter; the agent's last proposal stands again."""
        with span("negotiation_engine.cancel_counter_offer", task_id=task.id):
            outcome = self.state_machine.transition(task.status, TaskAction.CANCEL_COUNTER, actor.role)
            if outcome.error is not None:
                return self._refuse(task, outcome.error)
            if task.proposed_cost is None:
                return self._refuse(task, NoPriorProposalError(f"Task {task.id} has no proposal to revert to"))

            return self._apply(
                task,
                action=TaskAction.CANCEL_COUNTER,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.COUNTER_CANCELLED,
                changes=dict(_COUNTER_CLEARED),
                payload={"withdrawn_counter": _money_payload(task.user_counter_cost)},
            )

    # Agent responses to a counter-offer

    def propose_agent_counter(
        self,
        task: TaskRecord,
        actor: Actor,
        cost: Money,
        *,
        at: datetime,
        notes: str | None = None,
    ) -> NegotiationResult:
        """Agent answers the requester's counter with a new quote."""
        with span("negotiation_engine.propose_agent_counter", task_id=task.id):
            if (error := self._check_cost(task, cost, label="Agent counter-offer")) is not None:
                return self._refuse(task, error)
            return self._apply(
                task,
                action=TaskAction.AGENT_COUNTER,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.AGENT_COUNTER_PROPOSED,
                changes={"proposed_cost": cost, "cost_notes": notes, "cost_proposed_at": at, **_COUNTER_CLEARED},
                payload={
                    "cost": _money_payload(cost),
                    "answered_counter": _money_payload(task.user_counter_cost),
                    "notes": notes,
                },
            )

    def accept_counter_offer(self, task: TaskRecord, actor: Actor, *, at: datetime) -> NegotiationResult:
        """Agent agrees to the requester's counter; the counter becomes the agreed cost."""
        with span("negotiation_engine.accept_counter_offer", task_id=task.id):
            outcome = self.state_machine.transition(task.status, TaskAction.ACCEPT_COUNTER, actor.role)
            if outcome.error is not None:
                return self._refuse(task, outcome.error)
            if task.user_counter_cost is None:
                return self._refuse(task, NoPriorProposalError(f"Task {task.id} has no counter-offer to accept"))

            return self._apply(
                task,
                action=TaskAction.ACCEPT_COUNTER,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.COUNTER_ACCEPTED,
                changes={"accepted_cost": task.user_counter_cost, "cost_accepted_at": at, **_COUNTER_CLEARED},
                payload={"accepted_cost": _money_payload(task.user_counter_cost)},
            )

    def reject_counter_offer(self, task: TaskRecord, actor: Actor, *, at: datetime) -> NegotiationResult:
        """Agent declines the requester's counter; the agent's proposal stands again."""
        with span("negotiation_engine.reject_counter_offer", task_id=task.id):
            outcome = self.state_machine.transition(task.status, TaskAction.REJECT_COUNTER, actor.role)
            if outcome.error is not None:
                return self._refuse(task, outcome.error)
            if task.proposed_cost is None:
                return self._refuse(task, NoPriorProposalError(f"Task {task.id} has no proposal to fall back on"))

            return self._apply(
                task,
                action=TaskAction.REJECT_COUNTER,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.COUNTER_REJECTED,
                changes=dict(_COUNTER_CLEARED),
                payload={
                    "rejected_counter": _money_payload(task.user_counter_cost),
                    "standing_cost": _money_payload(task.proposed_cost),
                },
            )

    # Closing the negotiation

    def cancel_negotiation(self, task: TaskRecord, actor: Actor, *, at: datetime) -> NegotiationResult:
        """Either party abandons the negotiation; every quote is dropped and the task reopens."""
        with span("negotiation_engine.cancel_negotiation", task_id=task.id):
            return self._apply(
                task,
                action=TaskAction.CANCEL_NEGOTIATION,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.NEGOTIATION_CANCELLED,
                changes={
                    "reviewer_id": None,
                    "proposed_cost": None,
                    "cost_notes": None,
                    "cost_proposed_at": None,
                    **_COUNTER_CLEARED,
                },
                payload={
                    "cancelled_by": actor.role.value,
                    "proposed_cost": _money_payload(task.proposed_cost),
                    "counter_cost": _money_payload(task.user_counter_cost),
                },
            )

    def finalize_negotiation(
        self,
        task: TaskRecord,
        actor: Actor,
        final_cost: Money,
        *,
        at: datetime,
    ) -> NegotiationResult:
        """Both parties confirm the agreed cost, locking it before assignment.

        `final_cost` must equal the accepted cost; a different amount means the
        parties are not actually in agreement.
        """
        with span("negotiation_engine.finalize_negotiation", task_id=task.id):
            if (error := self._check_cost(task, final_cost, label="Final cost")) is not None:
                return self._refuse(task, error)
            outcome = self.state_machine.transition(task.status, TaskAction.FINALIZE, actor.role)
            if outcome.error is not None:
                return self._refuse(task, outcome.error)
            if task.accepted_cost is None:
                return self._refuse(task, NoPriorProposalError(f"Task {task.id} has no accepted cost to finalize"))
            if final_cost != task.accepted_cost:
                return self._refuse(
                    task,
                    InvalidCostError(f"Final cost {final_cost} does not match the accepted cost {task.accepted_cost}"),
                )

            return self._apply(
                task,
                action=TaskAction.FINALIZE,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.NEGOTIATION_FINALIZED,
                payload={"final_cost": _money_payload(final_cost), "agreed_by": actor.role.value},
            )

    # Fulfilment

    def finalize_assignment(
        self,
        task: TaskRecord,
        actor: Actor,
        agent_id: str,
        *,
        at: datetime,
    ) -> NegotiationResult:
        """Bind the task to the agent who will deliver it at the agreed cost."""
        with span("negotiation_engine.finalize_assignment", task_id=task.id):
            return self._apply(
                task,
                action=TaskAction.ASSIGN,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.TASK_ASSIGNED,
                changes={"agent_id": agent_id, "assigned_at": at},
                payload={"agent_id": agent_id, "cost": _money_payload(task.effective_cost)},
            )

    # Multi-stop progress

    def _check_stop(self, task: TaskRecord, stop_index: int) -> InvalidStopError | None:
        if not 0 <= stop_index < task.stop_count:
            return InvalidStopError(f"Task {task.id} has no stop {stop_index} (it has {task.stop_count})")
        return None

    def add_stop_note(
        self,
        task: TaskRecord,
        actor: Actor,
        stop_index: int,
        note: str,
        *,
        at: datetime,
    ) -> NegotiationResult:
        """Attach a note to one stop, replacing any earlier note for it."""
        with span("negotiation_engine.add_stop_note", task_id=task.id, stop_index=stop_index):
            if (error := self._check_stop(task, stop_index)) is not None:
                return self._refuse(task, error)
            if not note.strip():
                return self._refuse(task, InvalidStopError("Stop note cannot be empty"))

            notes = [n for n in task.stop_notes if n.stop_index != stop_index]
            notes.append(StopNote(stop_index=stop_index, note=note.strip()))
            return self._apply(
                task,
                action=TaskAction.ADD_STOP_NOTE,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.STOP_NOTE_ADDED,
                changes={"stop_notes": tuple(sorted(notes, key=lambda n: n.stop_index))},
                payload={"stop_index": stop_index, "note": note.strip()},
            )

    def complete_stop(self, task: TaskRecord, actor: Actor, stop_index: int, *, at: datetime) -> NegotiationResult:
        """Agent marks one stop of an assigned task as done."""
        with span("negotiation_engine.complete_stop", task_id=task.id, stop_index=stop_index):
            if (error := self._check_stop(task, stop_index)) is not None:
                return self._refuse(task, error)
            if stop_index in task.completed_stops:
                return self._refuse(task, InvalidStopError(f"Stop {stop_index} of task {task.id} is already done"))

            return self._apply(
                task,
                action=TaskAction.COMPLETE_STOP,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.STOP_COMPLETED,
                changes={"completed_stops": tuple(sorted((*task.completed_stops, stop_index)))},
                payload={
                    "stop_index": stop_index,
                    "remaining_stops": task.stop_count - len(task.completed_stops) - 1,
                },
            )

    def mark_completed(self, task: TaskRecord, actor: Actor, *, at: datetime) -> NegotiationResult:
        with span("negotiation_engine.mark_completed", task_id=task.id):
            return self._apply(
                task,
                action=TaskAction.COMPLETE,
                actor=actor,
                at=at,
                kind=NegotiationEventKind.TASK_COMPLETED,
                # The open proposal is closed out; the agreed cost stays on record
                changes={"completed_at": at, "proposed_cost": None, "accepted_cost": task.effective_cost},
                payload={"cost": _money_payload(task.effective_cost)},
            )

    def expire(self, task: TaskRecord, now: datetime) -> NegotiationResult:
        """Expire a task whose scheduled time passed before anyone took it.

        `now` is supplied by the caller; the engine never reads a clock.
        """
        with span("negotiation_engine.expire", task_id=task.id):
            now = as_utc(now)
            if task.scheduled_at is None:
                return self._refuse(task, NotExpirableError(f"Task {task.id} has no scheduled time"))
            if now <= task.scheduled_at:
                return self._refuse(
                    task, NotExpirableError(f"Task {task.id} is scheduled for {task.scheduled_at.isoformat()}")
                )
            if task.status in (TaskStatus.COMPLETED, TaskStatus.ASSIGNED):
                return self._refuse(task, IllegalTransitionError(task.status.value, TaskAction.EXPIRE.value))

            return self._apply(
                task,
                action=TaskAction.EXPIRE,
                actor=Actor.system(),
                at=now,
                kind=NegotiationEventKind.TASK_EXPIRED,
                changes={"reviewer_id": None},
                payload={"scheduled_at": task.scheduled_at.isoformat()},
            )
