"""Read-only views over a TaskRecord for presentation layers.

These hold the status rules screens need (which panel to show, which
buttons to enable, how far along the progress bar is) so no UI has to
switch over TaskStatus itself.
"""

from dataclasses import dataclass
from enum import StrEnum

from src.domain.event import ActorRole
from src.domain.money import Money
from src.domain.task import TaskRecord, TaskStatus
from src.modules.tasks.state_machine import NegotiationStateMachine, TaskAction


NEGOTIATING_STATUSES = frozenset(
    {
        TaskStatus.COST_REVIEW,
        TaskStatus.COST_PROPOSED,
        TaskStatus.USER_COUNTER_PROPOSED,
        TaskStatus.DELIVERY_COUNTER_PROPOSED,
        TaskStatus.COST_ACCEPTED,
    }
)


class ProgressStep(StrEnum):
    PENDING = "pending"
    COST_REVIEW = "cost_review"
    COST_AGREED = "cost_agreed"
    ASSIGNED = "assigned"
    COMPLETED = "completed"


@dataclass(frozen=True)
class StepState:
    step: ProgressStep
    is_active: bool
    is_completed: bool


# Steps a status has fully passed
_COMPLETED_STEPS: dict[TaskStatus, frozenset[ProgressStep]] = {
    TaskStatus.COST_REVIEW: frozenset({ProgressStep.PENDING, ProgressStep.COST_REVIEW}),
    TaskStatus.COST_PROPOSED: frozenset({ProgressStep.PENDING, ProgressStep.COST_REVIEW}),
    TaskStatus.USER_COUNTER_PROPOSED: frozenset({ProgressStep.PENDING, ProgressStep.COST_REVIEW}),
    TaskStatus.DELIVERY_COUNTER_PROPOSED: frozenset({ProgressStep.PENDING, ProgressStep.COST_REVIEW}),
    TaskStatus.COST_ACCEPTED: frozenset(
        {ProgressStep.PENDING, ProgressStep.COST_REVIEW, ProgressStep.COST_AGREED}
    ),
    TaskStatus.NEGOTIATION_FINALIZED: frozenset(
        {ProgressStep.PENDING, ProgressStep.COST_REVIEW, ProgressStep.COST_AGREED}
    ),
    TaskStatus.ASSIGNED: frozenset(
        {ProgressStep.PENDING, ProgressStep.COST_REVIEW, ProgressStep.COST_AGREED, ProgressStep.ASSIGNED}
    ),
    TaskStatus.COMPLETED: frozenset(ProgressStep),
}

_ACTIVE_STEP: dict[TaskStatus, ProgressStep] = {
    TaskStatus.PENDING: ProgressStep.PENDING,
    TaskStatus.SCHEDULED: ProgressStep.PENDING,
    TaskStatus.COST_REVIEW: ProgressStep.COST_REVIEW,
    TaskStatus.COST_PROPOSED: ProgressStep.COST_AGREED,
    TaskStatus.USER_COUNTER_PROPOSED: ProgressStep.COST_AGREED,
    TaskStatus.DELIVERY_COUNTER_PROPOSED: ProgressStep.COST_AGREED,
    TaskStatus.COST_ACCEPTED: ProgressStep.COST_AGREED,
    TaskStatus.NEGOTIATION_FINALIZED: ProgressStep.COST_AGREED,
    TaskStatus.ASSIGNED: ProgressStep.ASSIGNED,
    TaskStatus.COMPLETED: ProgressStep.COMPLETED,
}


def is_negotiating(status: TaskStatus) -> bool:
    """Whether the cost negotiation panel applies to this status."""
    return status in NEGOTIATING_STATUSES


def progress_steps(status: TaskStatus) -> list[StepState]:
    """Progress bar state; an expired task shows no active step."""
    done = _COMPLETED_STEPS.get(status, frozenset())
    active = _ACTIVE_STEP.get(status)
    return [StepState(step=step, is_active=step == active, is_completed=step in done) for step in ProgressStep]


def available_actions(
    task: TaskRecord,
    role: ActorRole,
    *,
    state_machine: NegotiationStateMachine | None = None,
) -> list[TaskAction]:
    """Actions the role may take on the task right now.

    Expiry is left out for tasks whose scheduled time is unknown, and stop
    completion once every stop is done, since the engine would refuse both.
    """
    machine = state_machine or NegotiationStateMachine()
    actions = machine.allowed_actions(task.status, role)
    if task.scheduled_at is None:
        actions = [action for action in actions if action != TaskAction.EXPIRE]
    if len(task.completed_stops) == task.stop_count:
        actions = [action for action in actions if action != TaskAction.COMPLETE_STOP]
    return actions


def effective_cost(task: TaskRecord) -> Money | None:
    return task.effective_cost
