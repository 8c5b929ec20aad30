"""Pure state transition table for the task lifecycle and cost negotiation."""

import logging
from dataclasses import dataclass
from enum import StrEnum

from src.core.errors import IllegalTransitionError
from src.domain.event import ActorRole
from src.domain.task import TaskStatus


logger = logging.getLogger(__name__)


class TaskAction(StrEnum):
    """Actions a party can request on a task."""

    BEGIN_REVIEW = "begin_review"
    CANCEL_REVIEW = "cancel_review"
    PROPOSE_COST = "propose_cost"
    UPDATE_PROPOSAL = "update_proposal"
    ACCEPT_COST = "accept_cost"
    REJECT_COST = "reject_cost"
    PROPOSE_COUNTER = "propose_counter"
    CANCEL_COUNTER = "cancel_counter"
    ACCEPT_COUNTER = "accept_counter"
    REJECT_COUNTER = "reject_counter"
    AGENT_COUNTER = "agent_counter"
    CANCEL_NEGOTIATION = "cancel_negotiation"
    FINALIZE = "finalize"
    ASSIGN = "assign"
    ADD_STOP_NOTE = "add_stop_note"
    COMPLETE_STOP = "complete_stop"
    COMPLETE = "complete"
    EXPIRE = "expire"


_AGENT = frozenset({ActorRole.AGENT})
_REQUESTER = frozenset({ActorRole.REQUESTER})
_SYSTEM = frozenset({ActorRole.SYSTEM})
_PARTIES = _AGENT | _REQUESTER

# Sentinel target resolved to the machine's configured reject target
_REJECT_TARGET = None

# (from, action) -> (allowed actor roles, to)
# A PENDING target means the open pool; the engine substitutes SCHEDULED while the task time is ahead
TRANSITIONS: dict[tuple[TaskStatus, TaskAction], tuple[frozenset[ActorRole], TaskStatus | None]] = {
    (TaskStatus.PENDING, TaskAction.BEGIN_REVIEW): (_AGENT, TaskStatus.COST_REVIEW),
    (TaskStatus.SCHEDULED, TaskAction.BEGIN_REVIEW): (_AGENT, TaskStatus.COST_REVIEW),
    (TaskStatus.COST_REVIEW, TaskAction.CANCEL_REVIEW): (_AGENT, TaskStatus.PENDING),
    (TaskStatus.COST_REVIEW, TaskAction.PROPOSE_COST): (_AGENT, TaskStatus.COST_PROPOSED),
    (TaskStatus.COST_PROPOSED, TaskAction.UPDATE_PROPOSAL): (_AGENT, TaskStatus.COST_PROPOSED),
    (TaskStatus.COST_PROPOSED, TaskAction.ACCEPT_COST): (_REQUESTER, TaskStatus.COST_ACCEPTED),
    (TaskStatus.COST_PROPOSED, TaskAction.REJECT_COST): (_REQUESTER, _REJECT_TARGET),
    (TaskStatus.COST_PROPOSED, TaskAction.PROPOSE_COUNTER): (_REQUESTER, TaskStatus.USER_COUNTER_PROPOSED),
    (TaskStatus.USER_COUNTER_PROPOSED, TaskAction.CANCEL_COUNTER): (_REQUESTER, TaskStatus.COST_PROPOSED),
    (TaskStatus.USER_COUNTER_PROPOSED, TaskAction.ACCEPT_COST): (_REQUESTER, TaskStatus.COST_ACCEPTED),
    (TaskStatus.USER_COUNTER_PROPOSED, TaskAction.AGENT_COUNTER): (_AGENT, TaskStatus.DELIVERY_COUNTER_PROPOSED),
    (TaskStatus.USER_COUNTER_PROPOSED, TaskAction.ACCEPT_COUNTER): (_AGENT, TaskStatus.COST_ACCEPTED),
    (TaskStatus.USER_COUNTER_PROPOSED, TaskAction.REJECT_COUNTER): (_AGENT, TaskStatus.COST_PROPOSED),
    (TaskStatus.DELIVERY_COUNTER_PROPOSED, TaskAction.ACCEPT_COST): (_REQUESTER, TaskStatus.COST_ACCEPTED),
    (TaskStatus.DELIVERY_COUNTER_PROPOSED, TaskAction.PROPOSE_COUNTER): (
        _REQUESTER,
        TaskStatus.USER_COUNTER_PROPOSED,
    ),
    (TaskStatus.COST_ACCEPTED, TaskAction.FINALIZE): (_PARTIES, TaskStatus.NEGOTIATION_FINALIZED),
    (TaskStatus.COST_ACCEPTED, TaskAction.ASSIGN): (_AGENT | _SYSTEM, TaskStatus.ASSIGNED),
    (TaskStatus.NEGOTIATION_FINALIZED, TaskAction.ASSIGN): (_AGENT | _SYSTEM, TaskStatus.ASSIGNED),
    (TaskStatus.PENDING, TaskAction.EXPIRE): (_SYSTEM, TaskStatus.EXPIRED),
    (TaskStatus.SCHEDULED, TaskAction.EXPIRE): (_SYSTEM, TaskStatus.EXPIRED),
    (TaskStatus.ASSIGNED, TaskAction.COMPLETE): (_PARTIES, TaskStatus.COMPLETED),
    (TaskStatus.ASSIGNED, TaskAction.COMPLETE_STOP): (_AGENT, TaskStatus.ASSIGNED),
}

# Either party can walk away while the price is still open; the task goes back to the open pool
TRANSITIONS.update(
    {
        (status, TaskAction.CANCEL_NEGOTIATION): (_PARTIES, TaskStatus.PENDING)
        for status in (
            TaskStatus.COST_REVIEW,
            TaskStatus.COST_PROPOSED,
            TaskStatus.USER_COUNTER_PROPOSED,
            TaskStatus.DELIVERY_COUNTER_PROPOSED,
        )
    }
)

# Stop notes leave the status unchanged and are allowed until the task is closed
TRANSITIONS.update(
    {
        (status, TaskAction.ADD_STOP_NOTE): (_PARTIES, status)
        for status in TaskStatus
        if status not in (TaskStatus.COMPLETED, TaskStatus.EXPIRED)
    }
)

REJECT_TARGETS = frozenset({TaskStatus.COST_REVIEW, TaskStatus.PENDING})


@dataclass(frozen=True)
class TransitionOutcome:
    """Either the next status or the reason the move was refused."""

    status: TaskStatus | None = None
    error: IllegalTransitionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class NegotiationStateMachine:
    """Validates status moves against TRANSITIONS. Holds no task state."""

    def __init__(self, *, reject_target: TaskStatus = TaskStatus.COST_REVIEW) -> None:
        if reject_target not in REJECT_TARGETS:
            msg = f"Reject target must be one of {sorted(REJECT_TARGETS)}, got {reject_target}"
            raise ValueError(msg)
        self.reject_target = reject_target

    def transition(self, current: TaskStatus, action: TaskAction, actor: ActorRole) -> TransitionOutcome:
        """Return the status reached by applying action from current, or an IllegalTransitionError."""
        rule = TRANSITIONS.get((current, action))
        if rule is None or actor not in rule[0]:
            logger.debug("Refused %s by %s from %s", action, actor, current)
            return TransitionOutcome(error=IllegalTransitionError(current.value, action.value, actor.value))

        target = rule[1] if rule[1] is not None else self.reject_target
        return TransitionOutcome(status=target)

    def allowed_actions(self, current: TaskStatus, actor: ActorRole) -> list[TaskAction]:
        """Actions the actor may take from current, in declaration order."""
        return [action for (status, action), (roles, _) in TRANSITIONS.items() if status == current and actor in roles]

    def is_terminal(self, current: TaskStatus) -> bool:
        return not any(status == current for status, _ in TRANSITIONS)
