"""Unit tests for the negotiation transition table."""

import itertools

import pytest

from src.core.errors import IllegalTransitionError
from src.domain import ActorRole, TaskStatus
from src.modules.tasks.state_machine import TRANSITIONS, NegotiationStateMachine, TaskAction


@pytest.fixture
def machine() -> NegotiationStateMachine:
    return NegotiationStateMachine()


@pytest.mark.unit
class TestPermittedTransitions:
    """Every row of the table is reachable by its allowed actor."""

    @pytest.mark.parametrize(
        ("current", "action", "actor", "expected"),
        [
            (TaskStatus.PENDING, TaskAction.BEGIN_REVIEW, ActorRole.AGENT, TaskStatus.COST_REVIEW),
            (TaskStatus.SCHEDULED, TaskAction.BEGIN_REVIEW, ActorRole.AGENT, TaskStatus.COST_REVIEW),
            (TaskStatus.COST_REVIEW, TaskAction.CANCEL_REVIEW, ActorRole.AGENT, TaskStatus.PENDING),
            (TaskStatus.COST_REVIEW, TaskAction.PROPOSE_COST, ActorRole.AGENT, TaskStatus.COST_PROPOSED),
            (TaskStatus.COST_PROPOSED, TaskAction.UPDATE_PROPOSAL, ActorRole.AGENT, TaskStatus.COST_PROPOSED),
            (TaskStatus.COST_PROPOSED, TaskAction.ACCEPT_COST, ActorRole.REQUESTER, TaskStatus.COST_ACCEPTED),
            (TaskStatus.COST_PROPOSED, TaskAction.REJECT_COST, ActorRole.REQUESTER, TaskStatus.COST_REVIEW),
            (
                TaskStatus.COST_PROPOSED,
                TaskAction.PROPOSE_COUNTER,
                ActorRole.REQUESTER,
                TaskStatus.USER_COUNTER_PROPOSED,
            ),
            (
                TaskStatus.USER_COUNTER_PROPOSED,
                TaskAction.CANCEL_COUNTER,
                ActorRole.REQUESTER,
                TaskStatus.COST_PROPOSED,
            ),
            (TaskStatus.USER_COUNTER_PROPOSED, TaskAction.ACCEPT_COST, ActorRole.REQUESTER, TaskStatus.COST_ACCEPTED),
            (
                TaskStatus.USER_COUNTER_PROPOSED,
                TaskAction.AGENT_COUNTER,
                ActorRole.AGENT,
                TaskStatus.DELIVERY_COUNTER_PROPOSED,
            ),
            (TaskStatus.USER_COUNTER_PROPOSED, TaskAction.ACCEPT_COUNTER, ActorRole.AGENT, TaskStatus.COST_ACCEPTED),
            (TaskStatus.USER_COUNTER_PROPOSED, TaskAction.REJECT_COUNTER, ActorRole.AGENT, TaskStatus.COST_PROPOSED),
            (
                TaskStatus.DELIVERY_COUNTER_PROPOSED,
                TaskAction.ACCEPT_COST,
                ActorRole.REQUESTER,
                TaskStatus.COST_ACCEPTED,
            ),
            (TaskStatus.COST_REVIEW, TaskAction.CANCEL_NEGOTIATION, ActorRole.AGENT, TaskStatus.PENDING),
            (TaskStatus.COST_PROPOSED, TaskAction.CANCEL_NEGOTIATION, ActorRole.REQUESTER, TaskStatus.PENDING),
            (
                TaskStatus.DELIVERY_COUNTER_PROPOSED,
                TaskAction.CANCEL_NEGOTIATION,
                ActorRole.AGENT,
                TaskStatus.PENDING,
            ),
            (
                TaskStatus.COST_ACCEPTED,
                TaskAction.FINALIZE,
                ActorRole.REQUESTER,
                TaskStatus.NEGOTIATION_FINALIZED,
            ),
            (TaskStatus.COST_ACCEPTED, TaskAction.ASSIGN, ActorRole.AGENT, TaskStatus.ASSIGNED),
            (TaskStatus.COST_ACCEPTED, TaskAction.ASSIGN, ActorRole.SYSTEM, TaskStatus.ASSIGNED),
            (TaskStatus.NEGOTIATION_FINALIZED, TaskAction.ASSIGN, ActorRole.SYSTEM, TaskStatus.ASSIGNED),
            (TaskStatus.PENDING, TaskAction.EXPIRE, ActorRole.SYSTEM, TaskStatus.EXPIRED),
            (TaskStatus.SCHEDULED, TaskAction.EXPIRE, ActorRole.SYSTEM, TaskStatus.EXPIRED),
            (TaskStatus.ASSIGNED, TaskAction.COMPLETE_STOP, ActorRole.AGENT, TaskStatus.ASSIGNED),
            (TaskStatus.ASSIGNED, TaskAction.ADD_STOP_NOTE, ActorRole.REQUESTER, TaskStatus.ASSIGNED),
            (TaskStatus.PENDING, TaskAction.ADD_STOP_NOTE, ActorRole.AGENT, TaskStatus.PENDING),
            (TaskStatus.ASSIGNED, TaskAction.COMPLETE, ActorRole.AGENT, TaskStatus.COMPLETED),
            (TaskStatus.ASSIGNED, TaskAction.COMPLETE, ActorRole.REQUESTER, TaskStatus.COMPLETED),
        ],
    )
    def test_transition(self, machine, current, action, actor, expected):
        """Test that each listed row yields its target status."""
        outcome = machine.transition(current, action, actor)

        assert outcome.ok
        assert outcome.status == expected

    def test_reject_target_is_configurable(self):
        """Test that reject can be pointed at the open pool."""
        machine = NegotiationStateMachine(reject_target=TaskStatus.PENDING)

        outcome = machine.transition(TaskStatus.COST_PROPOSED, TaskAction.REJECT_COST, ActorRole.REQUESTER)

        assert outcome.status == TaskStatus.PENDING

    def test_reject_target_must_be_review_or_pending(self):
        with pytest.raises(ValueError, match="Reject target"):
            NegotiationStateMachine(reject_target=TaskStatus.EXPIRED)


@pytest.mark.unit
class TestIllegalTransitions:
    """Anything outside the table is refused with IllegalTransitionError."""

    def test_every_pair_outside_the_table_is_illegal(self, machine):
        """Test every (status, action, role) combination not in the table."""
        for status, action, role in itertools.product(TaskStatus, TaskAction, ActorRole):
            rule = TRANSITIONS.get((status, action))
            if rule is not None and role in rule[0]:
                continue

            outcome = machine.transition(status, action, role)

            assert not outcome.ok, (status, action, role)
            assert outcome.status is None
            assert isinstance(outcome.error, IllegalTransitionError)
            assert outcome.error.from_status == status.value
            assert outcome.error.action == action.value

    def test_wrong_actor_is_illegal(self, machine):
        """Test that the agent cannot accept its own proposal."""
        outcome = machine.transition(TaskStatus.COST_PROPOSED, TaskAction.ACCEPT_COST, ActorRole.AGENT)

        assert isinstance(outcome.error, IllegalTransitionError)
        assert "by agent" in str(outcome.error)

    def test_accepted_price_cannot_be_cancelled(self, machine):
        """Test that a cancel after acceptance is refused."""
        outcome = machine.transition(TaskStatus.COST_ACCEPTED, TaskAction.CANCEL_NEGOTIATION, ActorRole.REQUESTER)

        assert isinstance(outcome.error, IllegalTransitionError)

    @pytest.mark.parametrize("status", [TaskStatus.EXPIRED, TaskStatus.COMPLETED])
    def test_terminal_statuses(self, machine, status):
        """Test that closed statuses offer no action to anyone."""
        assert machine.is_terminal(status)
        for role in ActorRole:
            assert machine.allowed_actions(status, role) == []

    def test_finalized_negotiation_is_not_terminal(self, machine):
        assert not machine.is_terminal(TaskStatus.NEGOTIATION_FINALIZED)
        assert machine.allowed_actions(TaskStatus.NEGOTIATION_FINALIZED, ActorRole.SYSTEM) == [TaskAction.ASSIGN]

    def test_allowed_actions_for_requester_on_proposal(self, machine):
        """Test the requester's options on an open proposal, in table order."""
        actions = machine.allowed_actions(TaskStatus.COST_PROPOSED, ActorRole.REQUESTER)

        assert actions == [
            TaskAction.ACCEPT_COST,
            TaskAction.REJECT_COST,
            TaskAction.PROPOSE_COUNTER,
            TaskAction.CANCEL_NEGOTIATION,
            TaskAction.ADD_STOP_NOTE,
        ]
