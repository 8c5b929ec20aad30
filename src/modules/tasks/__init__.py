"""Task lifecycle: transition table and read-only projections."""

from src.modules.tasks.projections import available_actions, is_negotiating, progress_steps
from src.modules.tasks.state_machine import TRANSITIONS, NegotiationStateMachine, TaskAction, TransitionOutcome


__all__ = [
    "TRANSITIONS",
    "NegotiationStateMachine",
    "TaskAction",
    "TransitionOutcome",
    "available_actions",
    "is_negotiating",
    "progress_steps",
]
