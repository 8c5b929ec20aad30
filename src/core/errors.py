"""Negotiation error taxonomy and user-facing error classification."""

from enum import Enum

from pydantic import BaseModel


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Negotiation errors
    ERR_ILLEGAL_TRANSITION = "ERR_ILLEGAL_TRANSITION"
    ERR_INVALID_COST = "ERR_INVALID_COST"
    ERR_NO_PRIOR_PROPOSAL = "ERR_NO_PRIOR_PROPOSAL"
    ERR_NOT_EXPIRABLE = "ERR_NOT_EXPIRABLE"
    ERR_INVALID_STOP = "ERR_INVALID_STOP"

    # Repository errors
    ERR_VERSION_CONFLICT = "ERR_VERSION_CONFLICT"
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class NegotiationError(Exception):
    """Base class for expected, recoverable negotiation failures."""

    code: str = ErrorCode.ERR_UNKNOWN


class IllegalTransitionError(NegotiationError):
    """The requested action is not allowed from the task's current status."""

    code = ErrorCode.ERR_ILLEGAL_TRANSITION

    def __init__(self, from_status: str, action: str, actor_role: str | None = None) -> None:
        self.from_status = from_status
        self.action = action
        self.actor_role = actor_role
        who = f" by {actor_role}" if actor_role else ""
        super().__init__(f"Cannot {action}{who} from status '{from_status}'")


class InvalidCostError(NegotiationError):
    """A cost the task cannot take: not positive, in another currency, or not the agreed amount."""

    code = ErrorCode.ERR_INVALID_COST


class NoPriorProposalError(NegotiationError):
    """The action needs an agent proposal to fall back on, and there is none."""

    code = ErrorCode.ERR_NO_PRIOR_PROPOSAL


class NotExpirableError(NegotiationError):
    """The task has no schedule, or its scheduled time has not passed yet."""

    code = ErrorCode.ERR_NOT_EXPIRABLE


class InvalidStopError(NegotiationError):
    """The stop does not exist on the task, its note is blank, or it was already completed."""

    code = ErrorCode.ERR_INVALID_STOP


class VersionConflictError(NegotiationError):
    """Raised by a repository when the stored version moved since the task was read."""

    code = ErrorCode.ERR_VERSION_CONFLICT

    def __init__(self, task_id: str, expected_version: int, actual_version: int) -> None:
        self.task_id = task_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Task {task_id} was modified concurrently: expected version {expected_version}, "
            f"found {actual_version}"
        )


class TaskNotFoundError(NegotiationError, KeyError):
    """Raised by a repository when no task exists for the given ID."""

    code = ErrorCode.ERR_TASK_NOT_FOUND

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")

    def __str__(self) -> str:
        # KeyError would otherwise quote the message
        return self.args[0]


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


_RESPONSES: dict[str, tuple[str, str, ErrorSeverity]] = {
    ErrorCode.ERR_ILLEGAL_TRANSITION: (
        "This action cannot be performed in the task's current state.",
        "Refresh the task to see its latest status and try again.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_INVALID_COST: (
        "The cost must be greater than zero.",
        "Enter a positive amount and submit again.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_NO_PRIOR_PROPOSAL: (
        "There is no delivery cost proposal to go back to.",
        "Wait for the agent to propose a cost.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_NOT_EXPIRABLE: (
        "This task is not past its scheduled time.",
        "Only scheduled tasks whose time has elapsed can expire.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_INVALID_STOP: (
        "That stop can't be updated.",
        "Check the stop number and that the note isn't empty.",
        ErrorSeverity.LOW,
    ),
    ErrorCode.ERR_VERSION_CONFLICT: (
        "Someone else updated this task at the same time.",
        "Reload the task and try again.",
        ErrorSeverity.MEDIUM,
    ),
    ErrorCode.ERR_TASK_NOT_FOUND: (
        "I couldn't find that task.",
        "It may have been removed. Refresh your task list.",
        ErrorSeverity.MEDIUM,
    ),
}


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception returned or raised during a negotiation call

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, NegotiationError) and exception.code in _RESPONSES:
        message, suggestion, severity = _RESPONSES[exception.code]
        return ErrorResponse(code=exception.code, message=message, suggestion=suggestion, severity=severity)

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
