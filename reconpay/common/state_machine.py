"""Job status transitions enforced by the job store."""

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

# processing -> processing is a stale reclaim; failed -> pending is the operator reset.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {PROCESSING},
    PROCESSING: {PROCESSING, COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: {PENDING},
}


class InvalidTransition(ValueError):
    """A job status change the queue does not permit."""


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Invalid transition: {current} -> {new}")


def is_terminal(status: str) -> bool:
    return status in (COMPLETED, FAILED)
