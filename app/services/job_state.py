"""
Job lifecycle states and the transitions allowed between them.
"""

from enum import Enum


class JobStatus(str, Enum):
    """Status of a shorts job."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES: frozenset[JobStatus] = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.DOWNLOADING, JobStatus.FAILED}),
    JobStatus.DOWNLOADING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

# Every status must have an entry
assert set(_ALLOWED_TRANSITIONS) == set(JobStatus)


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATES


def allowed_next_statuses(status: JobStatus) -> list[JobStatus]:
    """Return deterministically ordered allowed successors for a status."""
    return sorted(_ALLOWED_TRANSITIONS[status], key=lambda s: s.value)


def ensure_transition(old_status: JobStatus, new_status: JobStatus) -> None:
    """
    Validate a status transition.

    Raises:
        InvalidTransitionError: If the transition is not part of the lifecycle
    """
    if old_status in TERMINAL_STATES:
        raise InvalidTransitionError(
            old_status, new_status, f"Job is already {old_status.value}; terminal states are immutable"
        )

    if new_status not in _ALLOWED_TRANSITIONS[old_status]:
        allowed = ", ".join(s.value for s in allowed_next_statuses(old_status))
        raise InvalidTransitionError(
            old_status, new_status,
            f"Invalid status transition {old_status.value} -> {new_status.value} (allowed: {allowed})",
        )


class InvalidTransitionError(Exception):
    """Exception raised when a job is moved along a transition the lifecycle does not allow."""

    def __init__(self, current_status: JobStatus, attempted_status: JobStatus, message: str):
        self.current_status = current_status
        self.attempted_status = attempted_status
        super().__init__(message)
