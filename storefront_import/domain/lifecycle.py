"""
Import job lifecycle: the allowed status transitions.

Monotonic except for running <-> paused.  Terminal statuses map to the
empty set, so a completed, failed or cancelled job never moves again.
"""

from storefront_kernel.exceptions import InvalidJobStateError

from storefront_import.domain.types import ImportJobStatus

# Allowed status transitions (from -> set of valid next states)
ALLOWED_TRANSITIONS: dict[ImportJobStatus, frozenset[ImportJobStatus]] = {
    ImportJobStatus.PENDING: frozenset({
        ImportJobStatus.RUNNING,
        ImportJobStatus.FAILED,
        ImportJobStatus.CANCELLED,
    }),
    ImportJobStatus.RUNNING: frozenset({
        ImportJobStatus.PAUSED,
        ImportJobStatus.COMPLETED,
        ImportJobStatus.FAILED,
        ImportJobStatus.CANCELLED,
    }),
    ImportJobStatus.PAUSED: frozenset({
        ImportJobStatus.RUNNING,
        ImportJobStatus.CANCELLED,
    }),
    ImportJobStatus.COMPLETED: frozenset(),  # Terminal
    ImportJobStatus.FAILED: frozenset(),  # Terminal
    ImportJobStatus.CANCELLED: frozenset(),  # Terminal
}

TERMINAL_STATUSES: frozenset[ImportJobStatus] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

ACTIVE_STATUSES: frozenset[ImportJobStatus] = frozenset(
    set(ImportJobStatus) - TERMINAL_STATUSES
)


def validate_transition(current: ImportJobStatus, target: ImportJobStatus) -> bool:
    """Check if a status transition is valid."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def require_transition(
    job_id: str, current: ImportJobStatus, target: ImportJobStatus, action: str,
) -> None:
    """Raise InvalidJobStateError unless ``current -> target`` is allowed."""
    if not validate_transition(current, target):
        raise InvalidJobStateError(job_id, current.value, action)
