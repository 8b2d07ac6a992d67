"""Pure domain layer for import jobs.  ZERO I/O."""

from storefront_import.domain.lifecycle import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    require_transition,
    validate_transition,
)
from storefront_import.domain.mapping import map_external_order
from storefront_import.domain.types import (
    BatchCompleted,
    BatchOutcome,
    Checkpoint,
    CounterDelta,
    Counters,
    DuplicatePolicy,
    FatalError,
    ImportJob,
    ImportJobStatus,
    ImportOptions,
    NoMorePages,
    OutcomeKind,
    ProgressSnapshot,
    ReconciliationOutcome,
    RecordFailure,
    compute_percentage,
)

__all__ = [
    "ACTIVE_STATUSES",
    "ALLOWED_TRANSITIONS",
    "BatchCompleted",
    "BatchOutcome",
    "Checkpoint",
    "CounterDelta",
    "Counters",
    "DuplicatePolicy",
    "FatalError",
    "ImportJob",
    "ImportJobStatus",
    "ImportOptions",
    "NoMorePages",
    "OutcomeKind",
    "ProgressSnapshot",
    "ReconciliationOutcome",
    "RecordFailure",
    "TERMINAL_STATUSES",
    "compute_percentage",
    "map_external_order",
    "require_transition",
    "validate_transition",
]
