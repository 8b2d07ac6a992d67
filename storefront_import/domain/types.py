"""
storefront_import.domain.types -- Pure frozen dataclasses for import jobs.

ZERO I/O.  Frozen dataclasses with str-enum status fields and tuples for
immutable collections.

Invariants enforced:
    - All DTOs are immutable; every state change produces a new value.
    - ``Counters.apply`` never decreases a counter and keeps
      ``processed_orders <= grand_total`` by raising ``grand_total`` when
      the remote catalog grew after it was counted.
    - ``Checkpoint`` + ``Counters`` is the entire resumable state of a job.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Union
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class ImportJobStatus(str, Enum):
    """Job-level lifecycle status."""

    PENDING = "pending"  # Created, first batch not yet scheduled
    RUNNING = "running"  # Batches are being scheduled
    PAUSED = "paused"  # Stopped at a batch boundary, resumable
    COMPLETED = "completed"  # No more pages (or limit reached)
    FAILED = "failed"  # Job-level fatal error
    CANCELLED = "cancelled"  # Stopped by operator, never resumes


class DuplicatePolicy(str, Enum):
    """What to do when an external order already exists locally."""

    SKIP = "skip"
    UPDATE = "update"


class OutcomeKind(str, Enum):
    """Per-record reconciliation result."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


# =============================================================================
# Options
# =============================================================================


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True)
class ImportOptions:
    """Caller-supplied parameters, fixed for the life of a job.

    ``limit`` of None means "import everything the filters match".
    ``status_mapping`` overrides the default external -> local status map.
    """

    duplicate_policy: DuplicatePolicy = DuplicatePolicy.SKIP
    page_size: int = 50
    status_filter: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    limit: int | None = None
    status_mapping: dict[str, str] = field(default_factory=dict)
    triggered_by: str = "user"  # user | system

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self.page_size}")
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"limit must be >= 1 or None, got {self.limit}")
        if (
            self.created_after is not None
            and self.created_before is not None
            and self.created_after > self.created_before
        ):
            raise ValueError("created_after must not be later than created_before")
        if self.triggered_by not in ("user", "system"):
            raise ValueError(f"triggered_by must be 'user' or 'system', got {self.triggered_by!r}")

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation for the job row."""
        return {
            "duplicate_policy": self.duplicate_policy.value,
            "page_size": self.page_size,
            "status_filter": self.status_filter,
            "created_after": self.created_after.isoformat() if self.created_after else None,
            "created_before": self.created_before.isoformat() if self.created_before else None,
            "limit": self.limit,
            "status_mapping": dict(self.status_mapping),
            "triggered_by": self.triggered_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImportOptions:
        limit = data.get("limit")
        # "all" is accepted from operator input as the no-limit sentinel.
        if limit in ("all", "", 0):
            limit = None
        return cls(
            duplicate_policy=DuplicatePolicy(data.get("duplicate_policy", "skip")),
            page_size=int(data.get("page_size", 50)),
            status_filter=data.get("status_filter") or None,
            created_after=_parse_dt(data.get("created_after")),
            created_before=_parse_dt(data.get("created_before")),
            limit=int(limit) if limit is not None else None,
            status_mapping=dict(data.get("status_mapping") or {}),
            triggered_by=data.get("triggered_by", "user"),
        )


# =============================================================================
# Resumable state
# =============================================================================


@dataclass(frozen=True)
class Checkpoint:
    """Position in the remote catalog.

    ``current_page`` is the 1-based page the next batch will fetch;
    ``current_batch`` is the number of batches already applied.
    """

    current_page: int = 1
    current_batch: int = 0
    total_pages: int | None = None
    total_batches: int | None = None

    def advance(self) -> Checkpoint:
        return replace(
            self,
            current_page=self.current_page + 1,
            current_batch=self.current_batch + 1,
        )

    def with_totals(self, grand_total: int, page_size: int) -> Checkpoint:
        pages = math.ceil(grand_total / page_size) if grand_total else 0
        return replace(self, total_pages=pages, total_batches=pages)


@dataclass(frozen=True)
class CounterDelta:
    """Counter increments produced by one batch."""

    imported: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.imported + self.updated + self.skipped + self.failed

    def add(self, outcome: ReconciliationOutcome) -> CounterDelta:
        if outcome.kind is OutcomeKind.CREATED:
            return replace(self, imported=self.imported + 1)
        if outcome.kind is OutcomeKind.UPDATED:
            return replace(self, updated=self.updated + 1)
        if outcome.kind is OutcomeKind.SKIPPED:
            return replace(self, skipped=self.skipped + 1)
        return replace(self, failed=self.failed + 1)


@dataclass(frozen=True)
class Counters:
    """Cumulative job counters.  Only ever increase."""

    processed_orders: int = 0
    grand_total: int | None = None
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def apply(self, delta: CounterDelta, grand_total: int | None = None) -> Counters:
        """Add ``delta``; adopt ``grand_total`` if given, clamped up to processed."""
        processed = self.processed_orders + delta.processed
        total = grand_total if grand_total is not None else self.grand_total
        if total is not None and processed > total:
            total = processed
        return Counters(
            processed_orders=processed,
            grand_total=total,
            imported=self.imported + delta.imported,
            updated=self.updated + delta.updated,
            skipped=self.skipped + delta.skipped,
            failed=self.failed + delta.failed,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed_orders": self.processed_orders,
            "grand_total": self.grand_total,
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def compute_percentage(processed: int, grand_total: int | None) -> float | None:
    """Progress percentage rounded to 2 decimals; None while the total is unknown."""
    if grand_total is None:
        return None
    if grand_total == 0:
        return 100.0
    return round(min(processed, grand_total) / grand_total * 100, 2)


# =============================================================================
# Job DTO
# =============================================================================


@dataclass(frozen=True)
class ImportJob:
    """Immutable point-in-time snapshot of an import job."""

    job_id: UUID
    tenant_id: str
    status: ImportJobStatus
    options: ImportOptions = field(default_factory=ImportOptions)
    checkpoint: Checkpoint = field(default_factory=Checkpoint)
    counters: Counters = field(default_factory=Counters)
    last_error: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: UUID | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            ImportJobStatus.COMPLETED,
            ImportJobStatus.FAILED,
            ImportJobStatus.CANCELLED,
        )

    @property
    def percentage(self) -> float | None:
        return compute_percentage(self.counters.processed_orders, self.counters.grand_total)


# =============================================================================
# Reconciliation
# =============================================================================


@dataclass(frozen=True)
class ReconciliationOutcome:
    """Result of reconciling one external record."""

    kind: OutcomeKind
    external_id: str | None = None
    reason: str | None = None
    reason_code: str | None = None
    order_id: UUID | None = None

    @classmethod
    def created(cls, external_id: str, order_id: UUID) -> ReconciliationOutcome:
        return cls(OutcomeKind.CREATED, external_id=external_id, order_id=order_id)

    @classmethod
    def updated(cls, external_id: str, order_id: UUID) -> ReconciliationOutcome:
        return cls(OutcomeKind.UPDATED, external_id=external_id, order_id=order_id)

    @classmethod
    def skipped(cls, external_id: str, reason: str, order_id: UUID | None = None) -> ReconciliationOutcome:
        return cls(OutcomeKind.SKIPPED, external_id=external_id, reason=reason, order_id=order_id)

    @classmethod
    def failed(
        cls, external_id: str | None, reason: str, reason_code: str = "UNHANDLED_EXCEPTION",
    ) -> ReconciliationOutcome:
        return cls(
            OutcomeKind.FAILED, external_id=external_id, reason=reason, reason_code=reason_code,
        )


@dataclass(frozen=True)
class RecordFailure:
    """A failed record, persisted for audit."""

    page: int
    batch: int
    external_id: str | None
    reason_code: str
    message: str
    created_at: datetime | None = None


# =============================================================================
# Batch outcomes
# =============================================================================


@dataclass(frozen=True)
class BatchCompleted:
    """A page was processed and more pages may follow."""

    checkpoint: Checkpoint
    delta: CounterDelta = field(default_factory=CounterDelta)
    grand_total: int | None = None
    failures: tuple[RecordFailure, ...] = ()


@dataclass(frozen=True)
class NoMorePages:
    """The last page was processed (or the limit was reached)."""

    checkpoint: Checkpoint
    delta: CounterDelta = field(default_factory=CounterDelta)
    grand_total: int | None = None
    failures: tuple[RecordFailure, ...] = ()


@dataclass(frozen=True)
class FatalError:
    """The job cannot continue."""

    message: str
    error_code: str = "IMPORT_FATAL"


BatchOutcome = Union[BatchCompleted, NoMorePages, FatalError]


# =============================================================================
# Progress
# =============================================================================


@dataclass(frozen=True)
class ProgressSnapshot:
    """Cumulative progress event delivered to subscribers."""

    job_id: UUID
    tenant_id: str
    status: ImportJobStatus
    checkpoint: Checkpoint
    counters: Counters
    percentage: float | None
    last_error: str | None = None
    emitted_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            ImportJobStatus.COMPLETED,
            ImportJobStatus.FAILED,
            ImportJobStatus.CANCELLED,
        )

    @classmethod
    def from_job(cls, job: ImportJob, emitted_at: datetime | None = None) -> ProgressSnapshot:
        return cls(
            job_id=job.job_id,
            tenant_id=job.tenant_id,
            status=job.status,
            checkpoint=job.checkpoint,
            counters=job.counters,
            percentage=job.percentage,
            last_error=job.last_error,
            emitted_at=emitted_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": str(self.job_id),
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "current_page": self.checkpoint.current_page,
            "current_batch": self.checkpoint.current_batch,
            "total_pages": self.checkpoint.total_pages,
            "total_batches": self.checkpoint.total_batches,
            **self.counters.to_dict(),
            "percentage": self.percentage,
            "last_error": self.last_error,
            "emitted_at": self.emitted_at.isoformat() if self.emitted_at else None,
            "is_terminal": self.is_terminal,
        }
