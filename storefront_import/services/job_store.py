"""
ImportJobStore -- persistence for import jobs and their failure audit rows.

Contract:
    Reads return ``ImportJob`` DTOs; writes flush and never commit.  The
    JobManager owns every transaction boundary, which is what lets a
    batch's order writes, checkpoint and counters commit together.

Architecture: storefront_import/services.  Imports from
    storefront_import.domain, storefront_import.models and the kernel.

Invariants enforced:
    - One non-terminal job per tenant (explicit check + partial unique index).
    - Status changes follow ALLOWED_TRANSITIONS.
    - ``apply_batch`` writes checkpoint and counters in one UPDATE; counters
      only grow and ``grand_total`` is raised when exceeded.
    - ``started_at`` is set on the first entry to running;
      ``completed_at`` on entry to a terminal status.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront_kernel.domain.clock import Clock, SystemClock
from storefront_kernel.exceptions import ImportJobConflictError, ImportJobNotFoundError
from storefront_kernel.logging_config import get_logger

from storefront_import.domain.lifecycle import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    require_transition,
)
from storefront_import.domain.types import (
    BatchCompleted,
    ImportJob,
    ImportJobStatus,
    NoMorePages,
    RecordFailure,
)
from storefront_import.models.import_job import ImportFailureModel, ImportJobModel

logger = get_logger("import.job_store")

_ACTIVE_VALUES = tuple(s.value for s in ACTIVE_STATUSES)


class ImportJobStore:
    """Job State Store.  Flushes, never commits."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _load(self, job_id: UUID, for_update: bool = False) -> ImportJobModel:
        stmt = select(ImportJobModel).where(ImportJobModel.id == job_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ImportJobNotFoundError(str(job_id))
        return model

    def get(self, job_id: UUID) -> ImportJob:
        """Raises ImportJobNotFoundError."""
        return self._load(job_id).to_dto()

    def get_for_update(self, job_id: UUID) -> ImportJob:
        """Read the job with its row locked (SELECT ... FOR UPDATE)."""
        return self._load(job_id, for_update=True).to_dto()

    def find_active(self, tenant_id: str) -> ImportJob | None:
        model = self._session.execute(
            select(ImportJobModel).where(
                ImportJobModel.tenant_id == tenant_id,
                ImportJobModel.status.in_(_ACTIVE_VALUES),
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_for_tenant(self, tenant_id: str, limit: int = 50) -> list[ImportJob]:
        """Most recent first."""
        models = self._session.execute(
            select(ImportJobModel)
            .where(ImportJobModel.tenant_id == tenant_id)
            .order_by(ImportJobModel.created_at.desc(), ImportJobModel.id)
            .limit(limit)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def list_by_status(self, statuses: Iterable[ImportJobStatus]) -> list[ImportJob]:
        values = [s.value for s in statuses]
        models = self._session.execute(
            select(ImportJobModel)
            .where(ImportJobModel.status.in_(values))
            .order_by(ImportJobModel.created_at)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def list_failures(self, job_id: UUID) -> list[RecordFailure]:
        models = self._session.execute(
            select(ImportFailureModel)
            .where(ImportFailureModel.job_id == job_id)
            .order_by(ImportFailureModel.page, ImportFailureModel.created_at)
        ).scalars().all()
        return [m.to_dto() for m in models]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, job: ImportJob, actor_id: UUID) -> ImportJob:
        """Insert a new job.

        Raises:
            ImportJobConflictError: If the tenant already has a non-terminal job.
        """
        active = self.find_active(job.tenant_id)
        if active is not None:
            raise ImportJobConflictError(job.tenant_id, str(active.job_id))

        model = ImportJobModel.from_dto(job, created_by_id=actor_id)
        model.created_at = job.created_at or self._clock.now()
        savepoint = self._session.begin_nested()
        self._session.add(model)
        try:
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            raise ImportJobConflictError(job.tenant_id) from None
        savepoint.commit()
        return model.to_dto()

    def set_status(
        self,
        job_id: UUID,
        status: ImportJobStatus,
        action: str,
        last_error: str | None = None,
        actor_id: UUID | None = None,
    ) -> ImportJob:
        """Transition the job to ``status``.

        Raises:
            ImportJobNotFoundError: If job_id does not exist.
            InvalidJobStateError: If the transition is not allowed.
        """
        model = self._load(job_id, for_update=True)
        current = ImportJobStatus(model.status)
        require_transition(str(job_id), current, status, action)

        now = self._clock.now()
        model.status = status.value
        if status is ImportJobStatus.RUNNING and model.started_at is None:
            model.started_at = now
        if status in TERMINAL_STATUSES:
            model.completed_at = now
        if last_error is not None:
            model.last_error = last_error
        model.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "import_job_status_changed",
            extra={
                "job_id": str(job_id),
                "tenant_id": model.tenant_id,
                "from_status": current.value,
                "to_status": status.value,
                "action": action,
            },
        )
        return model.to_dto()

    def apply_batch(
        self, job_id: UUID, outcome: BatchCompleted | NoMorePages,
    ) -> ImportJob:
        """Write a batch's checkpoint and counter delta together."""
        model = self._load(job_id, for_update=True)
        job = model.to_dto()

        if outcome.checkpoint.current_batch < job.checkpoint.current_batch:
            raise ValueError(
                f"Checkpoint regression for job {job_id}: "
                f"batch {outcome.checkpoint.current_batch} < {job.checkpoint.current_batch}"
            )

        counters = job.counters.apply(outcome.delta, outcome.grand_total)
        checkpoint = outcome.checkpoint

        model.current_page = checkpoint.current_page
        model.current_batch = checkpoint.current_batch
        model.total_pages = checkpoint.total_pages
        model.total_batches = checkpoint.total_batches
        model.processed_orders = counters.processed_orders
        model.grand_total = counters.grand_total
        model.imported = counters.imported
        model.updated = counters.updated
        model.skipped = counters.skipped
        model.failed = counters.failed
        self._session.flush()
        return model.to_dto()

    def record_failures(
        self, job_id: UUID, failures: Iterable[RecordFailure], actor_id: UUID,
    ) -> int:
        now = self._clock.now()
        count = 0
        for failure in failures:
            model = ImportFailureModel.from_dto(failure, job_id=job_id, created_by_id=actor_id)
            model.created_at = now
            self._session.add(model)
            count += 1
        if count:
            self._session.flush()
        return count
