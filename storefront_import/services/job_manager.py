"""
JobManager -- the control plane for import jobs.

Contract:
    - ``start_job`` / ``pause_job`` / ``resume_job`` / ``cancel_job`` change
      job status; nothing else writes ``status``.
    - ``run_next_batch`` executes exactly one batch of a running job and
      commits the batch's order writes, failure rows, checkpoint and
      counters in ONE transaction.
    - ``drain`` runs batches synchronously; ``recover`` re-schedules jobs
      left running (or pending) by a previous process.
    - Every status change and every applied batch publishes a snapshot.

Invariants enforced:
    - One non-terminal job per tenant (ImportJobConflictError).
    - Terminal jobs are absorbing: control signals raise
      InvalidJobStateError and change nothing.
    - Never two batches of one job at once: a per-job lock, contention
      raises BatchInFlightError.
    - Pause and cancel are cooperative: a control signal waits on the
      job's batch lock, so an in-flight batch still commits and no
      further batch starts.
    - Batch locks are dropped once the job is terminal.

Non-goals:
    - Does NOT own threads; scheduling is delegated to the callable
      installed with ``attach_scheduler`` (the ImportWorker).
    - The batch lock is in-process; one worker process per database.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from storefront_config.schema import ImportDefaults
from storefront_kernel.domain.clock import Clock, SystemClock
from storefront_kernel.exceptions import BatchInFlightError, StorefrontError
from storefront_kernel.logging_config import LogContext, get_logger
from storefront_kernel.services.order_store import LocalOrderStore

from storefront_import.clients.base import ExternalOrderSource
from storefront_import.domain.types import (
    BatchOutcome,
    DuplicatePolicy,
    FatalError,
    ImportJob,
    ImportJobStatus,
    ImportOptions,
    NoMorePages,
    ProgressSnapshot,
    RecordFailure,
)
from storefront_import.services.batch_runner import BatchRunner
from storefront_import.services.job_store import ImportJobStore
from storefront_import.services.progress import ProgressPublisher
from storefront_import.services.reconciler import Reconciler
from storefront_import.services.retry import RetryRunner

logger = get_logger("import.job_manager")

SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


class JobManager:
    """Creates import jobs, controls their lifecycle and runs their batches."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        source_factory: Callable[[str], ExternalOrderSource],
        publisher: ProgressPublisher | None = None,
        clock: Clock | None = None,
        retry: RetryRunner | None = None,
        defaults: ImportDefaults | None = None,
        actor_id: UUID | None = None,
    ):
        self._session_factory = session_factory
        self._source_factory = source_factory
        self._publisher = publisher or ProgressPublisher()
        self._clock = clock or SystemClock()
        self._retry = retry or RetryRunner()
        self._defaults = defaults or ImportDefaults()
        self._actor_id = actor_id or SYSTEM_ACTOR_ID
        self._scheduler: Callable[[UUID], None] | None = None
        self._batch_locks: dict[UUID, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def attach_scheduler(self, scheduler: Callable[[UUID], None] | None) -> None:
        """Install the callable that runs a job's batches in the background."""
        self._scheduler = scheduler

    @property
    def publisher(self) -> ProgressPublisher:
        return self._publisher

    # -------------------------------------------------------------------------
    # Control plane
    # -------------------------------------------------------------------------

    def start_job(
        self,
        tenant_id: str,
        options: ImportOptions | dict[str, Any] | None = None,
        actor_id: UUID | None = None,
    ) -> ImportJob:
        """Create a job, move it to running and schedule its first batch.

        Raises:
            StoreNotConfiguredError: If the tenant has no external store.
            ImportJobConflictError: If the tenant has a non-terminal job.
            ValueError: If the options are invalid.
        """
        actor = actor_id or self._actor_id
        resolved = self._resolve_options(options)
        self._source_factory(tenant_id)

        job_id = uuid4()
        with LogContext.bind(tenant_id=tenant_id, job_id=str(job_id), actor_id=str(actor)):
            pending = ImportJob(
                job_id=job_id,
                tenant_id=tenant_id,
                status=ImportJobStatus.PENDING,
                options=resolved,
                created_at=self._clock.now(),
                created_by=actor,
            )
            self._in_transaction(lambda store: store.create(pending, actor_id=actor))
            job = self._transition(job_id, ImportJobStatus.RUNNING, "start", actor_id=actor)

            logger.info(
                "import_job_started",
                extra={
                    "job_id": str(job_id),
                    "tenant_id": tenant_id,
                    "duplicate_policy": resolved.duplicate_policy.value,
                    "page_size": resolved.page_size,
                    "limit": resolved.limit,
                    "status_filter": resolved.status_filter,
                },
            )
        self._schedule(job_id)
        return job

    def pause_job(self, job_id: UUID, actor_id: UUID | None = None) -> ImportJob:
        """running -> paused.  Takes effect at the next batch boundary."""
        return self._transition(job_id, ImportJobStatus.PAUSED, "pause", actor_id=actor_id)

    def resume_job(self, job_id: UUID, actor_id: UUID | None = None) -> ImportJob:
        """paused -> running, continuing from the persisted checkpoint."""
        job = self._transition(job_id, ImportJobStatus.RUNNING, "resume", actor_id=actor_id)
        self._schedule(job_id)
        return job

    def cancel_job(
        self, job_id: UUID, reason: str | None = None, actor_id: UUID | None = None,
    ) -> ImportJob:
        """pending|running|paused -> cancelled.  Never resumes."""
        return self._transition(
            job_id,
            ImportJobStatus.CANCELLED,
            "cancel",
            last_error=f"Cancelled: {reason}" if reason else None,
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_job(self, job_id: UUID) -> ImportJob:
        """Point-in-time read.  Raises ImportJobNotFoundError."""
        return self._read(lambda store: store.get(job_id))

    def get_active_job(self, tenant_id: str) -> ImportJob | None:
        return self._read(lambda store: store.find_active(tenant_id))

    def list_jobs(self, tenant_id: str, limit: int = 50) -> list[ImportJob]:
        return self._read(lambda store: store.list_for_tenant(tenant_id, limit=limit))

    def list_failures(self, job_id: UUID) -> list[RecordFailure]:
        return self._read(lambda store: store.list_failures(job_id))

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def run_next_batch(self, job_id: UUID) -> BatchOutcome | None:
        """Run one batch if the job is running.

        Returns the batch outcome, or None when the job is not running.

        Raises:
            BatchInFlightError: If another batch of this job is executing.
            ImportJobNotFoundError: If job_id does not exist.
        """
        lock = self._batch_lock(job_id)
        if not lock.acquire(blocking=False):
            raise BatchInFlightError(str(job_id))
        try:
            outcome, finished = self._run_batch_locked(job_id)
        finally:
            lock.release()
        if finished:
            self._forget_batch_lock(job_id)
        return outcome

    def drain(self, job_id: UUID, max_batches: int | None = None) -> ImportJob:
        """Run batches in the calling thread until the job stops running."""
        batches = 0
        while max_batches is None or batches < max_batches:
            outcome = self.run_next_batch(job_id)
            if outcome is None:
                break
            batches += 1
        return self.get_job(job_id)

    def recover(self) -> list[UUID]:
        """Re-schedule jobs a previous process left running or pending."""
        session = self._session_factory()
        try:
            store = ImportJobStore(session, self._clock)
            for job in store.list_by_status([ImportJobStatus.PENDING]):
                store.set_status(job.job_id, ImportJobStatus.RUNNING, "recover", actor_id=self._actor_id)
            running = store.list_by_status([ImportJobStatus.RUNNING])
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        job_ids = [job.job_id for job in running]
        for job in running:
            self._publish(job)
            self._schedule(job.job_id)
        logger.info("import_jobs_recovered", extra={"job_count": len(job_ids)})
        return job_ids

    def fail_job(self, job_id: UUID, message: str) -> ImportJob | None:
        """Mark a pending or running job failed.

        Returns None, changing nothing, when the job is already terminal or
        was paused in the meantime.
        """
        def _fail(store: ImportJobStore) -> ImportJob | None:
            job = store.get_for_update(job_id)
            if job.is_terminal or job.status is ImportJobStatus.PAUSED:
                return None
            return store.set_status(
                job_id, ImportJobStatus.FAILED, "fail",
                last_error=message, actor_id=self._actor_id,
            )

        with self._batch_lock(job_id):
            job = self._in_transaction(_fail)
        if job is not None:
            self._after_transition(job)
        return job

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_batch_locked(self, job_id: UUID) -> tuple[BatchOutcome | None, bool]:
        """Run one batch under the job's batch lock.

        Returns the outcome and whether the job is now terminal.
        """
        session = self._session_factory()
        try:
            store = ImportJobStore(session, self._clock)
            job = store.get_for_update(job_id)
            if job.status is not ImportJobStatus.RUNNING:
                session.rollback()
                return None, job.is_terminal

            with LogContext.bind(tenant_id=job.tenant_id, job_id=str(job_id)):
                try:
                    source = self._source_factory(job.tenant_id)
                except StorefrontError as exc:
                    outcome: BatchOutcome = FatalError(message=str(exc), error_code=exc.code)
                else:
                    outcome = self._build_runner(session, source).run(job)

                if isinstance(outcome, FatalError):
                    session.rollback()
                    final = store.set_status(
                        job_id, ImportJobStatus.FAILED, "fail",
                        last_error=outcome.message, actor_id=self._actor_id,
                    )
                    session.commit()
                    logger.error(
                        "import_job_failed",
                        extra={"job_id": str(job_id), "error_code": outcome.error_code, "error": outcome.message},
                    )
                    self._publish(final)
                    return outcome, True

                store.record_failures(job_id, outcome.failures, actor_id=self._actor_id)
                final = store.apply_batch(job_id, outcome)
                if isinstance(outcome, NoMorePages) and final.status is ImportJobStatus.RUNNING:
                    final = store.set_status(
                        job_id, ImportJobStatus.COMPLETED, "complete", actor_id=self._actor_id,
                    )
                session.commit()

                if final.status is ImportJobStatus.COMPLETED:
                    logger.info(
                        "import_job_completed",
                        extra={"job_id": str(job_id), **final.counters.to_dict()},
                    )
                self._publish(final)
                return outcome, final.is_terminal
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _build_runner(self, session: Session, source: ExternalOrderSource) -> BatchRunner:
        reconciler = Reconciler(
            LocalOrderStore(session, self._clock),
            actor_id=self._actor_id,
            default_currency=self._defaults.default_currency,
        )
        return BatchRunner(session, source, reconciler, retry=self._retry)

    def _transition(
        self,
        job_id: UUID,
        status: ImportJobStatus,
        action: str,
        last_error: str | None = None,
        actor_id: UUID | None = None,
    ) -> ImportJob:
        # Waits for an in-flight batch, so the signal lands on a batch boundary.
        with self._batch_lock(job_id):
            job = self._in_transaction(
                lambda store: store.set_status(
                    job_id, status, action,
                    last_error=last_error, actor_id=actor_id or self._actor_id,
                )
            )
        self._after_transition(job)
        return job

    def _after_transition(self, job: ImportJob) -> None:
        if job.is_terminal:
            self._forget_batch_lock(job.job_id)
        self._publish(job)

    def _in_transaction(self, work: Callable[[ImportJobStore], Any]) -> Any:
        session = self._session_factory()
        try:
            result = work(ImportJobStore(session, self._clock))
            session.commit()
            return result
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _read(self, work: Callable[[ImportJobStore], Any]) -> Any:
        session = self._session_factory()
        try:
            return work(ImportJobStore(session, self._clock))
        finally:
            session.rollback()
            session.close()

    def _publish(self, job: ImportJob) -> None:
        self._publisher.publish(ProgressSnapshot.from_job(job, emitted_at=self._clock.now()))

    def _schedule(self, job_id: UUID) -> None:
        if self._scheduler is not None:
            self._scheduler(job_id)

    def _batch_lock(self, job_id: UUID) -> threading.Lock:
        with self._locks_guard:
            lock = self._batch_locks.get(job_id)
            if lock is None:
                lock = threading.Lock()
                self._batch_locks[job_id] = lock
            return lock

    def _forget_batch_lock(self, job_id: UUID) -> None:
        with self._locks_guard:
            self._batch_locks.pop(job_id, None)

    @property
    def tracked_locks(self) -> int:
        with self._locks_guard:
            return len(self._batch_locks)

    def _resolve_options(
        self, options: ImportOptions | dict[str, Any] | None,
    ) -> ImportOptions:
        if isinstance(options, ImportOptions):
            resolved = options
        else:
            data: dict[str, Any] = {
                "duplicate_policy": self._defaults.duplicate_policy,
                "page_size": self._defaults.page_size,
            }
            data.update({k: v for k, v in (options or {}).items() if v is not None})
            resolved = ImportOptions.from_dict(data)
        if resolved.page_size > self._defaults.max_page_size:
            raise ValueError(
                f"page_size {resolved.page_size} exceeds the maximum of {self._defaults.max_page_size}"
            )
        if not isinstance(resolved.duplicate_policy, DuplicatePolicy):
            raise ValueError(f"Unknown duplicate policy: {resolved.duplicate_policy!r}")
        return resolved
