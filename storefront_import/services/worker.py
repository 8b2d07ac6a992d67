"""
ImportWorker -- background execution of import jobs.

Contract:
    ``schedule(job_id)`` ensures one daemon thread is advancing the job.
    The thread calls ``JobManager.run_next_batch`` repeatedly, waiting
    ``inter_batch_delay`` between batches, and exits as soon as the job is
    no longer running.  ``stop()`` signals every thread and joins them;
    a batch in flight finishes first.

Invariants enforced:
    - At most one thread per job.  A ``schedule`` call that races a
      thread's exit is remembered, and the thread re-checks the job
      instead of exiting.
    - An unexpected exception while running a batch fails the job with
      ``last_error`` set; it never kills the process.
"""

from __future__ import annotations

import threading
from uuid import UUID

from storefront_kernel.exceptions import BatchInFlightError
from storefront_kernel.logging_config import LogContext, get_logger

from storefront_import.domain.types import FatalError, NoMorePages
from storefront_import.services.job_manager import JobManager

logger = get_logger("import.worker")


class ImportWorker:
    """One daemon thread per running import job."""

    def __init__(self, manager: JobManager, inter_batch_delay: float = 1.0):
        self._manager = manager
        self._delay = inter_batch_delay
        self._stop_event = threading.Event()
        self._threads: dict[UUID, threading.Thread] = {}
        self._rescheduled: set[UUID] = set()
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def schedule(self, job_id: UUID) -> None:
        if self._stop_event.is_set():
            logger.warning("import_worker_stopped_schedule_ignored", extra={"job_id": str(job_id)})
            return
        with self._lock:
            thread = self._threads.get(job_id)
            if thread is not None and thread.is_alive():
                self._rescheduled.add(job_id)
                return
            thread = threading.Thread(
                target=self._run_job,
                args=(job_id,),
                name=f"import-job-{job_id}",
                daemon=True,
            )
            self._threads[job_id] = thread
        thread.start()
        logger.info("import_worker_scheduled", extra={"job_id": str(job_id)})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal every job thread and wait for in-flight batches."""
        self._stop_event.set()
        with self._lock:
            threads = list(self._threads.values())
        for thread in threads:
            if thread.is_alive():
                thread.join(timeout=timeout)
        logger.info("import_worker_stopped", extra={"thread_count": len(threads)})

    def is_running(self, job_id: UUID) -> bool:
        with self._lock:
            thread = self._threads.get(job_id)
            return thread is not None and thread.is_alive()

    def join(self, job_id: UUID, timeout: float | None = None) -> None:
        with self._lock:
            thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout=timeout)

    @property
    def active_jobs(self) -> list[UUID]:
        with self._lock:
            return [job_id for job_id, t in self._threads.items() if t.is_alive()]

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_job(self, job_id: UUID) -> None:
        with LogContext.bind(job_id=str(job_id)):
            while True:
                self._run_until_stopped(job_id)
                with self._lock:
                    if job_id in self._rescheduled and not self._stop_event.is_set():
                        self._rescheduled.discard(job_id)
                        continue
                    self._rescheduled.discard(job_id)
                    self._threads.pop(job_id, None)
                    return

    def _run_until_stopped(self, job_id: UUID) -> None:
        while not self._stop_event.is_set():
            try:
                outcome = self._manager.run_next_batch(job_id)
            except BatchInFlightError:
                self._stop_event.wait(timeout=self._delay)
                continue
            except Exception as exc:
                logger.exception("import_worker_batch_crashed", extra={"job_id": str(job_id)})
                self._fail(job_id, f"Unexpected error: {exc}")
                return

            if outcome is None or isinstance(outcome, (NoMorePages, FatalError)):
                return
            self._stop_event.wait(timeout=self._delay)

    def _fail(self, job_id: UUID, message: str) -> None:
        try:
            self._manager.fail_job(job_id, message)
        except Exception:
            logger.exception("import_worker_fail_job_failed", extra={"job_id": str(job_id)})
