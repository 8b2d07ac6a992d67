"""
BatchRunner -- executes exactly one batch (one remote page) of an import job.

Contract:
    ``run(job)`` counts (first batch only, best-effort), fetches page
    ``checkpoint.current_page`` with bounded retry, reconciles each record
    in fetch order inside its own SAVEPOINT and returns a BatchOutcome.
    It writes orders through the reconciler but never touches the job row
    and never commits; the JobManager applies the outcome in the same
    transaction.

Invariants enforced:
    - SAVEPOINT isolation per record: one failure never aborts the batch.
    - Records beyond the job's remaining limit are not reconciled.
    - The checkpoint advances by exactly one page per fetched batch.

Failure modes (returned, never raised):
    - FatalError on authentication rejection, an unreadable response or
      retry exhaustion.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from storefront_kernel.exceptions import (
    BatchRetryExhaustedError,
    ExternalSourceError,
)
from storefront_kernel.logging_config import get_logger

from storefront_import.clients.base import ExternalOrderSource, OrderFilters
from storefront_import.domain.types import (
    BatchCompleted,
    BatchOutcome,
    CounterDelta,
    FatalError,
    ImportJob,
    NoMorePages,
    OutcomeKind,
    ReconciliationOutcome,
    RecordFailure,
)
from storefront_import.services.reconciler import Reconciler
from storefront_import.services.retry import RetryRunner

logger = get_logger("import.batch_runner")


def _external_id(payload: Any) -> str | None:
    if isinstance(payload, Mapping) and payload.get("id") is not None:
        return str(payload["id"])
    return None


class BatchRunner:
    """Runs one page of an import job against an external source."""

    def __init__(
        self,
        session: Session,
        source: ExternalOrderSource,
        reconciler: Reconciler,
        retry: RetryRunner | None = None,
    ):
        self._session = session
        self._source = source
        self._reconciler = reconciler
        self._retry = retry or RetryRunner()

    def run(self, job: ImportJob) -> BatchOutcome:
        start_time = time.monotonic()
        options = job.options
        filters = OrderFilters.from_options(options)
        checkpoint = job.checkpoint
        processed = job.counters.processed_orders

        # 1. Best-effort count before the first batch.
        grand_total: int | None = None
        if job.counters.grand_total is None and checkpoint.current_batch == 0:
            grand_total = self._count(job, filters)
            if grand_total is not None:
                checkpoint = checkpoint.with_totals(grand_total, options.page_size)

        # 2. Limit already reached.
        if options.limit is not None and processed >= options.limit:
            return NoMorePages(checkpoint=checkpoint, grand_total=grand_total)

        # 3. Fetch.
        page = checkpoint.current_page
        try:
            records = self._retry.call(
                lambda: self._source.fetch_page(filters, page, options.page_size),
                f"fetch_page({page})",
            )
        except (ExternalSourceError, BatchRetryExhaustedError) as exc:
            logger.error(
                "import_batch_fetch_failed",
                extra={"job_id": str(job.job_id), "page": page, "error_code": exc.code, "error": str(exc)},
            )
            return FatalError(message=str(exc), error_code=exc.code)

        # 4. Reconcile within the remaining allowance.
        allowance = len(records)
        if options.limit is not None:
            allowance = min(allowance, options.limit - processed)

        batch_no = checkpoint.current_batch + 1
        delta = CounterDelta()
        failures: list[RecordFailure] = []
        for payload in records[:allowance]:
            outcome = self._reconcile_one(job, payload)
            delta = delta.add(outcome)
            if outcome.kind is OutcomeKind.FAILED:
                failures.append(
                    RecordFailure(
                        page=page,
                        batch=batch_no,
                        external_id=outcome.external_id,
                        reason_code=outcome.reason_code or "UNHANDLED_EXCEPTION",
                        message=outcome.reason or "",
                    )
                )

        # 5. Advance.
        next_checkpoint = checkpoint.advance()
        exhausted = (
            len(records) == 0
            or len(records) < options.page_size
            or (options.limit is not None and processed + delta.processed >= options.limit)
        )

        logger.info(
            "import_batch_completed",
            extra={
                "job_id": str(job.job_id),
                "page": page,
                "batch": batch_no,
                "fetched": len(records),
                "imported": delta.imported,
                "updated": delta.updated,
                "skipped": delta.skipped,
                "failed": delta.failed,
                "last_page": exhausted,
                "duration_ms": int((time.monotonic() - start_time) * 1000),
            },
        )

        result_cls = NoMorePages if exhausted else BatchCompleted
        return result_cls(
            checkpoint=next_checkpoint,
            delta=delta,
            grand_total=grand_total,
            failures=tuple(failures),
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _count(self, job: ImportJob, filters: OrderFilters) -> int | None:
        try:
            count = self._retry.call(lambda: self._source.count(filters), "count")
        except (ExternalSourceError, BatchRetryExhaustedError) as exc:
            logger.warning(
                "import_count_unavailable",
                extra={"job_id": str(job.job_id), "error": str(exc)},
            )
            return None
        if job.options.limit is not None:
            count = min(count, job.options.limit)
        return count

    def _reconcile_one(self, job: ImportJob, payload: Any) -> ReconciliationOutcome:
        savepoint = self._session.begin_nested()
        try:
            outcome = self._reconciler.reconcile(job.tenant_id, payload, job.options)
        except Exception as exc:
            savepoint.rollback()
            logger.exception(
                "import_record_failed",
                extra={"job_id": str(job.job_id), "external_id": _external_id(payload)},
            )
            return ReconciliationOutcome.failed(_external_id(payload), str(exc))

        if outcome.kind is OutcomeKind.FAILED:
            savepoint.rollback()
        else:
            savepoint.commit()
        return outcome
