"""
ORM models for import job persistence.

Contract:
    ImportJobModel persists a job's status, options, checkpoint and
    counters; ImportFailureModel keeps one audit row per failed record.
    Both have ``to_dto()`` / ``from_dto()`` round-trip methods.

Architecture: storefront_import/models.  Imports from storefront_kernel.db.base only.

Invariants enforced:
    - At most one non-terminal job per tenant: partial unique index on
      ``tenant_id`` where status is pending, running or paused.
    - Checkpoint and counter columns live on the job row, so a single
      UPDATE applies both atomically.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from storefront_import.domain.types import ImportJob, RecordFailure

_ACTIVE_STATUS_PREDICATE = text("status IN ('pending', 'running', 'paused')")


class ImportJobModel(TrackedBase):
    """Persistent import job record."""

    __tablename__ = "import_jobs"

    __table_args__ = (
        Index(
            "uq_import_jobs_tenant_active",
            "tenant_id",
            unique=True,
            postgresql_where=_ACTIVE_STATUS_PREDICATE,
            sqlite_where=_ACTIVE_STATUS_PREDICATE,
        ),
        Index("ix_import_jobs_tenant_created", "tenant_id", "created_at"),
        Index("ix_import_jobs_status", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    options: Mapped[dict] = mapped_column(JSON, nullable=False)

    current_page: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_batch: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_pages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_batches: Mapped[int | None] = mapped_column(Integer, nullable=True)

    processed_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    grand_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    imported: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    failures: Mapped[list["ImportFailureModel"]] = relationship(
        "ImportFailureModel",
        back_populates="job",
        foreign_keys="ImportFailureModel.job_id",
    )

    def to_dto(self) -> ImportJob:
        from storefront_import.domain.types import (
            Checkpoint,
            Counters,
            ImportJob,
            ImportJobStatus,
            ImportOptions,
        )

        return ImportJob(
            job_id=self.id,
            tenant_id=self.tenant_id,
            status=ImportJobStatus(self.status),
            options=ImportOptions.from_dict(self.options or {}),
            checkpoint=Checkpoint(
                current_page=self.current_page,
                current_batch=self.current_batch,
                total_pages=self.total_pages,
                total_batches=self.total_batches,
            ),
            counters=Counters(
                processed_orders=self.processed_orders,
                grand_total=self.grand_total,
                imported=self.imported,
                updated=self.updated,
                skipped=self.skipped,
                failed=self.failed,
            ),
            last_error=self.last_error,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            updated_at=self.updated_at,
            created_by=self.created_by_id,
        )

    @classmethod
    def from_dto(cls, dto: ImportJob, created_by_id: UUID) -> ImportJobModel:
        return cls(
            id=dto.job_id,
            tenant_id=dto.tenant_id,
            status=dto.status.value,
            options=dto.options.to_dict(),
            current_page=dto.checkpoint.current_page,
            current_batch=dto.checkpoint.current_batch,
            total_pages=dto.checkpoint.total_pages,
            total_batches=dto.checkpoint.total_batches,
            processed_orders=dto.counters.processed_orders,
            grand_total=dto.counters.grand_total,
            imported=dto.counters.imported,
            updated=dto.counters.updated,
            skipped=dto.counters.skipped,
            failed=dto.counters.failed,
            last_error=dto.last_error,
            started_at=dto.started_at,
            completed_at=dto.completed_at,
            created_by_id=created_by_id,
            updated_by_id=None,
        )


class ImportFailureModel(TrackedBase):
    """One failed external record within an import job."""

    __tablename__ = "import_failures"

    __table_args__ = (
        Index("ix_import_failures_job", "job_id", "page"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    page: Mapped[int] = mapped_column(Integer, nullable=False)
    batch: Mapped[int] = mapped_column(Integer, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reason_code: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    job: Mapped["ImportJobModel"] = relationship(
        "ImportJobModel",
        back_populates="failures",
        foreign_keys=[job_id],
    )

    def to_dto(self) -> RecordFailure:
        from storefront_import.domain.types import RecordFailure

        return RecordFailure(
            page=self.page,
            batch=self.batch,
            external_id=self.external_id,
            reason_code=self.reason_code,
            message=self.message,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(
        cls, dto: RecordFailure, job_id: UUID, created_by_id: UUID,
    ) -> ImportFailureModel:
        return cls(
            job_id=job_id,
            page=dto.page,
            batch=dto.batch,
            external_id=dto.external_id,
            reason_code=dto.reason_code,
            message=dto.message,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
