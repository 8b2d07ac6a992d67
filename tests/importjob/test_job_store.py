"""Tests for ImportJobStore -- job rows, transitions, checkpoints, failures."""

from uuid import uuid4

import pytest

from storefront_kernel.exceptions import (
    ImportJobConflictError,
    ImportJobNotFoundError,
    InvalidJobStateError,
)

from storefront_import.domain.types import (
    BatchCompleted,
    Checkpoint,
    CounterDelta,
    DuplicatePolicy,
    ImportJob,
    ImportJobStatus,
    ImportOptions,
    NoMorePages,
    RecordFailure,
)
from storefront_import.services.job_store import ImportJobStore

TENANT = "acme"


@pytest.fixture
def store(session, clock):
    return ImportJobStore(session, clock)


def _new_job(tenant_id=TENANT, **options) -> ImportJob:
    return ImportJob(
        job_id=uuid4(),
        tenant_id=tenant_id,
        status=ImportJobStatus.PENDING,
        options=ImportOptions(**options),
    )


class TestCreate:
    def test_create_and_read_back(self, store, actor_id):
        job = _new_job(duplicate_policy=DuplicatePolicy.UPDATE, page_size=25, limit=100)

        created = store.create(job, actor_id=actor_id)

        assert created.job_id == job.job_id
        assert created.status is ImportJobStatus.PENDING
        assert created.options == job.options
        assert created.checkpoint == Checkpoint()
        assert created.created_by == actor_id
        assert store.get(job.job_id) == created

    def test_second_active_job_conflicts(self, store, actor_id):
        first = store.create(_new_job(), actor_id=actor_id)

        with pytest.raises(ImportJobConflictError) as exc_info:
            store.create(_new_job(), actor_id=actor_id)

        assert exc_info.value.active_job_id == str(first.job_id)

    def test_partial_unique_index_backs_the_check(self, store, actor_id, monkeypatch):
        store.create(_new_job(), actor_id=actor_id)
        monkeypatch.setattr(store, "find_active", lambda tenant_id: None)

        with pytest.raises(ImportJobConflictError):
            store.create(_new_job(), actor_id=actor_id)

    def test_terminal_job_does_not_block(self, store, actor_id):
        first = store.create(_new_job(), actor_id=actor_id)
        store.set_status(first.job_id, ImportJobStatus.CANCELLED, "cancel")

        second = store.create(_new_job(), actor_id=actor_id)

        assert store.find_active(TENANT).job_id == second.job_id

    def test_unknown_job(self, store):
        with pytest.raises(ImportJobNotFoundError):
            store.get(uuid4())

    def test_get_for_update_reads_the_same_job(self, store, actor_id):
        job = store.create(_new_job(), actor_id=actor_id)

        assert store.get_for_update(job.job_id) == store.get(job.job_id)

        with pytest.raises(ImportJobNotFoundError):
            store.get_for_update(uuid4())


class TestSetStatus:
    def test_started_at_set_once(self, store, actor_id, clock):
        job = store.create(_new_job(), actor_id=actor_id)

        running = store.set_status(job.job_id, ImportJobStatus.RUNNING, "start")
        started = running.started_at
        clock.advance(60)
        store.set_status(job.job_id, ImportJobStatus.PAUSED, "pause")
        resumed = store.set_status(job.job_id, ImportJobStatus.RUNNING, "resume")

        assert started is not None
        assert resumed.started_at == started
        assert resumed.completed_at is None

    def test_terminal_sets_completed_at_and_error(self, store, actor_id):
        job = store.create(_new_job(), actor_id=actor_id)
        store.set_status(job.job_id, ImportJobStatus.RUNNING, "start")

        failed = store.set_status(
            job.job_id, ImportJobStatus.FAILED, "fail", last_error="boom",
        )

        assert failed.completed_at is not None
        assert failed.last_error == "boom"

    def test_illegal_transition_changes_nothing(self, store, actor_id):
        job = store.create(_new_job(), actor_id=actor_id)

        with pytest.raises(InvalidJobStateError) as exc_info:
            store.set_status(job.job_id, ImportJobStatus.PAUSED, "pause")

        assert exc_info.value.action == "pause"
        assert store.get(job.job_id).status is ImportJobStatus.PENDING

    def test_status_change_is_logged(self, store, actor_id, captured_logs):
        job = store.create(_new_job(), actor_id=actor_id)

        store.set_status(job.job_id, ImportJobStatus.RUNNING, "start")

        logs = [r for r in captured_logs() if r["message"] == "import_job_status_changed"]
        assert logs[-1]["from_status"] == "pending"
        assert logs[-1]["to_status"] == "running"
        assert logs[-1]["action"] == "start"


class TestApplyBatch:
    def test_checkpoint_and_counters_written_together(self, store, actor_id):
        job = store.create(_new_job(page_size=2), actor_id=actor_id)

        applied = store.apply_batch(
            job.job_id,
            BatchCompleted(
                checkpoint=Checkpoint(current_page=2, current_batch=1, total_pages=3, total_batches=3),
                delta=CounterDelta(imported=1, skipped=1),
                grand_total=5,
            ),
        )

        assert applied.checkpoint.current_page == 2
        assert applied.counters.processed_orders == 2
        assert applied.counters.grand_total == 5
        assert applied.percentage == 40.0

    def test_grand_total_grows_with_remote_catalog(self, store, actor_id):
        job = store.create(_new_job(page_size=2), actor_id=actor_id)
        store.apply_batch(
            job.job_id,
            BatchCompleted(checkpoint=Checkpoint(2, 1), delta=CounterDelta(imported=2), grand_total=2),
        )

        applied = store.apply_batch(
            job.job_id,
            NoMorePages(checkpoint=Checkpoint(3, 2), delta=CounterDelta(imported=1)),
        )

        assert applied.counters.processed_orders == 3
        assert applied.counters.grand_total == 3

    def test_checkpoint_regression_is_rejected(self, store, actor_id):
        job = store.create(_new_job(), actor_id=actor_id)
        store.apply_batch(job.job_id, BatchCompleted(checkpoint=Checkpoint(3, 2)))

        with pytest.raises(ValueError, match="regression"):
            store.apply_batch(job.job_id, BatchCompleted(checkpoint=Checkpoint(2, 1)))


class TestFailures:
    def test_record_and_list_failures(self, store, actor_id):
        job = store.create(_new_job(), actor_id=actor_id)
        failures = [
            RecordFailure(page=1, batch=1, external_id="9", reason_code="INVALID_ORDER_PAYLOAD", message="bad total"),
            RecordFailure(page=2, batch=2, external_id=None, reason_code="UNHANDLED_EXCEPTION", message="boom"),
        ]

        assert store.record_failures(job.job_id, failures, actor_id=actor_id) == 2

        listed = store.list_failures(job.job_id)
        assert [(f.page, f.external_id, f.reason_code) for f in listed] == [
            (1, "9", "INVALID_ORDER_PAYLOAD"),
            (2, None, "UNHANDLED_EXCEPTION"),
        ]
        assert all(f.created_at is not None for f in listed)

    def test_no_failures_is_a_no_op(self, store, actor_id):
        job = store.create(_new_job(), actor_id=actor_id)

        assert store.record_failures(job.job_id, [], actor_id=actor_id) == 0
        assert store.list_failures(job.job_id) == []


class TestListing:
    def test_list_for_tenant_newest_first(self, store, actor_id, clock):
        ids = []
        for _ in range(3):
            job = store.create(_new_job(), actor_id=actor_id)
            store.set_status(job.job_id, ImportJobStatus.CANCELLED, "cancel")
            ids.append(job.job_id)
            clock.advance(10)
        store.create(_new_job("globex"), actor_id=actor_id)

        listed = store.list_for_tenant(TENANT)

        assert [j.job_id for j in listed] == list(reversed(ids))
        assert len(store.list_for_tenant(TENANT, limit=2)) == 2

    def test_list_by_status(self, store, actor_id):
        pending = store.create(_new_job(), actor_id=actor_id)
        running = store.create(_new_job("globex"), actor_id=actor_id)
        store.set_status(running.job_id, ImportJobStatus.RUNNING, "start")

        assert [j.job_id for j in store.list_by_status([ImportJobStatus.PENDING])] == [pending.job_id]
        assert [j.job_id for j in store.list_by_status([ImportJobStatus.RUNNING])] == [running.job_id]
