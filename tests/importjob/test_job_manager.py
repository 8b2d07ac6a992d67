"""
Tests for JobManager -- the import job control plane.

Covers the end-to-end batch pipeline against an in-memory order source:
counters, checkpointing, pause / resume / cancel, the one-active-job
rule, crash replay, record-level failures, fatal errors and recovery.
"""

import threading
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from storefront_kernel.exceptions import (
    BatchInFlightError,
    ExternalSourceAuthError,
    ImportJobConflictError,
    ImportJobNotFoundError,
    InvalidJobStateError,
    StoreNotConfiguredError,
)
from storefront_kernel.models.order import Order
from storefront_kernel.services.order_store import LocalOrderStore

from storefront_import.domain.mapping import map_external_order
from storefront_import.domain.types import (
    DuplicatePolicy,
    FatalError,
    ImportJob,
    ImportJobStatus,
    ImportOptions,
    NoMorePages,
)
from storefront_import.services.job_store import ImportJobStore

from tests.importjob.fakes import FakeOrderSource, woo_order

TENANT = "acme"


def _seed_order(session_factory, clock, actor_id, payload, tenant_id=TENANT):
    with session_factory() as s:
        info = LocalOrderStore(s, clock).create(tenant_id, map_external_order(payload), actor_id)
        s.commit()
    return info


def _order_count(session_factory, tenant_id=TENANT) -> int:
    with session_factory() as s:
        return s.execute(
            select(func.count(Order.id)).where(Order.tenant_id == tenant_id)
        ).scalar_one()


def _counters(job: ImportJob) -> dict:
    c = job.counters
    return {"imported": c.imported, "updated": c.updated, "skipped": c.skipped, "failed": c.failed}


# =============================================================================
# Full run
# =============================================================================


class TestFullImport:
    def test_five_orders_two_per_page_with_one_duplicate(
        self, manager, order_source, session_factory, clock, actor_id,
    ):
        _seed_order(session_factory, clock, actor_id, woo_order(3))

        job = manager.start_job(TENANT, {"duplicate_policy": "skip", "page_size": 2})
        assert job.status is ImportJobStatus.RUNNING

        final = manager.drain(job.job_id)

        assert final.status is ImportJobStatus.COMPLETED
        assert _counters(final) == {"imported": 4, "updated": 0, "skipped": 1, "failed": 0}
        assert final.counters.processed_orders == 5
        assert final.counters.grand_total == 5
        assert final.checkpoint.total_pages == 3
        assert final.checkpoint.current_batch == 3
        assert final.percentage == 100.0
        assert final.completed_at is not None
        assert _order_count(session_factory) == 5
        assert order_source.fetch_calls == [(1, 2), (2, 2), (3, 2)]

    def test_exact_multiple_of_page_size_ends_on_empty_page(
        self, make_manager, session_factory,
    ):
        source = FakeOrderSource([woo_order(i) for i in range(1, 5)])
        manager = make_manager(source)

        job = manager.start_job(TENANT, {"page_size": 2})
        final = manager.drain(job.job_id)

        assert final.status is ImportJobStatus.COMPLETED
        assert final.counters.imported == 4
        assert source.fetch_calls == [(1, 2), (2, 2), (3, 2)]

    def test_empty_store_completes_immediately(self, make_manager):
        manager = make_manager(FakeOrderSource([]))

        job = manager.start_job(TENANT)
        final = manager.drain(job.job_id)

        assert final.status is ImportJobStatus.COMPLETED
        assert final.counters.processed_orders == 0
        assert final.counters.grand_total == 0
        assert final.percentage == 100.0

    def test_update_policy_refreshes_existing_orders(
        self, manager, session_factory, clock, actor_id,
    ):
        _seed_order(session_factory, clock, actor_id, woo_order(2, status="pending"))

        job = manager.start_job(TENANT, {"duplicate_policy": "update", "page_size": 2})
        final = manager.drain(job.job_id)

        assert _counters(final) == {"imported": 4, "updated": 1, "skipped": 0, "failed": 0}
        with session_factory() as s:
            store = LocalOrderStore(s, clock)
            refreshed = store.find_by_external_id(TENANT, "2")
            assert refreshed.status == "PROCESSING"
            assert refreshed.external_status == "processing"

    def test_status_filter_and_mapping_override(self, make_manager, session_factory, clock):
        source = FakeOrderSource([
            woo_order(1, status="completed"),
            woo_order(2, status="processing"),
            woo_order(3, status="completed"),
        ])
        manager = make_manager(source)

        job = manager.start_job(
            TENANT,
            {"status_filter": "completed", "status_mapping": {"completed": "CONFIRMED"}},
        )
        final = manager.drain(job.job_id)

        assert final.counters.imported == 2
        assert final.counters.grand_total == 2
        with session_factory() as s:
            store = LocalOrderStore(s, clock)
            assert store.find_by_external_id(TENANT, "2") is None
            assert store.find_by_external_id(TENANT, "1").status == "CONFIRMED"

    def test_progress_snapshots_are_cumulative(self, manager, publisher):
        subscription = publisher.subscribe()

        job = manager.start_job(TENANT, {"page_size": 2})
        manager.drain(job.job_id)

        snapshots = subscription.drain()
        processed = [s.counters.processed_orders for s in snapshots]
        assert processed == sorted(processed)
        assert [s.status for s in snapshots] == [
            ImportJobStatus.RUNNING,
            ImportJobStatus.RUNNING,
            ImportJobStatus.RUNNING,
            ImportJobStatus.COMPLETED,
        ]
        assert snapshots[-1].is_terminal
        assert snapshots[-1].percentage == 100.0
        assert publisher.latest(job.job_id) is None

    def test_start_logs_job_started(self, manager, captured_logs):
        job = manager.start_job(TENANT, {"page_size": 2, "limit": "all"})

        started = [r for r in captured_logs() if r["message"] == "import_job_started"]
        assert len(started) == 1
        assert started[0]["job_id"] == str(job.job_id)
        assert started[0]["tenant_id"] == TENANT
        assert started[0]["limit"] is None


# =============================================================================
# Limit
# =============================================================================


class TestLimit:
    def test_limit_stops_mid_page(self, manager, order_source, session_factory):
        job = manager.start_job(TENANT, {"page_size": 2, "limit": 3})
        final = manager.drain(job.job_id)

        assert final.status is ImportJobStatus.COMPLETED
        assert final.counters.imported == 3
        assert final.counters.grand_total == 3
        assert final.checkpoint.total_pages == 2
        assert order_source.fetch_calls == [(1, 2), (2, 2)]
        assert _order_count(session_factory) == 3

    def test_limit_on_page_boundary_does_not_fetch_again(self, manager, order_source):
        job = manager.start_job(TENANT, {"page_size": 2, "limit": 2})
        final = manager.drain(job.job_id)

        assert final.counters.imported == 2
        assert order_source.fetch_calls == [(1, 2)]


# =============================================================================
# Control signals
# =============================================================================


class TestPauseResume:
    def test_pause_stops_at_batch_boundary(self, manager, order_source):
        job = manager.start_job(TENANT, {"page_size": 2})
        manager.run_next_batch(job.job_id)

        paused = manager.pause_job(job.job_id)

        assert paused.status is ImportJobStatus.PAUSED
        assert manager.run_next_batch(job.job_id) is None
        assert paused.counters.processed_orders == 2
        assert order_source.fetch_calls == [(1, 2)]

    def test_resume_continues_from_checkpoint(self, manager, order_source):
        job = manager.start_job(TENANT, {"page_size": 2})
        manager.run_next_batch(job.job_id)
        manager.pause_job(job.job_id)

        resumed = manager.resume_job(job.job_id)
        assert resumed.status is ImportJobStatus.RUNNING
        assert resumed.checkpoint.current_page == 2

        final = manager.drain(job.job_id)
        assert final.status is ImportJobStatus.COMPLETED
        assert order_source.fetch_calls == [(1, 2), (2, 2), (3, 2)]

    def test_paused_run_matches_uninterrupted_run(self, make_manager):
        source = FakeOrderSource([woo_order(i) for i in range(1, 8)])
        manager = make_manager(source)

        straight = manager.drain(manager.start_job("straight", {"page_size": 2}).job_id)

        job = manager.start_job("interrupted", {"page_size": 2})
        for _ in range(2):
            manager.run_next_batch(job.job_id)
            manager.pause_job(job.job_id)
            manager.resume_job(job.job_id)
        interrupted = manager.drain(job.job_id)

        assert interrupted.status is ImportJobStatus.COMPLETED
        assert interrupted.counters == straight.counters
        assert interrupted.checkpoint == straight.checkpoint

    def test_resume_requires_paused(self, manager):
        job = manager.start_job(TENANT)

        with pytest.raises(InvalidJobStateError):
            manager.resume_job(job.job_id)

    def test_resume_schedules_job(self, manager):
        scheduled = []
        manager.attach_scheduler(scheduled.append)

        job = manager.start_job(TENANT)
        manager.pause_job(job.job_id)
        manager.resume_job(job.job_id)

        assert scheduled == [job.job_id, job.job_id]

    def test_pause_waits_for_in_flight_batch(self, manager):
        job = manager.start_job(TENANT, {"page_size": 2})
        lock = manager._batch_lock(job.job_id)
        results = []

        lock.acquire()
        pauser = threading.Thread(target=lambda: results.append(manager.pause_job(job.job_id)))
        try:
            pauser.start()
            pauser.join(timeout=0.2)
            assert pauser.is_alive()
            assert manager.get_job(job.job_id).status is ImportJobStatus.RUNNING
        finally:
            lock.release()
        pauser.join(timeout=5)

        assert [r.status for r in results] == [ImportJobStatus.PAUSED]


class TestCancel:
    def test_cancel_records_reason_and_stops(self, manager):
        job = manager.start_job(TENANT, {"page_size": 2})
        manager.run_next_batch(job.job_id)

        cancelled = manager.cancel_job(job.job_id, reason="wrong store")

        assert cancelled.status is ImportJobStatus.CANCELLED
        assert cancelled.last_error == "Cancelled: wrong store"
        assert cancelled.completed_at is not None
        assert manager.run_next_batch(job.job_id) is None
        assert manager.get_job(job.job_id).counters.processed_orders == 2

    def test_cancel_paused_job(self, manager):
        job = manager.start_job(TENANT)
        manager.pause_job(job.job_id)

        assert manager.cancel_job(job.job_id).status is ImportJobStatus.CANCELLED


class TestTerminalAbsorbing:
    @pytest.mark.parametrize("action", ["pause_job", "resume_job", "cancel_job"])
    def test_completed_job_rejects_control_signals(self, manager, action):
        job = manager.start_job(TENANT)
        final = manager.drain(job.job_id)

        with pytest.raises(InvalidJobStateError):
            getattr(manager, action)(job.job_id)

        assert manager.get_job(job.job_id) == final

    def test_cancelled_job_cannot_resume(self, manager):
        job = manager.start_job(TENANT)
        manager.cancel_job(job.job_id)

        with pytest.raises(InvalidJobStateError) as exc_info:
            manager.resume_job(job.job_id)

        assert exc_info.value.current_status == "cancelled"
        assert exc_info.value.code == "INVALID_JOB_STATE"

    def test_fail_job_ignores_terminal_job(self, manager):
        job = manager.start_job(TENANT)
        manager.drain(job.job_id)

        assert manager.fail_job(job.job_id, "late crash") is None
        assert manager.get_job(job.job_id).status is ImportJobStatus.COMPLETED

    def test_fail_job_marks_running_job_failed(self, manager):
        job = manager.start_job(TENANT)

        failed = manager.fail_job(job.job_id, "worker crashed")

        assert failed.status is ImportJobStatus.FAILED
        assert failed.last_error == "worker crashed"

    def test_fail_job_leaves_paused_job_alone(self, manager):
        job = manager.start_job(TENANT, {"page_size": 2})
        manager.run_next_batch(job.job_id)
        manager.pause_job(job.job_id)

        assert manager.fail_job(job.job_id, "late crash") is None
        assert manager.get_job(job.job_id).status is ImportJobStatus.PAUSED


# =============================================================================
# One active job per tenant
# =============================================================================


class TestConflict:
    def test_second_start_is_rejected(self, manager):
        first = manager.start_job(TENANT)

        with pytest.raises(ImportJobConflictError) as exc_info:
            manager.start_job(TENANT)

        assert exc_info.value.active_job_id == str(first.job_id)
        assert manager.list_jobs(TENANT) == [manager.get_job(first.job_id)]

    def test_paused_job_still_blocks_start(self, manager):
        job = manager.start_job(TENANT)
        manager.pause_job(job.job_id)

        with pytest.raises(ImportJobConflictError):
            manager.start_job(TENANT)

    def test_other_tenant_is_independent(self, manager):
        manager.start_job(TENANT)

        other = manager.start_job("globex")

        assert other.status is ImportJobStatus.RUNNING

    def test_new_job_allowed_after_terminal(self, manager, clock):
        first = manager.start_job(TENANT)
        manager.cancel_job(first.job_id)
        clock.advance(60)

        second = manager.start_job(TENANT)

        assert second.job_id != first.job_id
        assert manager.get_active_job(TENANT).job_id == second.job_id
        assert [j.job_id for j in manager.list_jobs(TENANT)] == [second.job_id, first.job_id]


# =============================================================================
# Start validation
# =============================================================================


class TestStartValidation:
    def test_unconfigured_store_creates_nothing(self, make_manager):
        def no_store(tenant_id):
            raise StoreNotConfiguredError(tenant_id)

        manager = make_manager(None, source_factory=no_store)

        with pytest.raises(StoreNotConfiguredError):
            manager.start_job(TENANT)

        assert manager.get_active_job(TENANT) is None
        assert manager.list_jobs(TENANT) == []

    def test_page_size_above_maximum_is_rejected(self, manager):
        with pytest.raises(ValueError, match="page_size"):
            manager.start_job(TENANT, {"page_size": 500})

    def test_defaults_fill_missing_options(self, manager):
        job = manager.start_job(TENANT, {"limit": None})

        assert job.options.page_size == 50
        assert job.options.duplicate_policy is DuplicatePolicy.SKIP
        assert job.options.limit is None

    def test_options_object_is_used_as_given(self, manager):
        options = ImportOptions(duplicate_policy=DuplicatePolicy.UPDATE, page_size=5, limit=7)

        job = manager.start_job(TENANT, options)

        assert manager.get_job(job.job_id).options == options

    def test_unknown_job_id(self, manager):
        with pytest.raises(ImportJobNotFoundError):
            manager.get_job(uuid4())


# =============================================================================
# Failures
# =============================================================================


class TestRecordFailures:
    def test_bad_record_is_counted_and_audited(self, make_manager, session_factory):
        orders = [woo_order(i) for i in range(1, 6)]
        orders[1] = woo_order(2, total="not-a-number")
        manager = make_manager(FakeOrderSource(orders))

        job = manager.start_job(TENANT, {"page_size": 2})
        final = manager.drain(job.job_id)

        assert final.status is ImportJobStatus.COMPLETED
        assert _counters(final) == {"imported": 4, "updated": 0, "skipped": 0, "failed": 1}
        assert _order_count(session_factory) == 4

        failures = manager.list_failures(job.job_id)
        assert len(failures) == 1
        assert failures[0].external_id == "2"
        assert failures[0].page == 1
        assert failures[0].batch == 1
        assert failures[0].reason_code == "INVALID_ORDER_PAYLOAD"

    def test_non_object_record_is_counted_failed(self, make_manager):
        manager = make_manager(FakeOrderSource([woo_order(1), "garbage", woo_order(3)]))

        job = manager.start_job(TENANT, {"page_size": 5})
        final = manager.drain(job.job_id)

        assert final.counters.imported == 2
        assert final.counters.failed == 1
        assert manager.list_failures(job.job_id)[0].external_id is None


class TestFatalErrors:
    def test_auth_error_fails_job_and_keeps_committed_batches(
        self, manager, order_source, sleeps,
    ):
        order_source.fail_page(2, error=ExternalSourceAuthError("fetch_page(2)", 401))

        job = manager.start_job(TENANT, {"page_size": 2})
        final = manager.drain(job.job_id)

        assert final.status is ImportJobStatus.FAILED
        assert "HTTP 401" in final.last_error
        assert final.counters.imported == 2
        assert final.checkpoint.current_page == 2
        assert sleeps == []

    def test_transient_errors_are_retried(self, manager, order_source, sleeps):
        order_source.fail_page(1, times=2)

        job = manager.start_job(TENANT, {"page_size": 2})
        final = manager.drain(job.job_id)

        assert final.status is ImportJobStatus.COMPLETED
        assert final.counters.imported == 5
        assert len(sleeps) == 2

    def test_retry_exhaustion_fails_job(self, manager, order_source, sleeps):
        order_source.fail_page(1, times=3)

        job = manager.start_job(TENANT, {"page_size": 2})
        outcome = manager.run_next_batch(job.job_id)

        assert isinstance(outcome, FatalError)
        assert outcome.error_code == "BATCH_RETRY_EXHAUSTED"
        final = manager.get_job(job.job_id)
        assert final.status is ImportJobStatus.FAILED
        assert final.counters.processed_orders == 0
        assert len(sleeps) == 2

    def test_count_failure_does_not_stop_import(self, manager, order_source):
        order_source.count_errors.append(ExternalSourceAuthError("count", 403))

        job = manager.start_job(TENANT, {"page_size": 2})
        final = manager.drain(job.job_id)

        assert final.status is ImportJobStatus.COMPLETED
        assert final.counters.imported == 5
        assert final.counters.grand_total is None
        assert final.percentage is None

    def test_source_lookup_failure_is_fatal(self, make_manager, order_source):
        calls = []

        def flaky_registry(tenant_id):
            calls.append(tenant_id)
            if len(calls) > 1:
                raise StoreNotConfiguredError(tenant_id)
            return order_source

        manager = make_manager(None, source_factory=flaky_registry)
        job = manager.start_job(TENANT)

        outcome = manager.run_next_batch(job.job_id)

        assert isinstance(outcome, FatalError)
        assert outcome.error_code == "STORE_NOT_CONFIGURED"
        assert manager.get_job(job.job_id).status is ImportJobStatus.FAILED


# =============================================================================
# Crash / resume
# =============================================================================


class TestCrashReplay:
    def test_crash_before_commit_replays_page(
        self, manager, order_source, session_factory, monkeypatch,
    ):
        job = manager.start_job(TENANT, {"page_size": 2})
        manager.run_next_batch(job.job_id)

        original = ImportJobStore.apply_batch
        calls = {"n": 0}

        def crash_once(self, job_id, outcome):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("simulated crash")
            return original(self, job_id, outcome)

        monkeypatch.setattr(ImportJobStore, "apply_batch", crash_once)

        with pytest.raises(RuntimeError, match="simulated crash"):
            manager.run_next_batch(job.job_id)

        after_crash = manager.get_job(job.job_id)
        assert after_crash.status is ImportJobStatus.RUNNING
        assert after_crash.checkpoint.current_page == 2
        assert after_crash.counters.processed_orders == 2
        assert _order_count(session_factory) == 2

        final = manager.drain(job.job_id)

        assert final.status is ImportJobStatus.COMPLETED
        assert _counters(final) == {"imported": 5, "updated": 0, "skipped": 0, "failed": 0}
        assert _order_count(session_factory) == 5
        assert order_source.fetch_calls.count((2, 2)) == 2

    def test_concurrent_batch_is_rejected(self, manager):
        job = manager.start_job(TENANT)
        lock = manager._batch_lock(job.job_id)
        lock.acquire()
        try:
            with pytest.raises(BatchInFlightError):
                manager.run_next_batch(job.job_id)
        finally:
            lock.release()


class TestRecover:
    def test_restarted_manager_resumes_running_job(self, make_manager, order_source):
        first = make_manager(order_source)
        job = first.start_job(TENANT, {"page_size": 2})
        first.run_next_batch(job.job_id)

        restarted = make_manager(order_source)
        scheduled = []
        restarted.attach_scheduler(scheduled.append)

        assert restarted.recover() == [job.job_id]
        assert scheduled == [job.job_id]

        final = restarted.drain(job.job_id)
        assert final.status is ImportJobStatus.COMPLETED
        assert final.counters.imported == 5

    def test_stranded_pending_job_is_promoted(self, manager, session_factory, clock, actor_id):
        job_id = uuid4()
        with session_factory() as s:
            ImportJobStore(s, clock).create(
                ImportJob(job_id=job_id, tenant_id=TENANT, status=ImportJobStatus.PENDING),
                actor_id=actor_id,
            )
            s.commit()

        assert manager.recover() == [job_id]

        recovered = manager.get_job(job_id)
        assert recovered.status is ImportJobStatus.RUNNING
        assert recovered.started_at is not None

    def test_paused_and_terminal_jobs_are_left_alone(self, manager):
        paused = manager.start_job(TENANT)
        manager.pause_job(paused.job_id)
        done = manager.start_job("globex")
        manager.drain(done.job_id)

        assert manager.recover() == []


class TestDrain:
    def test_max_batches(self, manager):
        job = manager.start_job(TENANT, {"page_size": 2})

        partial = manager.drain(job.job_id, max_batches=2)

        assert partial.status is ImportJobStatus.RUNNING
        assert partial.checkpoint.current_batch == 2

    def test_run_next_batch_returns_no_more_pages_on_last_page(self, manager):
        job = manager.start_job(TENANT, {"page_size": 10})

        assert isinstance(manager.run_next_batch(job.job_id), NoMorePages)
        assert manager.run_next_batch(job.job_id) is None


class TestPerJobState:
    def test_completed_job_is_forgotten(self, manager, publisher):
        job = manager.start_job(TENANT, {"page_size": 2})
        manager.run_next_batch(job.job_id)
        assert manager.tracked_locks == 1
        assert publisher.tracked_jobs == 1

        manager.drain(job.job_id)

        assert manager.tracked_locks == 0
        assert publisher.tracked_jobs == 0

    @pytest.mark.parametrize("stop", ["cancel", "fail"])
    def test_stopped_job_is_forgotten(self, manager, publisher, stop):
        job = manager.start_job(TENANT, {"page_size": 2})
        manager.run_next_batch(job.job_id)

        if stop == "cancel":
            manager.cancel_job(job.job_id)
        else:
            manager.fail_job(job.job_id, "boom")

        assert manager.tracked_locks == 0
        assert publisher.tracked_jobs == 0

    def test_paused_job_is_still_tracked(self, manager, publisher):
        job = manager.start_job(TENANT, {"page_size": 2})
        manager.run_next_batch(job.job_id)
        manager.pause_job(job.job_id)

        assert manager.tracked_locks == 1
        assert publisher.latest(job.job_id).status is ImportJobStatus.PAUSED
