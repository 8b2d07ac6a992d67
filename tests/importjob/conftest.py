"""Shared fixtures for import job tests."""

from collections.abc import Callable
from typing import Any

import pytest

from storefront_kernel.services.order_store import LocalOrderStore

from storefront_import.services.job_manager import JobManager
from storefront_import.services.progress import ProgressPublisher
from storefront_import.services.retry import RetryPolicy, RetryRunner

from tests.importjob.fakes import FakeOrderSource, woo_order


@pytest.fixture
def make_woo_order() -> Callable[..., dict[str, Any]]:
    return woo_order


@pytest.fixture
def order_source() -> FakeOrderSource:
    return FakeOrderSource([woo_order(i) for i in range(1, 6)])


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fast_retry(sleeps) -> RetryRunner:
    """Three attempts, recorded instead of slept."""
    return RetryRunner(
        RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0, jitter=0.0),
        sleep=sleeps.append,
    )


@pytest.fixture
def publisher() -> ProgressPublisher:
    return ProgressPublisher(queue_size=100)


@pytest.fixture
def make_manager(session_factory, clock, fast_retry, publisher, actor_id):
    """Build a JobManager whose every tenant reads from ``source``."""

    def _make(source, **kwargs) -> JobManager:
        return JobManager(
            session_factory=session_factory,
            source_factory=kwargs.pop("source_factory", lambda tenant_id: source),
            publisher=kwargs.pop("publisher", publisher),
            clock=clock,
            retry=kwargs.pop("retry", fast_retry),
            actor_id=actor_id,
            **kwargs,
        )

    return _make


@pytest.fixture
def manager(make_manager, order_source) -> JobManager:
    return make_manager(order_source)


@pytest.fixture
def order_store(session, clock) -> LocalOrderStore:
    return LocalOrderStore(session, clock)
