"""
Pytest fixtures for the storefront import test suite.

Provides:
- Structured logging configured once per session, plus a captured_logs
  fixture that returns parsed JSON records.
- In-memory SQLite engine / session factory with every table created.
- A DeterministicClock pinned to 2026-02-01 12:00 UTC.
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from storefront_kernel.db.base import Base
from storefront_kernel.db.engine import create_sqlite_engine
from storefront_kernel.domain.clock import DeterministicClock
from storefront_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

import storefront_kernel.models  # noqa: F401
import storefront_import.models  # noqa: F401

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

FIXED_TIME = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture storefront logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, manager):
            manager.start_job(...)
            logs = captured_logs()
            assert any(r["message"] == "import_job_started" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("storefront")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite with every ORM table created."""
    eng = create_sqlite_engine("sqlite://")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=FIXED_TIME)


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID
