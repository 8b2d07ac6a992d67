"""
ImportOrchestrator -- DI container for the import job engine.

Contract:
    Wires the ProgressPublisher, RetryRunner, StoreRegistry and
    JobManager with one shared Clock, and optionally an ImportWorker for
    background execution.  Single place where all import dependencies
    are composed.

Architecture: storefront_import (top-level).  The canonical entry point
    for configuring and running import jobs.

Non-goals:
    - Does NOT start the worker automatically -- caller decides.
    - Does NOT own the database engine's lifetime beyond ``from_config``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from storefront_config import get_active_config
from storefront_config.schema import EngineConfig
from storefront_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from storefront_kernel.domain.clock import Clock, SystemClock
from storefront_kernel.logging_config import get_logger

from storefront_import.clients.base import ExternalOrderSource
from storefront_import.clients.registry import StoreRegistry
from storefront_import.services.job_manager import JobManager
from storefront_import.services.progress import ProgressPublisher
from storefront_import.services.retry import RetryPolicy, RetryRunner
from storefront_import.services.worker import ImportWorker

logger = get_logger("import.orchestrator")


class ImportOrchestrator:
    """DI container for the import job engine.

    Contract:
        - ``from_config()`` initialises the database and builds a fully
          wired orchestrator from an ``EngineConfig``.
        - ``start_worker()`` attaches background execution to the manager.
        - ``shutdown()`` stops the worker and closes external clients.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        source_factory: Callable[[str], ExternalOrderSource],
        config: EngineConfig,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._clock = clock or SystemClock()
        self._source_factory = source_factory
        self._publisher = ProgressPublisher(queue_size=config.progress.queue_size)
        self._retry = RetryRunner(RetryPolicy.from_settings(config.retry), sleep=sleep)
        self._manager = JobManager(
            session_factory=session_factory,
            source_factory=source_factory,
            publisher=self._publisher,
            clock=self._clock,
            retry=self._retry,
            defaults=config.import_defaults,
            actor_id=actor_id,
        )
        self._worker: ImportWorker | None = None

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        transport: httpx.BaseTransport | None = None,
        create_schema: bool = True,
    ) -> ImportOrchestrator:
        """Initialise the engine from configuration.

        Args:
            config: Engine configuration; defaults to ``get_active_config()``.
            clock: Optional clock for deterministic testing.
            actor_id: Actor recorded on engine-initiated writes.
            transport: Optional httpx transport for every store client.
            create_schema: Create missing tables after connecting.
        """
        config = config or get_active_config()
        db = config.database
        init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
        )
        if create_schema:
            import storefront_import.models  # noqa: F401

            create_tables()

        registry = StoreRegistry(config.stores, transport=transport)
        logger.info(
            "import_orchestrator_initialized",
            extra={"config_id": config.config_id, "store_count": len(config.stores)},
        )
        return cls(
            session_factory=get_session_factory(),
            source_factory=registry,
            config=config,
            clock=clock,
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def start_worker(self, recover: bool = True) -> ImportWorker:
        """Run jobs in background threads; optionally resume unfinished jobs."""
        if self._worker is None:
            self._worker = ImportWorker(
                self._manager,
                inter_batch_delay=self._config.import_defaults.inter_batch_delay_seconds,
            )
            self._manager.attach_scheduler(self._worker.schedule)
        if recover:
            self._manager.recover()
        return self._worker

    def shutdown(self, timeout: float = 30.0) -> None:
        if self._worker is not None:
            self._worker.stop(timeout=timeout)
            self._manager.attach_scheduler(None)
            self._worker = None
        close = getattr(self._source_factory, "close", None)
        if close is not None:
            close()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def manager(self) -> JobManager:
        return self._manager

    @property
    def publisher(self) -> ProgressPublisher:
        return self._publisher

    @property
    def worker(self) -> ImportWorker | None:
        return self._worker

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock
