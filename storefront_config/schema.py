"""
Engine configuration schema.

Frozen dataclasses the YAML loader produces.  Nothing here performs I/O;
``EngineConfig`` is the runtime artifact handed to the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings passed to ``init_engine_from_url``."""

    url: str
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10
    pool_timeout: int = 30


# ---------------------------------------------------------------------------
# Import engine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImportDefaults:
    """Defaults applied to import options the caller leaves unset."""

    page_size: int = 50
    max_page_size: int = 100
    duplicate_policy: str = "skip"  # skip | update
    inter_batch_delay_seconds: float = 1.0
    default_currency: str = "EGP"


@dataclass(frozen=True)
class RetrySettings:
    """Backoff policy for transient page-fetch failures.

    Delay before attempt n+1 is ``base_delay * exponential_base ** n``
    plus up to ``jitter`` seconds, capped at ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 1.0


@dataclass(frozen=True)
class ProgressSettings:
    """Progress channel sizing."""

    queue_size: int = 100


# ---------------------------------------------------------------------------
# External stores
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StoreCredentials:
    """WooCommerce REST credentials for one tenant."""

    tenant_id: str
    base_url: str
    consumer_key: str
    consumer_secret: str = field(repr=False)
    timeout_seconds: float = 30.0
    verify_ssl: bool = True


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    """Complete configuration for the import engine."""

    config_id: str
    version: int
    database: DatabaseSettings
    import_defaults: ImportDefaults = field(default_factory=ImportDefaults)
    retry: RetrySettings = field(default_factory=RetrySettings)
    progress: ProgressSettings = field(default_factory=ProgressSettings)
    stores: tuple[StoreCredentials, ...] = ()
    checksum: str = ""

    def store_for(self, tenant_id: str) -> StoreCredentials | None:
        for store in self.stores:
            if store.tenant_id == tenant_id:
                return store
        return None
