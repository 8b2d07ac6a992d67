"""
Configuration Loader (``storefront_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the frozen
dataclasses of ``storefront_config.schema``.  Runtime callers go through
``storefront_config.get_active_config()``; the parse functions are
exposed for tests and tooling.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields never get silent defaults.
* At most one store entry per tenant.
* ``compute_checksum`` is deterministic for identical documents.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any

import yaml

from storefront_config.schema import (
    DatabaseSettings,
    EngineConfig,
    ImportDefaults,
    ProgressSettings,
    RetrySettings,
    StoreCredentials,
)

DUPLICATE_POLICIES = frozenset({"skip", "update"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _positive(name: str, value: Any, allow_zero: bool = False) -> Any:
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{name} must be {'>= 0' if allow_zero else '> 0'}, got {value!r}")
    return value


def _secret(data: dict[str, Any], key: str) -> str:
    """Read a credential inline or from the environment variable named by ``<key>_env``."""
    if data.get(key):
        return str(data[key])
    env_name = data.get(f"{key}_env")
    if env_name:
        value = os.environ.get(env_name)
        if not value:
            raise ValueError(f"Environment variable {env_name} for {key} is not set")
        return value
    raise KeyError(key)


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    """Parse DatabaseSettings from a dict."""
    return DatabaseSettings(
        url=data["url"],
        echo=bool(data.get("echo", False)),
        pool_size=_positive("database.pool_size", int(data.get("pool_size", 10))),
        max_overflow=_positive(
            "database.max_overflow", int(data.get("max_overflow", 10)), allow_zero=True
        ),
        pool_timeout=_positive("database.pool_timeout", int(data.get("pool_timeout", 30))),
    )


def parse_import_defaults(data: dict[str, Any]) -> ImportDefaults:
    """
    Parse ImportDefaults from a dict.

    Raises:
        ValueError: if duplicate_policy is unknown or page sizes are
            out of range.
    """
    policy = data.get("duplicate_policy", "skip")
    if policy not in DUPLICATE_POLICIES:
        raise ValueError(
            f"import.duplicate_policy must be one of {sorted(DUPLICATE_POLICIES)}, got {policy!r}"
        )
    page_size = _positive("import.page_size", int(data.get("page_size", 50)))
    max_page_size = _positive("import.max_page_size", int(data.get("max_page_size", 100)))
    if page_size > max_page_size:
        raise ValueError(
            f"import.page_size ({page_size}) exceeds import.max_page_size ({max_page_size})"
        )
    return ImportDefaults(
        page_size=page_size,
        max_page_size=max_page_size,
        duplicate_policy=policy,
        inter_batch_delay_seconds=_positive(
            "import.inter_batch_delay_seconds",
            float(data.get("inter_batch_delay_seconds", 1.0)),
            allow_zero=True,
        ),
        default_currency=str(data.get("default_currency", "EGP")),
    )


def parse_retry(data: dict[str, Any]) -> RetrySettings:
    """Parse RetrySettings from a dict."""
    settings = RetrySettings(
        max_attempts=_positive("retry.max_attempts", int(data.get("max_attempts", 3))),
        base_delay=_positive(
            "retry.base_delay", float(data.get("base_delay", 1.0)), allow_zero=True
        ),
        max_delay=_positive("retry.max_delay", float(data.get("max_delay", 30.0)), allow_zero=True),
        exponential_base=float(data.get("exponential_base", 2.0)),
        jitter=_positive("retry.jitter", float(data.get("jitter", 1.0)), allow_zero=True),
    )
    if settings.exponential_base < 1.0:
        raise ValueError(
            f"retry.exponential_base must be >= 1.0, got {settings.exponential_base!r}"
        )
    if settings.max_delay < settings.base_delay:
        raise ValueError("retry.max_delay must not be smaller than retry.base_delay")
    return settings


def parse_progress(data: dict[str, Any]) -> ProgressSettings:
    return ProgressSettings(
        queue_size=_positive("progress.queue_size", int(data.get("queue_size", 100))),
    )


def parse_store(data: dict[str, Any]) -> StoreCredentials:
    """Parse StoreCredentials from a dict."""
    return StoreCredentials(
        tenant_id=str(data["tenant_id"]),
        base_url=str(data["base_url"]).rstrip("/"),
        consumer_key=_secret(data, "consumer_key"),
        consumer_secret=_secret(data, "consumer_secret"),
        timeout_seconds=_positive("store.timeout_seconds", float(data.get("timeout_seconds", 30.0))),
        verify_ssl=bool(data.get("verify_ssl", True)),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse a complete EngineConfig from a loaded YAML document.

    Postconditions:
        - ``checksum`` is the SHA-256 of the document as loaded.

    Raises:
        KeyError: if ``config_id`` or ``database.url`` is missing.
        ValueError: on invalid values or duplicate store tenants.
    """
    stores = tuple(parse_store(s) for s in data.get("stores", []) or [])
    seen: set[str] = set()
    for store in stores:
        if store.tenant_id in seen:
            raise ValueError(f"Duplicate store configuration for tenant {store.tenant_id!r}")
        seen.add(store.tenant_id)

    return EngineConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        database=parse_database(data["database"]),
        import_defaults=parse_import_defaults(data.get("import", {}) or {}),
        retry=parse_retry(data.get("retry", {}) or {}),
        progress=parse_progress(data.get("progress", {}) or {}),
        stores=stores,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
