"""
storefront_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``EngineConfig``.

Architecture position:
    Sits above ``storefront_kernel`` and below ``storefront_import``.
    The kernel MUST NEVER import from ``storefront_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or invalid settings.

Every successful call emits a ``STOREFRONT_CONFIG_TRACE`` log entry with
the config id, version and checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from storefront_config.loader import load_yaml_file, parse_engine_config
from storefront_config.schema import (
    DatabaseSettings,
    EngineConfig,
    ImportDefaults,
    ProgressSettings,
    RetrySettings,
    StoreCredentials,
)

_logger = logging.getLogger("storefront.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"
CONFIG_ENV_VAR = "STOREFRONT_CONFIG"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path``, then the ``STOREFRONT_CONFIG``
    environment variable, then the shipped ``sets/default.yaml``.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        KeyError: If a required setting is missing.
        ValueError: If a setting is invalid.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else _DEFAULT_CONFIG_FILE
    config_path = Path(path)

    config = parse_engine_config(load_yaml_file(config_path))

    _logger.info(
        "STOREFRONT_CONFIG_TRACE",
        extra={
            "trace_type": "STOREFRONT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(config_path),
            "store_count": len(config.stores),
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "DatabaseSettings",
    "EngineConfig",
    "ImportDefaults",
    "ProgressSettings",
    "RetrySettings",
    "StoreCredentials",
    "get_active_config",
]
