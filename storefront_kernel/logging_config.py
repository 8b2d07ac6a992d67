"""
Structured JSON logging for the import engine.

Every record under the ``storefront`` logger is written as one JSON line:
a fixed envelope, then the job context bound through ``LogContext``, then
the record's ``extra`` payload, then exception details when present.

The job context is a single ``ContextVar`` mapping.  Threads do not
inherit it, so the import worker binds its own ``job_id``.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TextIO

CONTEXT_FIELDS = ("correlation_id", "tenant_id", "job_id", "actor_id")

_context: ContextVar[Mapping[str, str]] = ContextVar("storefront_log_context", default={})


def _accepted(fields: Mapping[str, Any]) -> dict[str, str]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
    return {name: str(value) for name, value in fields.items() if value is not None}


class LogContext:
    """Job context merged into every log line written by this thread or task."""

    @staticmethod
    def _merge(fields: Mapping[str, Any]):
        merged = {**_context.get(), **_accepted(fields)}
        return _context.set(merged)

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Update the named fields; None leaves a field as it is."""
        cls._merge(fields)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        current = _context.get()
        return {name: current[name] for name in CONTEXT_FIELDS if name in current}

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block."""
        token = cls._merge(fields)
        try:
            yield cls
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # StorefrontError subclasses keep their context as public attributes.
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Renders a record as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_ROOT_LOGGER = "storefront"

_configured = False
_configure_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``storefront`` logger.

    Only the first call has any effect until ``reset_logging()``.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        if handler is None:
            handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
        handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(_ROOT_LOGGER)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(handler)
        _configured = True


def reset_logging() -> None:
    """Detach handlers so tests can configure logging again."""
    global _configured
    with _configure_lock:
        _configured = False
        root = logging.getLogger(_ROOT_LOGGER)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
