"""
External order source contract.

The batch runner depends only on this protocol; the WooCommerce client is
one implementation and tests supply in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from storefront_import.domain.types import ImportOptions


@dataclass(frozen=True)
class OrderFilters:
    """Server-side filters forwarded to the external store."""

    status: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None

    @classmethod
    def from_options(cls, options: ImportOptions) -> OrderFilters:
        return cls(
            status=options.status_filter,
            created_after=options.created_after,
            created_before=options.created_before,
        )


@runtime_checkable
class ExternalOrderSource(Protocol):
    """Paged, read-only access to an external store's orders.

    Pages are 1-based and ordered by creation date ascending, so page N
    of a stable catalog always holds the same records.
    """

    def count(self, filters: OrderFilters) -> int:
        """Total number of orders matching ``filters``."""
        ...

    def fetch_page(
        self, filters: OrderFilters, page: int, page_size: int,
    ) -> list[dict[str, Any]]:
        """One page of raw order payloads; empty past the last page."""
        ...
