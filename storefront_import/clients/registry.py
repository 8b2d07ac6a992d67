"""
StoreRegistry -- resolves a tenant to its external order source.

Built from the configured store credentials.  Sources are created lazily
and cached per tenant; ``register()`` installs an explicit source (used
by tests and by callers that manage credentials themselves).
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

import httpx

from storefront_config.schema import StoreCredentials
from storefront_kernel.exceptions import StoreNotConfiguredError

from storefront_import.clients.base import ExternalOrderSource
from storefront_import.clients.woocommerce import WooCommerceOrderSource


class StoreRegistry:
    """Maps tenant ids to ``ExternalOrderSource`` instances."""

    def __init__(
        self,
        stores: Iterable[StoreCredentials] = (),
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._credentials = {s.tenant_id: s for s in stores}
        self._transport = transport
        self._sources: dict[str, ExternalOrderSource] = {}
        self._lock = threading.Lock()

    def register(self, tenant_id: str, source: ExternalOrderSource) -> None:
        with self._lock:
            self._sources[tenant_id] = source

    def get(self, tenant_id: str) -> ExternalOrderSource:
        """Raises StoreNotConfiguredError when the tenant has no store."""
        with self._lock:
            source = self._sources.get(tenant_id)
            if source is not None:
                return source
            credentials = self._credentials.get(tenant_id)
            if credentials is None:
                raise StoreNotConfiguredError(tenant_id)
            source = WooCommerceOrderSource.from_credentials(credentials, transport=self._transport)
            self._sources[tenant_id] = source
            return source

    __call__ = get

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self._sources or tenant_id in self._credentials

    def close(self) -> None:
        with self._lock:
            for source in self._sources.values():
                close = getattr(source, "close", None)
                if close is not None:
                    close()
            self._sources.clear()
