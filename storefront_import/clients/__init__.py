"""External order sources."""

from storefront_import.clients.base import ExternalOrderSource, OrderFilters
from storefront_import.clients.registry import StoreRegistry
from storefront_import.clients.woocommerce import WooCommerceOrderSource

__all__ = [
    "ExternalOrderSource",
    "OrderFilters",
    "StoreRegistry",
    "WooCommerceOrderSource",
]
