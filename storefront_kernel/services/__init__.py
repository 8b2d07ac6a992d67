"""Kernel services. Each flushes and leaves the commit to its caller."""

from storefront_kernel.services.base import BaseService
from storefront_kernel.services.order_store import (
    LocalOrderStore,
    OrderInfo,
    StatusHistoryEntry,
)

__all__ = [
    "BaseService",
    "LocalOrderStore",
    "OrderInfo",
    "StatusHistoryEntry",
]
