"""
Order DTOs -- immutable drafts handed to the local order store.

Pure value objects: the import engine maps external payloads into an
``OrderDraft`` and the ``LocalOrderStore`` turns drafts into rows.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class OrderItemDraft:
    """One order line as read from the external store."""

    product_name: str
    quantity: int
    price: Decimal
    total: Decimal
    product_sku: str | None = None
    product_color: str | None = None
    product_size: str | None = None
    external_product_id: str | None = None


@dataclass(frozen=True)
class OrderDraft:
    """Everything needed to create or refresh a local order.

    Contains only fields the external store owns; local-only data
    (internal notes, status history) is never part of a draft.
    """

    external_id: str
    order_number: str
    customer_name: str
    status: str
    payment_status: str
    payment_method: str
    subtotal: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    currency: str = "EGP"
    customer_email: str | None = None
    customer_phone: str | None = None
    customer_address: str | None = None
    city: str | None = None
    governorate: str | None = None
    shipping_address: str | None = None
    customer_note: str | None = None
    external_order_key: str | None = None
    external_status: str | None = None
    external_created_at: datetime | None = None
    source_type: str = "woocommerce"
    items: tuple[OrderItemDraft, ...] = ()

    def mutable_fields(self) -> dict[str, Any]:
        """Fields an import refresh may overwrite on an existing order."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name in ORDER_MUTABLE_FIELDS
        }


# Fields owned by the external store.  ``external_id``, ``order_number``,
# ``source_type`` and items are fixed at creation.
ORDER_MUTABLE_FIELDS: frozenset[str] = frozenset({
    "customer_name",
    "customer_email",
    "customer_phone",
    "customer_address",
    "city",
    "governorate",
    "shipping_address",
    "status",
    "payment_status",
    "payment_method",
    "subtotal",
    "shipping",
    "discount",
    "total",
    "currency",
    "customer_note",
    "external_order_key",
    "external_status",
    "external_created_at",
})
