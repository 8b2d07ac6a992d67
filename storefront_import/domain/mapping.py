"""
WooCommerce order payload -> ``OrderDraft`` mapping.

Pure functions, ZERO I/O.  Every problem with a payload is raised as
``OrderMappingError`` so the reconciler can count the record as failed
without touching the local store.

Mapping rules:
    - ``order_number``: payload ``number``, falling back to ``WOO-<id>``.
    - ``customer_name``: billing first + last name.
    - ``city`` / ``governorate``: billing city / state with a leading
      ``<digits>:`` location code stripped.
    - ``status``: tenant status mapping first, then DEFAULT_STATUS_MAPPING,
      then PENDING.
    - ``payment_status``: COMPLETED when ``date_paid`` is set, else PENDING.
    - ``subtotal``: ``total - shipping_total``.
    - Item names lose their " - <variant>" suffix; color and size come
      from line-item meta data.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from storefront_kernel.domain.orders import OrderDraft, OrderItemDraft
from storefront_kernel.exceptions import OrderMappingError

DEFAULT_STATUS_MAPPING: dict[str, str] = {
    "pending": "PENDING",
    "processing": "PROCESSING",
    "on-hold": "PENDING",
    "completed": "DELIVERED",
    "cancelled": "CANCELLED",
    "refunded": "RETURNED",
    "failed": "CANCELLED",
}

COLOR_META_KEYS: tuple[str, ...] = ("color", "اللون", "pa_color", "pa_اللون")
SIZE_META_KEYS: tuple[str, ...] = ("size", "المقاس", "السعة", "pa_size", "pa_المقاس")

DEFAULT_CUSTOMER_NAME = "WooCommerce customer"
DEFAULT_PRODUCT_NAME = "Product"

_LOCATION_CODE = re.compile(r"^\d+:")


def map_status(external_status: str | None, status_mapping: Mapping[str, str] | None = None) -> str:
    """Map an external order status to a local one."""
    if not external_status:
        return "PENDING"
    if status_mapping and external_status in status_mapping:
        return status_mapping[external_status]
    return DEFAULT_STATUS_MAPPING.get(external_status.lower(), "PENDING")


def map_payment_method(method: str | None) -> str:
    """Map an external payment method id to a local PaymentMethod value."""
    source = (method or "").lower()
    if "cod" in source or "cash" in source:
        return "CASH"
    if "bank" in source or "bacs" in source:
        return "BANK_TRANSFER"
    if "paypal" in source:
        return "PAYPAL"
    if "stripe" in source or "card" in source:
        return "CREDIT_CARD"
    return "CASH"


def clean_location_name(location: Any) -> str | None:
    """Strip a leading ``<digits>:`` code, e.g. ``"12:Cairo"`` -> ``"Cairo"``."""
    if not location:
        return None
    return _LOCATION_CODE.sub("", str(location)).strip() or None


def _decimal(value: Any, field: str, external_id: str | None) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise OrderMappingError(f"not a number: {value!r}", field=field, external_id=external_id)
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise OrderMappingError(
            f"not a number: {value!r}", field=field, external_id=external_id,
        ) from None
    if not result.is_finite():
        raise OrderMappingError(f"not a finite number: {value!r}", field=field, external_id=external_id)
    return result


def _int(value: Any, field: str, external_id: str | None) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError, OverflowError):
        raise OrderMappingError(
            f"not an integer: {value!r}", field=field, external_id=external_id,
        ) from None


def _timestamp(payload: Mapping[str, Any], external_id: str) -> datetime | None:
    gmt = payload.get("date_created_gmt")
    local = payload.get("date_created")
    raw = gmt or local
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        raise OrderMappingError(
            f"invalid timestamp: {raw!r}", field="date_created", external_id=external_id,
        ) from None
    if parsed.tzinfo is None and gmt:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _join(*parts: Any) -> str | None:
    text = ", ".join(str(p) for p in parts if p)
    return text or None


def _meta_attributes(meta_data: Any) -> tuple[str | None, str | None]:
    color = None
    size = None
    for meta in meta_data or ():
        if not isinstance(meta, Mapping):
            continue
        key = str(meta.get("key") or "").lower()
        value = meta.get("display_value") or meta.get("value")
        if any(k in key for k in COLOR_META_KEYS):
            color = str(value) if value is not None else None
        elif any(k in key for k in SIZE_META_KEYS):
            size = str(value) if value is not None else None
    return color, size


def map_line_item(item: Mapping[str, Any], external_id: str) -> OrderItemDraft:
    """Map one WooCommerce line item."""
    if not isinstance(item, Mapping):
        raise OrderMappingError("line item is not an object", field="line_items", external_id=external_id)
    name = str(item.get("name") or DEFAULT_PRODUCT_NAME)
    if " - " in name:
        name = name.split(" - ")[0].strip()
    color, size = _meta_attributes(item.get("meta_data"))
    sku = str(item.get("sku") or "").strip() or None
    product_id = item.get("product_id")
    return OrderItemDraft(
        product_name=name,
        quantity=_int(item.get("quantity"), "line_items.quantity", external_id),
        price=_decimal(item.get("price"), "line_items.price", external_id),
        total=_decimal(item.get("total"), "line_items.total", external_id),
        product_sku=sku,
        product_color=color,
        product_size=size,
        external_product_id=str(product_id) if product_id else None,
    )


def map_external_order(
    payload: Any,
    status_mapping: Mapping[str, str] | None = None,
    default_currency: str = "EGP",
) -> OrderDraft:
    """
    Map a raw WooCommerce order to an ``OrderDraft``.

    Raises:
        OrderMappingError: if the payload is not an object, has no id, or
            carries values that cannot be parsed.
    """
    if not isinstance(payload, Mapping):
        raise OrderMappingError("order payload is not an object")
    raw_id = payload.get("id")
    if raw_id is None or str(raw_id).strip() == "":
        raise OrderMappingError("missing order id", field="id")
    external_id = str(raw_id).strip()

    billing = payload.get("billing") or {}
    shipping = payload.get("shipping") or {}
    if not isinstance(billing, Mapping) or not isinstance(shipping, Mapping):
        raise OrderMappingError("billing/shipping is not an object", field="billing", external_id=external_id)

    total = _decimal(payload.get("total"), "total", external_id)
    shipping_total = _decimal(payload.get("shipping_total"), "shipping_total", external_id)
    discount = _decimal(payload.get("discount_total"), "discount_total", external_id)

    line_items = payload.get("line_items") or []
    if not isinstance(line_items, list):
        raise OrderMappingError("line_items is not a list", field="line_items", external_id=external_id)

    customer_name = " ".join(
        str(p) for p in (billing.get("first_name"), billing.get("last_name")) if p
    ).strip()
    shipping_values = {k: v for k, v in shipping.items() if v}
    external_status = payload.get("status")

    return OrderDraft(
        external_id=external_id,
        order_number=str(payload.get("number") or f"WOO-{external_id}"),
        customer_name=customer_name or DEFAULT_CUSTOMER_NAME,
        customer_email=billing.get("email") or None,
        customer_phone=billing.get("phone") or None,
        customer_address=_join(
            billing.get("address_1"),
            billing.get("address_2"),
            billing.get("city"),
            billing.get("state"),
            billing.get("country"),
        ),
        city=clean_location_name(billing.get("city")),
        governorate=clean_location_name(billing.get("state")),
        shipping_address=(
            json.dumps(shipping_values, ensure_ascii=False, sort_keys=True)
            if shipping_values else None
        ),
        status=map_status(external_status, status_mapping),
        payment_status="COMPLETED" if payload.get("date_paid") else "PENDING",
        payment_method=map_payment_method(payload.get("payment_method")),
        subtotal=total - shipping_total,
        shipping=shipping_total,
        discount=discount,
        total=total,
        currency=str(payload.get("currency") or default_currency),
        customer_note=payload.get("customer_note") or None,
        external_order_key=payload.get("order_key") or None,
        external_status=external_status or None,
        external_created_at=_timestamp(payload, external_id),
        items=tuple(map_line_item(item, external_id) for item in line_items),
    )
