"""
LocalOrderStore -- the local order store the import engine writes into.

Responsibility:
    Exact lookup of orders by external identifier, creation of orders
    (with items and the initial status history row) from an
    ``OrderDraft``, and in-place refresh of the externally owned fields.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes, never commits.

Invariants enforced:
    - Lookup is an exact (tenant_id, external_id) match.
    - ``update()`` only touches ``ORDER_MUTABLE_FIELDS``; internal notes and
      status history are never rewritten.
    - Status history is append-only.
    - Customers are matched within the tenant by lowercased email, then
      by phone; a customer is created only when neither matches.

Failure modes:
    - OrderNotFoundError when updating an unknown order id.
    - ValueError when ``update()`` is asked to write a field the external
      store does not own.
    - IntegrityError (at flush) on a duplicate (tenant_id, external_id).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront_kernel.domain.clock import Clock, SystemClock
from storefront_kernel.domain.orders import ORDER_MUTABLE_FIELDS, OrderDraft
from storefront_kernel.exceptions import OrderNotFoundError
from storefront_kernel.logging_config import get_logger
from storefront_kernel.models.customer import Customer, CustomerStatus
from storefront_kernel.models.order import Order, OrderItem, OrderStatusHistory
from storefront_kernel.services.base import BaseService

logger = get_logger("services.order_store")

DEFAULT_FIRST_NAME = "WooCommerce"
DEFAULT_LAST_NAME = "Customer"
IMPORTED_CUSTOMER_NOTE = "Imported from WooCommerce"


@dataclass(frozen=True)
class OrderInfo:
    """Immutable view of a local order (no ORM attached)."""

    id: UUID
    tenant_id: str
    order_number: str
    external_id: str | None
    status: str
    external_status: str | None
    payment_status: str
    total: Decimal
    currency: str
    customer_name: str
    customer_id: UUID | None
    internal_notes: str | None
    last_synced_at: datetime | None


@dataclass(frozen=True)
class CustomerInfo:
    id: UUID
    tenant_id: str
    first_name: str
    last_name: str
    email: str | None
    phone: str | None


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: str
    old_status: str | None
    changed_by: str
    reason: str | None
    changed_at: datetime


class LocalOrderStore(BaseService[Order]):
    """Reads and writes local orders on behalf of the import engine."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _to_dto(self, order: Order) -> OrderInfo:
        return OrderInfo(
            id=order.id,
            tenant_id=order.tenant_id,
            order_number=order.order_number,
            external_id=order.external_id,
            status=order.status,
            external_status=order.external_status,
            payment_status=order.payment_status,
            total=order.total,
            currency=order.currency,
            customer_name=order.customer_name,
            customer_id=order.customer_id,
            internal_notes=order.internal_notes,
            last_synced_at=order.last_synced_at,
        )

    def _get(self, order_id: UUID) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def find_by_external_id(self, tenant_id: str, external_id: str) -> OrderInfo | None:
        """Exact lookup by external order id within a tenant."""
        order = self.session.execute(
            select(Order).where(
                Order.tenant_id == tenant_id,
                Order.external_id == external_id,
            )
        ).scalar_one_or_none()
        return self._to_dto(order) if order is not None else None

    def get(self, order_id: UUID) -> OrderInfo:
        return self._to_dto(self._get(order_id))

    def count_for_tenant(self, tenant_id: str) -> int:
        return len(
            self.session.execute(
                select(Order.id).where(Order.tenant_id == tenant_id)
            ).all()
        )

    def get_status_history(self, order_id: UUID) -> tuple[StatusHistoryEntry, ...]:
        rows = self.session.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.changed_at, OrderStatusHistory.created_at)
        ).scalars().all()
        return tuple(
            StatusHistoryEntry(
                status=r.status,
                old_status=r.old_status,
                changed_by=r.changed_by,
                reason=r.reason,
                changed_at=r.changed_at,
            )
            for r in rows
        )

    def find_customer(
        self, tenant_id: str, email: str | None = None, phone: str | None = None,
    ) -> CustomerInfo | None:
        """Tenant customer by lowercased email, falling back to phone."""
        email = _normalise_email(email)
        phone = _normalise_phone(phone)
        for column, value in ((Customer.email, email), (Customer.phone, phone)):
            if value is None:
                continue
            customer = self.session.execute(
                select(Customer)
                .where(Customer.tenant_id == tenant_id, column == value)
                .order_by(Customer.created_at, Customer.id)
                .limit(1)
            ).scalar_one_or_none()
            if customer is not None:
                return _customer_dto(customer)
        return None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(
        self,
        tenant_id: str,
        draft: OrderDraft,
        actor_id: UUID,
        changed_by: str = "system",
        reason: str | None = None,
        customer_id: UUID | None = None,
    ) -> OrderInfo:
        """Create an order, its items and the initial status history row."""
        now = self._clock.now()
        order = Order(
            tenant_id=tenant_id,
            order_number=draft.order_number,
            external_id=draft.external_id,
            source_type=draft.source_type,
            customer_id=customer_id,
            last_synced_at=now,
            created_by_id=actor_id,
            **draft.mutable_fields(),
        )
        for line_no, item in enumerate(draft.items, start=1):
            order.items.append(
                OrderItem(
                    line_no=line_no,
                    product_name=item.product_name,
                    product_sku=item.product_sku,
                    product_color=item.product_color,
                    product_size=item.product_size,
                    external_product_id=item.external_product_id,
                    quantity=item.quantity,
                    price=item.price,
                    total=item.total,
                    created_by_id=actor_id,
                )
            )
        order.status_history.append(
            OrderStatusHistory(
                status=draft.status,
                old_status=None,
                changed_by=changed_by,
                reason=reason,
                changed_at=now,
                created_by_id=actor_id,
            )
        )
        self.session.add(order)
        self.session.flush()

        logger.debug(
            "order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "external_id": draft.external_id,
                "item_count": len(draft.items),
            },
        )
        return self._to_dto(order)

    def find_or_create_customer(
        self, tenant_id: str, draft: OrderDraft, actor_id: UUID,
    ) -> CustomerInfo:
        """Match the draft's customer within the tenant, creating one if needed."""
        existing = self.find_customer(tenant_id, draft.customer_email, draft.customer_phone)
        if existing is not None:
            return existing

        parts = (draft.customer_name or "").split()
        customer = Customer(
            tenant_id=tenant_id,
            first_name=parts[0] if parts else DEFAULT_FIRST_NAME,
            last_name=" ".join(parts[1:]) or DEFAULT_LAST_NAME,
            email=_normalise_email(draft.customer_email),
            phone=_normalise_phone(draft.customer_phone),
            notes=IMPORTED_CUSTOMER_NOTE,
            status=CustomerStatus.CUSTOMER.value,
            created_by_id=actor_id,
        )
        self.session.add(customer)
        self.session.flush()

        logger.debug(
            "customer_created",
            extra={"customer_id": str(customer.id), "tenant_id": tenant_id},
        )
        return _customer_dto(customer)

    def update(
        self,
        order_id: UUID,
        fields: dict[str, Any],
        actor_id: UUID | None = None,
        customer_id: UUID | None = None,
    ) -> OrderInfo:
        """Overwrite externally owned fields of an existing order.

        A given ``customer_id`` relinks the order; None keeps the current link.

        Raises:
            OrderNotFoundError: If order_id does not exist.
            ValueError: If ``fields`` names a field outside ORDER_MUTABLE_FIELDS.
        """
        illegal = set(fields) - ORDER_MUTABLE_FIELDS
        if illegal:
            raise ValueError(
                f"Fields not updatable from an external source: {sorted(illegal)}"
            )

        order = self._get(order_id)
        for name, value in fields.items():
            setattr(order, name, value)
        if customer_id is not None:
            order.customer_id = customer_id
        order.last_synced_at = self._clock.now()
        order.updated_by_id = actor_id
        self.session.flush()

        logger.debug(
            "order_updated",
            extra={"order_id": str(order_id), "fields": sorted(fields)},
        )
        return self._to_dto(order)

    def record_status_change(
        self,
        order_id: UUID,
        status: str,
        old_status: str | None,
        actor_id: UUID,
        changed_by: str = "system",
        reason: str | None = None,
    ) -> None:
        """Append one status history row."""
        self._get(order_id)
        self.session.add(
            OrderStatusHistory(
                order_id=order_id,
                status=status,
                old_status=old_status,
                changed_by=changed_by,
                reason=reason,
                changed_at=self._clock.now(),
                created_by_id=actor_id,
            )
        )
        self.session.flush()


def _normalise_email(email: str | None) -> str | None:
    return (email or "").strip().lower() or None


def _normalise_phone(phone: str | None) -> str | None:
    return (phone or "").strip() or None


def _customer_dto(customer: Customer) -> CustomerInfo:
    return CustomerInfo(
        id=customer.id,
        tenant_id=customer.tenant_id,
        first_name=customer.first_name,
        last_name=customer.last_name,
        email=customer.email,
        phone=customer.phone,
    )
