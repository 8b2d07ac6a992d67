"""
Module: storefront_kernel.models.order
Responsibility: ORM persistence for the local order store -- orders, their
    line items, and the append-only status history.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (tenant_id, external_id) is unique: one local order per external order
      per tenant.  The import reconciler looks orders up by this pair.
    - ``internal_notes`` and ``OrderStatusHistory`` rows are local-only; the
      import engine never overwrites them when refreshing an order.
    - ``customer_id`` links the order to a tenant Customer; the inline
      customer columns keep what the order was placed with.
    - Money columns are Decimal (Numeric(14, 2)), never float.

Failure modes:
    - IntegrityError on a duplicate (tenant_id, external_id) pair.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront_kernel.db.base import TrackedBase, UUIDString


class OrderStatus(str, Enum):
    """Local order fulfilment status."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    PAYPAL = "PAYPAL"
    CREDIT_CARD = "CREDIT_CARD"


class Order(TrackedBase):
    """
    A customer order owned by one tenant.

    Orders pulled from an external store carry ``external_id`` and the
    external status/creation timestamp; ``source_type`` tells where the
    order came from.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_orders_tenant_external_id"),
        Index("ix_orders_tenant_status", "tenant_id", "status"),
        Index("ix_orders_tenant_order_number", "tenant_id", "order_number"),
        Index("ix_orders_customer", "customer_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    order_number: Mapped[str] = mapped_column(String(100), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_order_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    customer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
    )
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    governorate: Mapped[str | None] = mapped_column(String(100), nullable=True)
    shipping_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    shipping: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    discount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EGP")

    customer_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_type: Mapped[str] = mapped_column(String(30), nullable=False, default="manual")
    last_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.line_no",
    )
    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.changed_at",
    )

    def __repr__(self) -> str:
        return f"<Order {self.order_number} tenant={self.tenant_id} status={self.status}>"


class OrderItem(TrackedBase):
    """One line of an order."""

    __tablename__ = "order_items"

    __table_args__ = (
        Index("ix_order_items_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_name: Mapped[str] = mapped_column(String(300), nullable=False)
    product_sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    product_color: Mapped[str | None] = mapped_column(String(100), nullable=True)
    product_size: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class OrderStatusHistory(TrackedBase):
    """Append-only record of local status changes for an order."""

    __tablename__ = "order_status_history"

    __table_args__ = (
        Index("ix_order_status_history_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    changed_by: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")
