"""
Module: storefront_kernel.models.customer
Responsibility: ORM persistence for tenant customers that orders link to.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``email`` is stored trimmed and lowercased; lookups compare it as is.
    - Customers are scoped to a tenant; no lookup crosses tenants.
"""

from enum import Enum

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from storefront_kernel.db.base import TrackedBase


class CustomerStatus(str, Enum):
    LEAD = "LEAD"
    CUSTOMER = "CUSTOMER"


class Customer(TrackedBase):
    """A tenant's customer, matched by email first and phone second."""

    __tablename__ = "customers"

    __table_args__ = (
        Index("ix_customers_tenant_email", "tenant_id", "email"),
        Index("ix_customers_tenant_phone", "tenant_id", "phone"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=CustomerStatus.CUSTOMER.value)

    def __repr__(self) -> str:
        return f"<Customer {self.first_name} {self.last_name} tenant={self.tenant_id}>"
