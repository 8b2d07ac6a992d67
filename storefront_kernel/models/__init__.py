"""ORM models owned by the kernel (local order store)."""

from storefront_kernel.models.customer import Customer, CustomerStatus
from storefront_kernel.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    PaymentMethod,
    PaymentStatus,
)

__all__ = [
    "Customer",
    "CustomerStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "PaymentMethod",
    "PaymentStatus",
]
