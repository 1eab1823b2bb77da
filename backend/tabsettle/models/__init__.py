"""SQLAlchemy models."""

from tabsettle.models.catalog import BuffetPackage, Customer, DiningTable, Employee, Service
from tabsettle.models.invoice import Invoice, InvoiceItem, PaymentStatus
from tabsettle.models.order import (
    ItemEventAction,
    Order,
    OrderItem,
    OrderItemEvent,
    OrderKind,
    OrderStatus,
    TicketEntry,
)

__all__ = [
    "BuffetPackage",
    "Customer",
    "DiningTable",
    "Employee",
    "Service",
    "Invoice",
    "InvoiceItem",
    "PaymentStatus",
    "ItemEventAction",
    "Order",
    "OrderItem",
    "OrderItemEvent",
    "OrderKind",
    "OrderStatus",
    "TicketEntry",
]
