"""Dine-in order models - the open tab, its items and its ledgers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from tabsettle.db.base import Base, TimestampMixin, VersionMixin, utcnow
from tabsettle.models.validators import non_negative, positive


class OrderStatus(str, Enum):
    """Status of a table order."""

    PENDING = "pending"
    PAID = "paid"


class OrderKind(str, Enum):
    """How the table is served."""

    BUFFET = "buffet"
    A_LA_CARTE = "a_la_carte"


class ItemEventAction(str, Enum):
    """Edit recorded in the item ledger."""

    REPLACE = "replace"
    ADD = "add"
    REMOVE = "remove"
    SET_QUANTITY = "set_quantity"


class Order(Base, TimestampMixin, VersionMixin):
    """An open tab on a table, settled exactly once into an invoice."""

    __tablename__ = "orders"
    __table_args__ = (
        # One pending order per table, enforced by the database itself
        Index(
            "uq_orders_table_pending",
            "table_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    table_id: Mapped[int] = mapped_column(ForeignKey("tables.id"), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), default=OrderKind.A_LA_CARTE.value, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=OrderStatus.PENDING.value, nullable=False, index=True
    )
    employee_id: Mapped[Optional[int]] = mapped_column(ForeignKey("employees.id"), nullable=True)
    customer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("customers.id"), nullable=True)
    buffet_package_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("buffet_packages.id"), nullable=True
    )

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING.value

    @validates("subtotal", "tax_amount", "total_amount")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)


class OrderItem(Base):
    """Current item line of an order.

    Rows are a projection of the order's item events; they are rebuilt in
    the same transaction as every event append and never edited directly.
    """

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    food_item_id: Mapped[Optional[int]] = mapped_column(ForeignKey("services.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    employee_id: Mapped[Optional[int]] = mapped_column(ForeignKey("employees.id"), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("unit_price")
    def _validate_price(self, key, value):
        return non_negative(key, value)


class OrderItemEvent(Base):
    """Append-only record of an item edit."""

    __tablename__ = "order_item_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    # Caller identity from the access token, kept for audit
    recorded_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class TicketEntry(Base):
    """One buffet ticket top-up.

    Append-only: the ticket count of an order is the sum over its entries.
    Price and name are copied from the package when the entry is written.
    """

    __tablename__ = "order_buffet_tickets"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_buffet_tickets_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    buffet_package_id: Mapped[int] = mapped_column(ForeignKey("buffet_packages.id"), nullable=False)
    package_name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)


def _reject_ledger_mutation(mapper, connection, target):
    raise ValueError(
        f"{type(target).__name__} {target.id} is append-only and cannot be modified or deleted"
    )


for _ledger_model in (TicketEntry, OrderItemEvent):
    event.listen(_ledger_model, "before_update", _reject_ledger_mutation)
    event.listen(_ledger_model, "before_delete", _reject_ledger_mutation)
