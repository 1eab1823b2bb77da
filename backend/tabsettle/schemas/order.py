"""Table order schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from tabsettle.models.order import OrderKind, OrderStatus

if TYPE_CHECKING:
    from tabsettle.services.order_service import OrderState


class OrderItemIn(BaseModel):
    """Item line as sent by a terminal.

    ``name`` and ``unit_price`` are optional when ``food_item_id`` points at
    the catalog; they are required for an item the catalog no longer knows.
    """

    food_item_id: Optional[int] = None
    name: Optional[str] = Field(default=None, max_length=200)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    quantity: int = Field(default=1, gt=0)
    special_instructions: Optional[str] = None
    employee_id: Optional[int] = None


class ItemChange(BaseModel):
    """One incremental edit of the item list."""

    action: Literal["add", "remove", "set_quantity"]
    food_item_id: Optional[int] = None
    name: Optional[str] = Field(default=None, max_length=200)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    quantity: Optional[int] = Field(default=None, ge=0)
    special_instructions: Optional[str] = None
    employee_id: Optional[int] = None

    @model_validator(mode="after")
    def check_action_fields(self):
        if self.action in ("remove", "set_quantity") and self.food_item_id is None:
            raise ValueError(f"'{self.action}' requires food_item_id")
        if self.action == "set_quantity" and self.quantity is None:
            raise ValueError("'set_quantity' requires quantity")
        if self.action == "add":
            if self.quantity is None:
                self.quantity = 1
            if self.quantity <= 0:
                raise ValueError("'add' requires a positive quantity")
        return self

    def as_item(self) -> OrderItemIn:
        return OrderItemIn(
            food_item_id=self.food_item_id,
            name=self.name,
            unit_price=self.unit_price,
            quantity=self.quantity or 1,
            special_instructions=self.special_instructions,
            employee_id=self.employee_id,
        )


class ItemChangesRequest(BaseModel):
    changes: List[ItemChange] = Field(min_length=1)
    version: Optional[int] = None


class OrderCreate(BaseModel):
    """Open an order on an empty table."""

    table_id: int
    kind: OrderKind = OrderKind.A_LA_CARTE
    items: List[OrderItemIn] = []
    buffet_package_id: Optional[int] = None
    buffet_quantity: int = Field(default=0, ge=0)
    employee_id: Optional[int] = None
    customer_id: Optional[int] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_buffet(self):
        if self.buffet_quantity and self.buffet_package_id is None:
            raise ValueError("buffet_quantity requires buffet_package_id")
        return self


class OrderUpdate(BaseModel):
    """Partial update of an order.

    ``items`` replaces the whole item list, ``buffet_quantity`` is added to
    the tickets already sold, and ``status="paid"`` settles the order in the
    same transaction as the other edits.
    """

    items: Optional[List[OrderItemIn]] = None
    buffet_package_id: Optional[int] = None
    buffet_quantity: Optional[int] = Field(default=None, ge=0)
    employee_id: Optional[int] = None
    notes: Optional[str] = None
    version: Optional[int] = None
    status: Optional[OrderStatus] = None
    payment_method: Optional[str] = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def check_buffet(self):
        if self.buffet_quantity and self.buffet_package_id is None:
            raise ValueError("buffet_quantity requires buffet_package_id")
        return self


class TicketTopUp(BaseModel):
    buffet_package_id: int
    quantity: int


class SettleRequest(BaseModel):
    payment_method: Optional[str] = Field(default=None, max_length=50)


class OrderItemResponse(BaseModel):
    id: int
    food_item_id: Optional[int] = None
    name: str
    unit_price: Decimal
    quantity: int
    special_instructions: Optional[str] = None
    employee_id: Optional[int] = None

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    """Order with its current items and the ticket count derived from the ledger."""

    id: int
    order_number: str
    table_id: int
    kind: OrderKind
    status: OrderStatus
    employee_id: Optional[int] = None
    customer_id: Optional[int] = None
    buffet_package_id: Optional[int] = None
    buffet_quantity: int = 0
    items: List[OrderItemResponse] = []
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_state(cls, state: "OrderState") -> "OrderResponse":
        response = cls.model_validate(state.order)
        response.buffet_quantity = state.total_tickets
        return response


class TicketEntryResponse(BaseModel):
    id: int
    buffet_package_id: int
    package_name: str
    unit_price: Decimal
    quantity: int
    recorded_by: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TicketBlockResponse(BaseModel):
    buffet_package_id: int
    package_name: str
    unit_price: Decimal
    quantity: int

    model_config = {"from_attributes": True}


class TicketLedgerResponse(BaseModel):
    order_id: int
    total_tickets: int
    ticket_revenue: Decimal
    blocks: List[TicketBlockResponse]
    entries: List[TicketEntryResponse]
