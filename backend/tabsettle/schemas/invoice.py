"""Invoice schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from tabsettle.models.invoice import PaymentStatus


class InvoiceLineCreate(BaseModel):
    """Line of a direct sale; the catalog price applies unless ``unit_price`` is given."""

    service_id: int
    quantity: int = Field(default=1, gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    employee_id: Optional[int] = None


class InvoiceCreate(BaseModel):
    """Direct sale at the counter, without a table order."""

    customer_id: Optional[int] = None
    employee_id: Optional[int] = None
    items: List[InvoiceLineCreate] = Field(min_length=1)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    payment_status: PaymentStatus = PaymentStatus.PAID
    notes: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class InvoiceItemResponse(BaseModel):
    id: int
    service_id: Optional[int] = None
    buffet_package_id: Optional[int] = None
    employee_id: Optional[int] = None
    description: str
    quantity: int
    unit_price: Decimal
    commission_rate: Decimal
    commission_amount: Decimal

    model_config = {"from_attributes": True}


class InvoiceResponse(BaseModel):
    id: int
    invoice_number: str
    order_id: Optional[int] = None
    customer_id: Optional[int] = None
    employee_id: Optional[int] = None
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    payment_method: str
    payment_status: PaymentStatus
    notes: Optional[str] = None
    created_at: datetime
    items: List[InvoiceItemResponse] = []

    model_config = {"from_attributes": True}


class SettlementResponse(BaseModel):
    """Result of settling an order; ``already_settled`` is true on a repeat call."""

    already_settled: bool
    invoice: InvoiceResponse
