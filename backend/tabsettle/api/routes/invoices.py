"""Invoice routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from tabsettle.api.deps import InvoiceServiceDep
from tabsettle.core.rate_limit import limiter
from tabsettle.core.rbac import CurrentUser, RequireManager
from tabsettle.models.invoice import PaymentStatus
from tabsettle.schemas.invoice import InvoiceCreate, InvoiceResponse, PaymentStatusUpdate
from tabsettle.schemas.pagination import PaginatedResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_invoice(
    request: Request,
    data: InvoiceCreate,
    service: InvoiceServiceDep,
    current_user: CurrentUser,
):
    """Create an invoice for a direct sale (no table order)."""
    return service.create_invoice(data)


@router.get("", response_model=PaginatedResponse[InvoiceResponse])
@limiter.limit("60/minute")
def list_invoices(
    request: Request,
    service: InvoiceServiceDep,
    current_user: CurrentUser,
    payment_status: Optional[PaymentStatus] = Query(None),
    employee_id: Optional[int] = Query(None),
    customer_id: Optional[int] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List invoices, newest first."""
    invoices, total = service.list_invoices(
        skip=skip,
        limit=limit,
        payment_status=payment_status.value if payment_status else None,
        employee_id=employee_id,
        customer_id=customer_id,
    )
    return PaginatedResponse.create(
        items=[InvoiceResponse.model_validate(invoice) for invoice in invoices],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{invoice_id}", response_model=InvoiceResponse)
@limiter.limit("60/minute")
def get_invoice(request: Request, invoice_id: int, service: InvoiceServiceDep, current_user: CurrentUser):
    """Get an invoice with its lines."""
    return service.get_invoice(invoice_id)


@router.patch("/{invoice_id}/payment-status", response_model=InvoiceResponse)
@limiter.limit("30/minute")
def update_payment_status(
    request: Request,
    invoice_id: int,
    data: PaymentStatusUpdate,
    service: InvoiceServiceDep,
    current_user: RequireManager,
):
    """Correct the payment status of an invoice (manager only)."""
    logger.info(
        f"Employee {current_user.employee_id} sets invoice {invoice_id} to {data.payment_status.value}"
    )
    return service.update_payment_status(invoice_id, data.payment_status)
