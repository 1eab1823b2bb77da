"""Table order routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, Response, status

from tabsettle.api.deps import OrderManagerDep, SettlementDep
from tabsettle.core.errors import OrderNotFound
from tabsettle.core.rate_limit import limiter
from tabsettle.core.rbac import CurrentUser
from tabsettle.core.responses import conflict_response
from tabsettle.core.results import Err
from tabsettle.db.session import DbSession
from tabsettle.models.order import Order, OrderStatus
from tabsettle.schemas.invoice import InvoiceResponse, SettlementResponse
from tabsettle.schemas.order import (
    ItemChangesRequest,
    OrderCreate,
    OrderResponse,
    OrderUpdate,
    SettleRequest,
    TicketBlockResponse,
    TicketEntryResponse,
    TicketLedgerResponse,
    TicketTopUp,
)
from tabsettle.schemas.pagination import PaginatedResponse
from tabsettle.services.ticket_ledger import TicketLedger

logger = logging.getLogger(__name__)

router = APIRouter()

CONFLICT_RESPONSES = {409: {"description": "Conflict with the current state of the order"}}


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses=CONFLICT_RESPONSES,
)
@limiter.limit("60/minute")
def create_order(
    request: Request,
    data: OrderCreate,
    manager: OrderManagerDep,
    current_user: CurrentUser,
):
    """Open an order on an empty table."""
    result = manager.create_order(data, actor_id=current_user.employee_id)
    if isinstance(result, Err):
        return conflict_response(result.error)
    return OrderResponse.from_state(result.value)


@router.get("", response_model=PaginatedResponse[OrderResponse])
@limiter.limit("120/minute")
def list_orders(
    request: Request,
    manager: OrderManagerDep,
    current_user: CurrentUser,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    table_id: Optional[int] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List orders, newest first, with optional status and table filters."""
    states, total = manager.list_orders(
        status=status_filter.value if status_filter else None,
        table_id=table_id,
        skip=skip,
        limit=limit,
    )
    return PaginatedResponse.create(
        items=[OrderResponse.from_state(state) for state in states],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{order_id}", response_model=OrderResponse)
@limiter.limit("120/minute")
def get_order(request: Request, order_id: int, manager: OrderManagerDep, current_user: CurrentUser):
    """Get an order with its items and derived ticket count."""
    return OrderResponse.from_state(manager.get_order(order_id))


@router.put("/{order_id}", response_model=OrderResponse, responses=CONFLICT_RESPONSES)
@limiter.limit("60/minute")
def update_order(
    request: Request,
    order_id: int,
    data: OrderUpdate,
    manager: OrderManagerDep,
    engine: SettlementDep,
    current_user: CurrentUser,
):
    """
    Update an order.

    - ``items`` replaces the item list (pass ``version`` to reject stale edits)
    - ``buffet_quantity`` with ``buffet_package_id`` adds tickets
    - ``employee_id`` and ``notes`` are overwritten
    - ``status: "paid"`` settles the order together with the edits; if
      settling fails none of the edits are kept, and repeating the request
      on a paid order returns it unchanged
    """
    result = manager.update(order_id, data, actor_id=current_user.employee_id, engine=engine)
    if isinstance(result, Err):
        return conflict_response(result.error)
    state = result.value

    if state.settlement is not None:
        logger.info(
            f"Order {order_id} closed through update by employee {current_user.employee_id} "
            f"({state.settlement.invoice.invoice_number})"
        )
    return OrderResponse.from_state(state)


@router.post("/{order_id}/items/changes", response_model=OrderResponse, responses=CONFLICT_RESPONSES)
@limiter.limit("120/minute")
def change_items(
    request: Request,
    order_id: int,
    data: ItemChangesRequest,
    manager: OrderManagerDep,
    current_user: CurrentUser,
):
    """Apply incremental item edits (add / remove / set_quantity)."""
    result = manager.apply_item_changes(
        order_id, data.changes, expected_version=data.version, actor_id=current_user.employee_id
    )
    if isinstance(result, Err):
        return conflict_response(result.error)
    return OrderResponse.from_state(result.value)


@router.post("/{order_id}/tickets", response_model=OrderResponse, responses=CONFLICT_RESPONSES)
@limiter.limit("120/minute")
def add_tickets(
    request: Request,
    order_id: int,
    data: TicketTopUp,
    manager: OrderManagerDep,
    current_user: CurrentUser,
):
    """Add buffet tickets to the order."""
    result = manager.add_tickets(
        order_id, data.buffet_package_id, data.quantity, actor_id=current_user.employee_id
    )
    if isinstance(result, Err):
        return conflict_response(result.error)
    return OrderResponse.from_state(result.value)


@router.get("/{order_id}/tickets", response_model=TicketLedgerResponse)
@limiter.limit("120/minute")
def get_tickets(request: Request, order_id: int, db: DbSession, current_user: CurrentUser):
    """Ticket top-ups of the order and their totals."""
    if db.get(Order, order_id) is None:
        raise OrderNotFound(order_id)
    ledger = TicketLedger(db)
    return TicketLedgerResponse(
        order_id=order_id,
        total_tickets=ledger.total_tickets(order_id),
        ticket_revenue=ledger.ticket_revenue(order_id),
        blocks=[TicketBlockResponse.model_validate(block) for block in ledger.ticket_blocks(order_id)],
        entries=[TicketEntryResponse.model_validate(entry) for entry in ledger.entries(order_id)],
    )


@router.post(
    "/{order_id}/settle",
    response_model=SettlementResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def settle_order(
    request: Request,
    response: Response,
    order_id: int,
    engine: SettlementDep,
    current_user: CurrentUser,
    data: Optional[SettleRequest] = None,
):
    """
    Settle the order into an invoice.

    Safe to repeat: a settled order returns its existing invoice with
    ``already_settled`` set and status 200.
    """
    settlement = engine.settle(order_id, data.payment_method if data else None)
    if settlement.already_settled:
        response.status_code = status.HTTP_200_OK
    return SettlementResponse(
        already_settled=settlement.already_settled,
        invoice=InvoiceResponse.model_validate(settlement.invoice),
    )
