"""Order manager - the open tab of a table from creation to checkout.

Every public method is one unit of work run through the ``Store``: the order
row is locked, the edit is applied, totals are recomputed from the ledgers
and the version is bumped, all in a single transaction.  Conflicts with the
current state of the order are returned as ``Err(Conflict)`` and leave the
database untouched.

Item edits are recorded as ``OrderItemEvent`` rows.  The ``order_items`` rows
are the fold of those events and are rebuilt after each append.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from tabsettle.core.config import Settings
from tabsettle.core.errors import (
    Conflict,
    InvalidQuantity,
    OrderNotFound,
    UnknownCatalogReference,
    UnknownCustomer,
    UnknownEmployee,
    UnknownTable,
    ValidationError,
)
from tabsettle.core.results import Err, Ok, Result
from tabsettle.db.base import utcnow
from tabsettle.db.session import Store
from tabsettle.models.catalog import Customer, DiningTable, Employee
from tabsettle.models.order import (
    ItemEventAction,
    Order,
    OrderItem,
    OrderItemEvent,
    OrderKind,
    OrderStatus,
    TicketEntry,
)
from tabsettle.schemas.order import ItemChange, OrderCreate, OrderItemIn, OrderUpdate
from tabsettle.services.catalog_service import CatalogReader
from tabsettle.services.commission import to_money
from tabsettle.services.ticket_ledger import TicketLedger

if TYPE_CHECKING:
    from tabsettle.services.settlement_service import Settlement, SettlementEngine

logger = logging.getLogger(__name__)


@dataclass
class OrderState:
    """An order together with the figures derived from its ticket ledger."""

    order: Order
    total_tickets: int
    ticket_revenue: Decimal
    settlement: Optional["Settlement"] = None


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def compute_totals(
    ticket_revenue: Decimal, item_revenue: Decimal, tax_rate_percent: Decimal
) -> Totals:
    subtotal = to_money(ticket_revenue + item_revenue)
    tax = to_money(subtotal * Decimal(tax_rate_percent) / Decimal(100))
    return Totals(subtotal=subtotal, tax_amount=tax, total_amount=subtotal + tax)


def derive_totals(db: Session, order: Order, tax_rate_percent: Decimal) -> Totals:
    """Totals of ``order`` computed from the ticket ledger and the item projection."""
    ticket_revenue = TicketLedger(db).ticket_revenue(order.id)
    item_revenue = sum((item.line_total for item in order.items), Decimal("0"))
    return compute_totals(ticket_revenue, item_revenue, tax_rate_percent)


def generate_order_number(kind: str) -> str:
    prefix = "BUF" if kind == OrderKind.BUFFET.value else "ORD"
    return f"{prefix}-{utcnow():%Y%m%d}-{uuid4().hex[:6].upper()}"


# --- item event fold ---------------------------------------------------------

def _merge_key(line: dict) -> tuple:
    return (
        line["food_item_id"],
        line["unit_price"],
        line.get("special_instructions"),
        line.get("employee_id"),
    )


def fold_item_events(events: Iterable[Tuple[str, dict]]) -> List[dict]:
    """Replay item events, oldest first, into the current list of lines.

    * ``replace`` sets the list to the payload's items.
    * ``add`` merges into a line with the same item, price, instructions and
      employee, otherwise appends.
    * ``set_quantity`` sets the first line of the item and drops its other
      lines; quantity 0 drops them all.
    * ``remove`` drops every line of the item.
    """
    lines: List[dict] = []
    for action, payload in events:
        if action == ItemEventAction.REPLACE.value:
            lines = [dict(line) for line in payload["items"]]

        elif action == ItemEventAction.ADD.value:
            item = payload["item"]
            for line in lines:
                if _merge_key(line) == _merge_key(item):
                    line["quantity"] += item["quantity"]
                    break
            else:
                lines.append(dict(item))

        elif action == ItemEventAction.SET_QUANTITY.value:
            food_item_id = payload["food_item_id"]
            quantity = payload["quantity"]
            kept = []
            found = False
            for line in lines:
                if line["food_item_id"] != food_item_id:
                    kept.append(line)
                elif not found and quantity > 0:
                    line["quantity"] = quantity
                    kept.append(line)
                    found = True
            if not found and quantity > 0 and payload.get("item"):
                kept.append(dict(payload["item"], quantity=quantity))
            lines = kept

        elif action == ItemEventAction.REMOVE.value:
            food_item_id = payload["food_item_id"]
            lines = [line for line in lines if line["food_item_id"] != food_item_id]

        else:
            raise ValueError(f"Unknown item event action: {action}")
    return lines


class OrderManager:
    """Owns the mutable order record of a table."""

    def __init__(self, store: Store, settings: Settings):
        self.store = store
        self.settings = settings

    # --- queries -------------------------------------------------------------

    def get_order(self, order_id: int) -> OrderState:
        with self.store.session() as db:
            order = db.get(Order, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            return self._state(db, order)

    def list_orders(
        self,
        status: Optional[str] = None,
        table_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[OrderState], int]:
        with self.store.session() as db:
            query = db.query(Order)
            if status:
                query = query.filter(Order.status == status)
            if table_id is not None:
                query = query.filter(Order.table_id == table_id)
            total = query.count()
            orders = (
                query.options(selectinload(Order.items))
                .order_by(Order.created_at.desc(), Order.id.desc())
                .offset(skip)
                .limit(limit)
                .all()
            )
            tickets = self._ticket_counts(db, [order.id for order in orders])
            states = []
            for order in orders:
                count, revenue = tickets.get(order.id, (0, Decimal("0")))
                states.append(OrderState(order=order, total_tickets=count, ticket_revenue=revenue))
            return states, total

    def pending_order_id(self, table_id: int) -> Optional[int]:
        with self.store.session() as db:
            return self._pending_order_id(db, table_id)

    # --- creation ------------------------------------------------------------

    def create_order(
        self, data: OrderCreate, actor_id: Optional[int] = None
    ) -> Result[OrderState, Conflict]:
        """Open an order on ``data.table_id``.

        A table that already has a pending order yields ``table_already_open``
        whether the clash is seen by the pre-check or by the unique index.
        """
        try:
            result = self.store.run(lambda db: self._create_order(db, data, actor_id))
        except IntegrityError:
            existing_id = self.pending_order_id(data.table_id)
            if existing_id is None:
                raise
            logger.warning(
                f"Concurrent open on table {data.table_id} lost to order {existing_id}"
            )
            return Err(Conflict.table_already_open(data.table_id, existing_id))
        return result

    def _create_order(
        self, db: Session, data: OrderCreate, actor_id: Optional[int]
    ) -> Result[OrderState, Conflict]:
        table = db.get(DiningTable, data.table_id)
        if table is None or not table.is_active:
            raise UnknownTable(f"Table {data.table_id} not found or inactive")
        self._check_employee(db, data.employee_id)
        if data.customer_id is not None and db.get(Customer, data.customer_id) is None:
            raise UnknownCustomer(f"Customer {data.customer_id} not found")

        existing_id = self._pending_order_id(db, data.table_id)
        if existing_id is not None:
            logger.warning(f"Table {data.table_id} already has open order {existing_id}")
            return Err(Conflict.table_already_open(data.table_id, existing_id))

        kind = OrderKind(data.kind).value
        order = Order(
            order_number=generate_order_number(kind),
            table_id=data.table_id,
            kind=kind,
            status=OrderStatus.PENDING.value,
            employee_id=data.employee_id,
            customer_id=data.customer_id,
            notes=data.notes,
        )
        db.add(order)
        db.flush()

        if data.items:
            self._replace_items(db, order, data.items, actor_id)
        if data.buffet_quantity:
            result = TicketLedger(db).add_tickets(
                order, data.buffet_package_id, data.buffet_quantity, recorded_by=actor_id
            )
            if isinstance(result, Err):
                return result

        self._apply_totals(db, order)
        db.flush()
        logger.info(
            f"Opened order {order.order_number} (id={order.id}) on table {order.table_id}"
        )
        return Ok(self._state(db, order))

    # --- edits -----------------------------------------------------------------

    def replace_items(
        self,
        order_id: int,
        items: Sequence[OrderItemIn],
        expected_version: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> Result[OrderState, Conflict]:
        def work(db: Session):
            order = self._lock_order(db, order_id)
            rejected = self._check_writable(order, expected_version)
            if rejected is not None:
                return rejected
            self._replace_items(db, order, items, actor_id)
            return Ok(self._finish_edit(db, order))

        return self.store.run(work)

    def apply_item_changes(
        self,
        order_id: int,
        changes: Sequence[ItemChange],
        expected_version: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> Result[OrderState, Conflict]:
        def work(db: Session):
            order = self._lock_order(db, order_id)
            rejected = self._check_writable(order, expected_version)
            if rejected is not None:
                return rejected
            self._apply_changes(db, order, changes, actor_id)
            return Ok(self._finish_edit(db, order))

        return self.store.run(work)

    def add_tickets(
        self,
        order_id: int,
        package_id: int,
        quantity: int,
        actor_id: Optional[int] = None,
    ) -> Result[OrderState, Conflict]:
        def work(db: Session):
            order = self._lock_order(db, order_id)
            rejected = self._check_writable(order)
            if rejected is not None:
                return rejected
            result = TicketLedger(db).add_tickets(order, package_id, quantity, recorded_by=actor_id)
            if isinstance(result, Err):
                return result
            return Ok(self._finish_edit(db, order))

        return self.store.run(work)

    def reassign_employee(self, order_id: int, employee_id: Optional[int]) -> Result[OrderState, Conflict]:
        def work(db: Session):
            order = self._lock_order(db, order_id)
            rejected = self._check_writable(order)
            if rejected is not None:
                return rejected
            self._check_employee(db, employee_id)
            order.employee_id = employee_id
            return Ok(self._finish_edit(db, order))

        return self.store.run(work)

    def update_notes(self, order_id: int, notes: Optional[str]) -> Result[OrderState, Conflict]:
        def work(db: Session):
            order = self._lock_order(db, order_id)
            rejected = self._check_writable(order)
            if rejected is not None:
                return rejected
            order.notes = notes
            return Ok(self._finish_edit(db, order))

        return self.store.run(work)

    def update(
        self,
        order_id: int,
        data: OrderUpdate,
        actor_id: Optional[int] = None,
        engine: Optional["SettlementEngine"] = None,
    ) -> Result[OrderState, Conflict]:
        """Apply every edit present in ``data`` in one transaction.

        With ``status="paid"`` the order is also settled by ``engine`` inside
        that transaction, so a settlement failure leaves the edits unapplied.
        Repeating a settling update on an order that is already paid returns
        the settled order without applying the edits again.
        """
        settling = data.status == OrderStatus.PAID
        if settling and engine is None:
            raise ValueError("Settling through update needs a settlement engine")
        fields = data.model_fields_set

        def work(db: Session):
            order = self._lock_order(db, order_id)
            if settling and not order.is_pending:
                settlement = engine.settle_in(db, order.id, data.payment_method)
                logger.info(f"Repeated settling update of order {order.id} ignored its edits")
                return Ok(self._settled_state(db, order, settlement))

            has_edits = (
                data.items is not None
                or bool(data.buffet_quantity)
                or "employee_id" in fields
                or "notes" in fields
            )
            if not has_edits:
                if data.version is not None and order.is_stale(data.version):
                    return Err(Conflict.stale_version(order.id, data.version, order.version))
                if not settling:
                    return Ok(self._state(db, order))
            else:
                rejected = self._check_writable(order, data.version)
                if rejected is not None:
                    return rejected

                if "employee_id" in fields:
                    self._check_employee(db, data.employee_id)
                    order.employee_id = data.employee_id
                if "notes" in fields:
                    order.notes = data.notes
                if data.items is not None:
                    self._replace_items(db, order, data.items, actor_id)
                if data.buffet_quantity:
                    result = TicketLedger(db).add_tickets(
                        order, data.buffet_package_id, data.buffet_quantity, recorded_by=actor_id
                    )
                    if isinstance(result, Err):
                        return result
                state = self._finish_edit(db, order)
                if not settling:
                    return Ok(state)

            settlement = engine.settle_in(db, order.id, data.payment_method)
            return Ok(self._settled_state(db, order, settlement))

        attempt = 0
        while True:
            try:
                result = self.store.run(work)
            except IntegrityError:
                # Another terminal settled first, or took the invoice number
                if not settling or attempt >= engine.NUMBER_RETRIES:
                    raise
                attempt += 1
                logger.warning(f"Settling update of order {order_id} collided, retrying")
                continue
            if isinstance(result, Ok) and result.value.settlement is not None:
                engine.record_outcome(result.value.settlement)
            return result

    # --- internals -------------------------------------------------------------

    def _lock_order(self, db: Session, order_id: int) -> Order:
        query = db.query(Order).filter(Order.id == order_id)
        if self.store.supports_row_locks:
            query = query.with_for_update()
        order = query.first()
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def _check_writable(
        self, order: Order, expected_version: Optional[int] = None
    ) -> Optional[Err]:
        if not order.is_pending:
            logger.warning(f"Rejected edit of closed order {order.id}")
            return Err(Conflict.order_closed(order.id))
        if order.is_stale(expected_version):
            logger.warning(
                f"Stale write on order {order.id}: expected version {expected_version}, "
                f"current {order.version}"
            )
            return Err(Conflict.stale_version(order.id, expected_version, order.version))
        return None

    @staticmethod
    def _check_employee(db: Session, employee_id: Optional[int]) -> None:
        if employee_id is None:
            return
        employee = db.get(Employee, employee_id)
        if employee is None or not employee.is_active:
            raise UnknownEmployee(f"Employee {employee_id} not found or inactive")

    @staticmethod
    def _pending_order_id(db: Session, table_id: int) -> Optional[int]:
        return (
            db.query(Order.id)
            .filter(Order.table_id == table_id, Order.status == OrderStatus.PENDING.value)
            .limit(1)
            .scalar()
        )

    def _replace_items(
        self, db: Session, order: Order, items: Sequence[OrderItemIn], actor_id: Optional[int]
    ) -> None:
        catalog = CatalogReader(db)
        lines = [self._resolve_line(db, catalog, order, item) for item in items]
        self._record(db, order, ItemEventAction.REPLACE, {"items": lines}, actor_id)

    def _apply_changes(
        self, db: Session, order: Order, changes: Sequence[ItemChange], actor_id: Optional[int]
    ) -> None:
        catalog = CatalogReader(db)
        for change in changes:
            if change.action == ItemEventAction.ADD.value:
                line = self._resolve_line(db, catalog, order, change.as_item())
                self._record(db, order, ItemEventAction.ADD, {"item": line}, actor_id)
            elif change.action == ItemEventAction.REMOVE.value:
                self._record(
                    db, order, ItemEventAction.REMOVE, {"food_item_id": change.food_item_id}, actor_id
                )
            else:
                if change.quantity < 0:
                    raise InvalidQuantity(f"Quantity cannot be negative, got {change.quantity}")
                payload = {"food_item_id": change.food_item_id, "quantity": change.quantity}
                if change.quantity > 0:
                    payload["item"] = self._resolve_line(db, catalog, order, change.as_item())
                self._record(db, order, ItemEventAction.SET_QUANTITY, payload, actor_id)

    def _resolve_line(
        self, db: Session, catalog: CatalogReader, order: Order, item: OrderItemIn
    ) -> dict:
        """Snapshot name and price for an item line.

        An explicit price wins, then the price already on the order for the
        same item, then the catalog price.
        """
        if item.quantity is None or item.quantity <= 0:
            raise InvalidQuantity(f"Item quantity must be positive, got {item.quantity}")

        current = None
        service = None
        if item.food_item_id is not None:
            current = next(
                (line for line in order.items if line.food_item_id == item.food_item_id), None
            )
            service = catalog.get_service(item.food_item_id)
            if service is None and (item.name is None or item.unit_price is None):
                raise UnknownCatalogReference(
                    f"Service {item.food_item_id} not found and no name/price snapshot given"
                )
        elif item.name is None or item.unit_price is None:
            raise ValidationError("Items without food_item_id need a name and a unit_price")

        if item.unit_price is not None:
            price = item.unit_price
        elif current is not None:
            price = current.unit_price
        else:
            price = service.price

        name = item.name or (current.name if current is not None else service.name)
        self._check_employee(db, item.employee_id)

        return {
            "food_item_id": item.food_item_id,
            "name": name,
            "unit_price": str(to_money(price)),
            "quantity": item.quantity,
            "special_instructions": item.special_instructions,
            "employee_id": item.employee_id,
        }

    def _record(
        self,
        db: Session,
        order: Order,
        action: ItemEventAction,
        payload: dict,
        actor_id: Optional[int],
    ) -> None:
        db.add(
            OrderItemEvent(
                order_id=order.id, action=action.value, payload=payload, recorded_by=actor_id
            )
        )
        db.flush()
        self._rebuild_items(db, order)

    @staticmethod
    def _rebuild_items(db: Session, order: Order) -> None:
        events = (
            db.query(OrderItemEvent.action, OrderItemEvent.payload)
            .filter(OrderItemEvent.order_id == order.id)
            .order_by(OrderItemEvent.id)
            .all()
        )
        lines = fold_item_events(events)
        order.items.clear()
        for line in lines:
            order.items.append(
                OrderItem(
                    food_item_id=line["food_item_id"],
                    name=line["name"],
                    unit_price=Decimal(line["unit_price"]),
                    quantity=line["quantity"],
                    special_instructions=line.get("special_instructions"),
                    employee_id=line.get("employee_id"),
                )
            )
        db.flush()

    def _apply_totals(self, db: Session, order: Order) -> None:
        db.flush()
        totals = derive_totals(db, order, self.settings.tax_rate_percent)
        order.subtotal = totals.subtotal
        order.tax_amount = totals.tax_amount
        order.total_amount = totals.total_amount

    def _finish_edit(self, db: Session, order: Order) -> OrderState:
        self._apply_totals(db, order)
        order.increment_version()
        db.flush()
        return self._state(db, order)

    @staticmethod
    def _state(db: Session, order: Order) -> OrderState:
        ledger = TicketLedger(db)
        # Load the items before the session closes
        order.items
        return OrderState(
            order=order,
            total_tickets=ledger.total_tickets(order.id),
            ticket_revenue=ledger.ticket_revenue(order.id),
        )

    def _settled_state(self, db: Session, order: Order, settlement: "Settlement") -> OrderState:
        db.flush()
        state = self._state(db, order)
        state.settlement = settlement
        return state

    @staticmethod
    def _ticket_counts(db: Session, order_ids: List[int]) -> Dict[int, Tuple[int, Decimal]]:
        if not order_ids:
            return {}
        rows = (
            db.query(
                TicketEntry.order_id,
                func.sum(TicketEntry.quantity),
                func.sum(TicketEntry.quantity * TicketEntry.unit_price),
            )
            .filter(TicketEntry.order_id.in_(order_ids))
            .group_by(TicketEntry.order_id)
            .all()
        )
        return {
            order_id: (int(count), to_money(revenue or 0))
            for order_id, count, revenue in rows
        }
