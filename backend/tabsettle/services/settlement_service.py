"""Settlement - turning an open order into its one invoice.

Settling is idempotent.  The first call writes the invoice and marks the
order paid in a single transaction; every later call, including one racing
the first from another terminal, gets the same invoice back with
``already_settled`` set.  Totals are re-derived from the ledgers and must
match what the order carries, otherwise nothing is written.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tabsettle.core.config import Settings
from tabsettle.core.errors import EmptyOrder, InconsistentTotals, OrderNotFound
from tabsettle.core.metrics import metrics
from tabsettle.db.base import utcnow
from tabsettle.db.session import Store
from tabsettle.models.catalog import DiningTable, Employee
from tabsettle.models.invoice import Invoice, InvoiceItem, PaymentStatus
from tabsettle.models.order import Order, OrderStatus
from tabsettle.services.catalog_service import CatalogReader
from tabsettle.services.commission import commission, resolve_rate
from tabsettle.services.invoice_service import (
    credit_loyalty_point,
    load_invoice,
    next_invoice_number,
)
from tabsettle.services.order_service import derive_totals
from tabsettle.services.ticket_ledger import TicketLedger

logger = logging.getLogger(__name__)


@dataclass
class Settlement:
    invoice: Invoice
    already_settled: bool


class SettlementEngine:
    """Settles orders into invoices exactly once."""

    NUMBER_RETRIES = 1

    def __init__(self, store: Store, settings: Settings):
        self.store = store
        self.settings = settings

    def settle(self, order_id: int, payment_method: Optional[str] = None) -> Settlement:
        attempt = 0
        while True:
            try:
                settlement = self.store.run(lambda db: self.settle_in(db, order_id, payment_method))
            except IntegrityError:
                existing = self._find_invoice(order_id)
                if existing is not None:
                    logger.info(
                        f"Order {order_id} was settled concurrently as {existing.invoice_number}"
                    )
                    metrics.record_settlement("race_lost")
                    return Settlement(invoice=existing, already_settled=True)
                if attempt >= self.NUMBER_RETRIES:
                    raise
                attempt += 1
                logger.warning(f"Invoice number collision settling order {order_id}, retrying")
                continue

            self.record_outcome(settlement)
            return settlement

    def settle_in(self, db: Session, order_id: int, payment_method: Optional[str] = None) -> Settlement:
        """Settle within the caller's unit of work; nothing is committed here."""
        method = payment_method or self.settings.default_payment_method
        return self._settle(db, order_id, method)

    @staticmethod
    def record_outcome(settlement: Settlement) -> None:
        if settlement.already_settled:
            metrics.record_settlement("already_settled")
        else:
            metrics.record_settlement("created")
            metrics.record_invoice("order")

    def _settle(self, db: Session, order_id: int, payment_method: str) -> Settlement:
        order = self._lock_order(db, order_id)

        existing = load_invoice(db, order_id=order.id)
        if existing is not None:
            if order.is_pending:
                # A previous attempt wrote the invoice but not the status
                self._mark_paid(order, existing.payment_method)
                db.flush()
                logger.warning(f"Order {order.id} had invoice {existing.invoice_number} but was still pending")
            logger.info(f"Order {order.id} already settled as {existing.invoice_number}")
            return Settlement(invoice=existing, already_settled=True)

        derived = derive_totals(db, order, self.settings.tax_rate_percent)
        if derived.subtotal != order.subtotal or derived.total_amount != order.total_amount:
            logger.warning(
                f"Refusing to settle order {order.id}: persisted total {order.total_amount}, "
                f"ledger-derived total {derived.total_amount}"
            )
            metrics.record_inconsistent_totals()
            raise InconsistentTotals(order.id, order.total_amount, derived.total_amount)

        lines = self._build_lines(db, order)
        if not lines:
            raise EmptyOrder(f"Order {order.id} has nothing to settle")

        invoice = Invoice(
            invoice_number=next_invoice_number(db),
            order_id=order.id,
            customer_id=order.customer_id,
            employee_id=order.employee_id,
            subtotal=order.subtotal,
            tax_amount=order.tax_amount,
            total_amount=order.total_amount,
            payment_method=payment_method,
            payment_status=PaymentStatus.PAID.value,
            notes=self._invoice_notes(db, order),
            items=lines,
        )
        db.add(invoice)
        self._mark_paid(order, payment_method)
        credit_loyalty_point(db, order.customer_id)
        db.flush()

        logger.info(
            f"Settled order {order.order_number} as {invoice.invoice_number}: "
            f"{len(lines)} line(s), total {invoice.total_amount}, {payment_method}"
        )
        return Settlement(invoice=invoice, already_settled=False)

    def _build_lines(self, db: Session, order: Order) -> List[InvoiceItem]:
        catalog = CatalogReader(db)
        lines = []

        for block in TicketLedger(db, catalog).ticket_blocks(order.id):
            lines.append(
                InvoiceItem(
                    buffet_package_id=block.buffet_package_id,
                    employee_id=order.employee_id,
                    description=f"Buffet {block.package_name}",
                    quantity=block.quantity,
                    unit_price=block.unit_price,
                    commission_rate=0,
                    commission_amount=0,
                )
            )

        for item in order.items:
            employee_id = item.employee_id or order.employee_id
            employee = db.get(Employee, employee_id) if employee_id is not None else None
            service = catalog.get_service(item.food_item_id) if item.food_item_id else None
            rate = resolve_rate(service, employee)
            lines.append(
                InvoiceItem(
                    service_id=item.food_item_id if service is not None else None,
                    employee_id=employee_id,
                    description=item.name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    commission_rate=rate,
                    commission_amount=commission(item.unit_price, item.quantity, rate),
                )
            )
        return lines

    @staticmethod
    def _invoice_notes(db: Session, order: Order) -> str:
        notes = f"Order {order.order_number}"
        table = db.get(DiningTable, order.table_id)
        if table is not None:
            notes += f" - Table: {table.table_name}"
            if table.area:
                notes += f" ({table.area})"
        if order.notes:
            notes += f" - {order.notes}"
        return notes

    @staticmethod
    def _mark_paid(order: Order, payment_method: str) -> None:
        order.status = OrderStatus.PAID.value
        order.payment_method = payment_method
        order.paid_at = utcnow()
        order.increment_version()

    def _lock_order(self, db: Session, order_id: int) -> Order:
        query = db.query(Order).filter(Order.id == order_id)
        if self.store.supports_row_locks:
            query = query.with_for_update()
        order = query.first()
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def _find_invoice(self, order_id: int) -> Optional[Invoice]:
        with self.store.session() as db:
            return load_invoice(db, order_id=order_id)
