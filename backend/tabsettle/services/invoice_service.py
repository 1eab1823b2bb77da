"""Invoices - numbering, direct sales and payment status corrections."""

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from tabsettle.core.config import Settings
from tabsettle.core.errors import (
    InvoiceNotFound,
    UnknownCatalogReference,
    UnknownCustomer,
    UnknownEmployee,
    ValidationError,
)
from tabsettle.core.metrics import metrics
from tabsettle.db.session import Store
from tabsettle.models.catalog import Customer, Employee
from tabsettle.models.invoice import Invoice, InvoiceItem, PaymentStatus
from tabsettle.schemas.invoice import InvoiceCreate
from tabsettle.services.catalog_service import CatalogReader
from tabsettle.services.commission import commission, resolve_rate, to_money

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "INV"
INVOICE_DIGITS = 6


def format_invoice_number(sequence: int) -> str:
    return f"{INVOICE_PREFIX}{sequence:0{INVOICE_DIGITS}d}"


def next_invoice_number(db: Session) -> str:
    """Next number of the ``INV000001`` sequence.

    Numbers are zero padded to six digits and grow past that, so the latest
    one is the longest, then the greatest.  Two writers can compute the same
    number; the unique constraint on ``invoice_number`` rejects the second
    and its caller retries.
    """
    last = (
        db.query(Invoice.invoice_number)
        .filter(Invoice.invoice_number.like(f"{INVOICE_PREFIX}%"))
        .order_by(func.length(Invoice.invoice_number).desc(), Invoice.invoice_number.desc())
        .limit(1)
        .scalar()
    )
    sequence = 0
    if last:
        try:
            sequence = int(last[len(INVOICE_PREFIX):])
        except ValueError:
            logger.warning(f"Ignoring malformed invoice number {last!r}")
    return format_invoice_number(sequence + 1)


def credit_loyalty_point(db: Session, customer_id: Optional[int]) -> None:
    if customer_id is None:
        return
    customer = db.get(Customer, customer_id)
    if customer is not None:
        customer.loyalty_points = (customer.loyalty_points or 0) + 1


def load_invoice(db: Session, **criteria) -> Optional[Invoice]:
    """Invoice matching ``criteria`` with its lines loaded."""
    return (
        db.query(Invoice)
        .options(selectinload(Invoice.items))
        .filter_by(**criteria)
        .first()
    )


class InvoiceService:
    """Direct sales and invoice lookups."""

    NUMBER_RETRIES = 1

    def __init__(self, store: Store, settings: Settings):
        self.store = store
        self.settings = settings

    def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """Bill services sold without a table order.

        Lines are priced from the catalog unless a price is given, and each
        line's commission is fixed at the rate in force now.
        """
        attempt = 0
        while True:
            try:
                invoice = self.store.run(lambda db: self._create_invoice(db, data))
            except IntegrityError:
                if attempt >= self.NUMBER_RETRIES:
                    raise
                attempt += 1
                logger.warning("Invoice number collision, retrying with the next number")
                continue
            metrics.record_invoice("direct")
            logger.info(
                f"Created invoice {invoice.invoice_number} (direct sale, total {invoice.total_amount})"
            )
            return invoice

    def _create_invoice(self, db: Session, data: InvoiceCreate) -> Invoice:
        catalog = CatalogReader(db)
        if data.customer_id is not None and db.get(Customer, data.customer_id) is None:
            raise UnknownCustomer(f"Customer {data.customer_id} not found")
        self._get_employee(db, data.employee_id)

        lines: List[InvoiceItem] = []
        for line in data.items:
            service = catalog.get_service(line.service_id)
            if service is None:
                raise UnknownCatalogReference(f"Service {line.service_id} not found")
            employee_id = line.employee_id or data.employee_id
            employee = self._get_employee(db, employee_id)
            unit_price = to_money(line.unit_price if line.unit_price is not None else service.price)
            rate = resolve_rate(service, employee)
            lines.append(
                InvoiceItem(
                    service_id=service.id,
                    employee_id=employee_id,
                    description=service.name,
                    quantity=line.quantity,
                    unit_price=unit_price,
                    commission_rate=rate,
                    commission_amount=commission(unit_price, line.quantity, rate),
                )
            )

        subtotal = to_money(sum((item.line_total for item in lines), Decimal("0")))
        tax = to_money(subtotal * self.settings.tax_rate_percent / Decimal(100))
        discount = to_money(data.discount_amount)
        total = subtotal + tax - discount
        if total < 0:
            raise ValidationError(f"Discount {discount} exceeds the invoice amount {subtotal + tax}")

        invoice = Invoice(
            invoice_number=next_invoice_number(db),
            customer_id=data.customer_id,
            employee_id=data.employee_id,
            subtotal=subtotal,
            tax_amount=tax,
            discount_amount=discount,
            total_amount=total,
            payment_method=data.payment_method or self.settings.default_payment_method,
            payment_status=PaymentStatus(data.payment_status).value,
            notes=data.notes,
            items=lines,
        )
        db.add(invoice)
        credit_loyalty_point(db, data.customer_id)
        db.flush()
        return invoice

    def get_invoice(self, invoice_id: int) -> Invoice:
        with self.store.session() as db:
            invoice = load_invoice(db, id=invoice_id)
            if invoice is None:
                raise InvoiceNotFound(invoice_id)
            return invoice

    def list_invoices(
        self,
        skip: int = 0,
        limit: int = 50,
        payment_status: Optional[str] = None,
        employee_id: Optional[int] = None,
        customer_id: Optional[int] = None,
    ) -> Tuple[List[Invoice], int]:
        with self.store.session() as db:
            query = db.query(Invoice)
            if payment_status:
                query = query.filter(Invoice.payment_status == payment_status)
            if employee_id is not None:
                query = query.filter(Invoice.employee_id == employee_id)
            if customer_id is not None:
                query = query.filter(Invoice.customer_id == customer_id)
            total = query.count()
            invoices = (
                query.options(selectinload(Invoice.items))
                .order_by(Invoice.id.desc())
                .offset(skip)
                .limit(limit)
                .all()
            )
            return invoices, total

    def update_payment_status(self, invoice_id: int, payment_status: PaymentStatus) -> Invoice:
        """Correct the payment status, the one field of an invoice that may change."""

        def work(db: Session) -> Invoice:
            invoice = load_invoice(db, id=invoice_id)
            if invoice is None:
                raise InvoiceNotFound(invoice_id)
            previous = invoice.payment_status
            invoice.payment_status = PaymentStatus(payment_status).value
            db.flush()
            logger.info(
                f"Invoice {invoice.invoice_number} payment status {previous} -> {invoice.payment_status}"
            )
            return invoice

        return self.store.run(work)

    @staticmethod
    def _get_employee(db: Session, employee_id: Optional[int]) -> Optional[Employee]:
        if employee_id is None:
            return None
        employee = db.get(Employee, employee_id)
        if employee is None:
            raise UnknownEmployee(f"Employee {employee_id} not found")
        return employee
