"""Payroll Service.

Monthly earnings per employee: base salary plus the commission on every
paid invoice line credited to them.  Commission is recomputed from the
rate stored on each line, so editing a rate later never changes a past
month.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from tabsettle.core.config import Settings
from tabsettle.core.errors import EmployeeNotFound, InvalidMonth
from tabsettle.db.session import Store
from tabsettle.models.catalog import Employee
from tabsettle.models.invoice import Invoice, InvoiceItem, PaymentStatus
from tabsettle.services.commission import commission, to_money

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


@dataclass
class PayrollLine:
    """Commission earned by one employee on one invoice."""
    invoice_id: int
    invoice_number: str
    invoiced_at: datetime
    sales: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")


@dataclass
class EmployeePayroll:
    """Monthly payroll report for one employee."""
    employee_id: int
    employee_code: Optional[str]
    fullname: str
    month: str
    base_salary: Decimal
    total_sales: Decimal = Decimal("0")
    total_commission: Decimal = Decimal("0")
    invoices: List[PayrollLine] = field(default_factory=list)

    @property
    def total_income(self) -> Decimal:
        return self.base_salary + self.total_commission


def month_bounds(month: str, tz_name: str) -> Tuple[datetime, datetime]:
    """Start (inclusive) and end (exclusive) of ``YYYY-MM`` in ``tz_name``, as naive UTC."""
    match = MONTH_PATTERN.match(month or "")
    if not match:
        raise InvalidMonth(f"Month must be formatted YYYY-MM, got {month!r}")
    year, mon = int(match.group(1)), int(match.group(2))
    tz = ZoneInfo(tz_name)
    start = datetime(year, mon, 1, tzinfo=tz)
    end = datetime(year + 1, 1, 1, tzinfo=tz) if mon == 12 else datetime(year, mon + 1, 1, tzinfo=tz)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


class PayrollService:
    """Reports commission-based payroll from settled invoices."""

    def __init__(self, store: Store, settings: Settings):
        self.store = store
        self.settings = settings

    def employee_report(self, employee_id: int, month: str) -> EmployeePayroll:
        start, end = month_bounds(month, self.settings.timezone)
        with self.store.session() as db:
            employee = db.get(Employee, employee_id)
            if employee is None:
                raise EmployeeNotFound(employee_id)
            return self._report(db, employee, month, start, end)

    def monthly_summary(self, month: str) -> List[EmployeePayroll]:
        """Reports for every active employee, highest commission first."""
        start, end = month_bounds(month, self.settings.timezone)
        with self.store.session() as db:
            employees = (
                db.query(Employee)
                .filter(Employee.is_active.is_(True))
                .order_by(Employee.fullname)
                .all()
            )
            reports = [self._report(db, employee, month, start, end) for employee in employees]
        reports.sort(key=lambda report: report.total_commission, reverse=True)
        logger.info(f"Payroll summary for {month}: {len(reports)} employee(s)")
        return reports

    def _report(
        self, db: Session, employee: Employee, month: str, start: datetime, end: datetime
    ) -> EmployeePayroll:
        rows = (
            db.query(InvoiceItem, Invoice.invoice_number, Invoice.created_at)
            .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
            .filter(
                InvoiceItem.employee_id == employee.id,
                Invoice.payment_status == PaymentStatus.PAID.value,
                Invoice.created_at >= start,
                Invoice.created_at < end,
            )
            .order_by(Invoice.created_at, Invoice.id, InvoiceItem.id)
            .all()
        )

        report = EmployeePayroll(
            employee_id=employee.id,
            employee_code=employee.employee_code,
            fullname=employee.fullname,
            month=month,
            base_salary=to_money(employee.base_salary or 0),
        )
        by_invoice = {}
        for item, invoice_number, invoiced_at in rows:
            line = by_invoice.get(item.invoice_id)
            if line is None:
                line = PayrollLine(
                    invoice_id=item.invoice_id,
                    invoice_number=invoice_number,
                    invoiced_at=invoiced_at,
                )
                by_invoice[item.invoice_id] = line
                report.invoices.append(line)
            earned = commission(item.unit_price, item.quantity, item.commission_rate)
            line.sales += to_money(item.unit_price * item.quantity)
            line.commission += earned

        report.total_sales = sum((line.sales for line in report.invoices), Decimal("0"))
        report.total_commission = sum((line.commission for line in report.invoices), Decimal("0"))
        return report
