"""Tests for commission payroll reports."""

from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from tabsettle.core.errors import EmployeeNotFound, InvalidMonth
from tabsettle.models.invoice import Invoice, InvoiceItem, PaymentStatus
from tabsettle.schemas.invoice import InvoiceCreate, InvoiceLineCreate
from tabsettle.schemas.order import OrderCreate, OrderItemIn
from tabsettle.services.payroll_service import month_bounds


def current_month(settings) -> str:
    return datetime.now(ZoneInfo(settings.timezone)).strftime("%Y-%m")


def add_invoice(db_session, number, employee, created_at, status=PaymentStatus.PAID, rate="5"):
    invoice = Invoice(
        invoice_number=number,
        employee_id=employee.id,
        subtotal=Decimal("100000"),
        total_amount=Decimal("100000"),
        payment_method="cash",
        payment_status=status.value,
        created_at=created_at,
        items=[
            InvoiceItem(
                employee_id=employee.id,
                description="Massage 60'",
                quantity=1,
                unit_price=Decimal("100000"),
                commission_rate=Decimal(rate),
                commission_amount=Decimal("100000") * Decimal(rate) / 100,
            )
        ],
    )
    db_session.add(invoice)
    db_session.commit()
    return invoice


class TestMonthBounds:
    def test_local_month_in_utc(self):
        start, end = month_bounds("2026-02", "Asia/Ho_Chi_Minh")
        assert start == datetime(2026, 1, 31, 17, 0)
        assert end == datetime(2026, 2, 28, 17, 0)

    def test_december_rolls_over(self):
        _, end = month_bounds("2025-12", "UTC")
        assert end == datetime(2026, 1, 1)

    @pytest.mark.parametrize("month", ["2026-13", "2026-1", "26-01", "", "January"])
    def test_invalid(self, month):
        with pytest.raises(InvalidMonth):
            month_bounds(month, "UTC")


class TestEmployeeReport:
    def test_settled_orders_count(self, orders, settlement, payroll, settings, test_table, coke, test_employee):
        state = orders.create_order(
            OrderCreate(
                table_id=test_table.id,
                employee_id=test_employee.id,
                items=[OrderItemIn(food_item_id=coke.id, quantity=4)],
            )
        ).value
        settlement.settle(state.order.id)

        report = payroll.employee_report(test_employee.id, current_month(settings))
        assert report.base_salary == Decimal("5000000")
        assert report.total_sales == Decimal("60000")
        assert report.total_commission == Decimal("3000")
        assert report.total_income == Decimal("5003000")
        assert len(report.invoices) == 1

    def test_direct_sales_count(self, invoices, payroll, settings, massage, other_employee):
        invoices.create_invoice(
            InvoiceCreate(
                employee_id=other_employee.id,
                items=[InvoiceLineCreate(service_id=massage.id, quantity=3)],
            )
        )
        report = payroll.employee_report(other_employee.id, current_month(settings))
        assert report.total_commission == Decimal("15000")

    def test_month_is_local(self, db_session, payroll, test_employee):
        # 18:00 UTC on Jan 31 is already Feb 1 in Ho Chi Minh City
        add_invoice(db_session, "INV000001", test_employee, datetime(2026, 1, 31, 18, 0))
        add_invoice(db_session, "INV000002", test_employee, datetime(2026, 1, 31, 16, 0))

        february = payroll.employee_report(test_employee.id, "2026-02")
        january = payroll.employee_report(test_employee.id, "2026-01")

        assert [line.invoice_number for line in february.invoices] == ["INV000001"]
        assert [line.invoice_number for line in january.invoices] == ["INV000002"]

    def test_only_paid_invoices(self, db_session, payroll, test_employee):
        add_invoice(db_session, "INV000001", test_employee, datetime(2026, 3, 10, 5, 0))
        add_invoice(
            db_session, "INV000002", test_employee, datetime(2026, 3, 11, 5, 0),
            status=PaymentStatus.REFUNDED,
        )

        report = payroll.employee_report(test_employee.id, "2026-03")
        assert report.total_commission == Decimal("5000")

    def test_stored_rate_is_used(self, db_session, payroll, test_employee):
        add_invoice(db_session, "INV000001", test_employee, datetime(2026, 3, 10, 5, 0), rate="8")
        test_employee.commission_rate = Decimal("1")
        db_session.commit()

        report = payroll.employee_report(test_employee.id, "2026-03")
        assert report.total_commission == Decimal("8000")

    def test_unknown_employee(self, payroll):
        with pytest.raises(EmployeeNotFound):
            payroll.employee_report(999, "2026-03")


class TestMonthlySummary:
    def test_sorted_by_commission(self, db_session, payroll, test_employee, other_employee):
        add_invoice(db_session, "INV000001", test_employee, datetime(2026, 3, 10, 5, 0), rate="5")
        add_invoice(db_session, "INV000002", other_employee, datetime(2026, 3, 10, 6, 0), rate="10")

        reports = payroll.monthly_summary("2026-03")
        assert [r.employee_id for r in reports] == [other_employee.id, test_employee.id]

    def test_inactive_employees_are_left_out(self, db_session, payroll, test_employee, other_employee):
        other_employee.is_active = False
        db_session.commit()

        reports = payroll.monthly_summary("2026-03")
        assert [r.employee_id for r in reports] == [test_employee.id]
        assert reports[0].total_income == Decimal("5000000")


class TestPayrollEndpoints:
    def test_staff_reads_own_payroll(self, client, auth_headers, test_employee):
        response = client.get(
            f"/api/v1/payroll/employees/{test_employee.id}?month=2026-03", headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["fullname"] == "Nguyen Van An"

    def test_staff_cannot_read_colleague(self, client, auth_headers, other_employee):
        response = client.get(
            f"/api/v1/payroll/employees/{other_employee.id}?month=2026-03", headers=auth_headers
        )
        assert response.status_code == 403

    def test_manager_reads_summary(self, client, manager_headers, db_session, test_employee):
        add_invoice(db_session, "INV000001", test_employee, datetime(2026, 3, 10, 5, 0))
        response = client.get("/api/v1/payroll/summary?month=2026-03", headers=manager_headers)

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["total_commission"]) == Decimal("5000")
        assert data["employees"][0]["invoices"][0]["invoice_number"] == "INV000001"

    def test_staff_cannot_read_summary(self, client, auth_headers):
        response = client.get("/api/v1/payroll/summary?month=2026-03", headers=auth_headers)
        assert response.status_code == 403

    def test_bad_month(self, client, manager_headers):
        response = client.get("/api/v1/payroll/summary?month=2026-3", headers=manager_headers)
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_month"
