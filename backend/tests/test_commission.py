"""Tests for commission arithmetic."""

from decimal import Decimal

from tabsettle.models.catalog import Employee, Service
from tabsettle.services.commission import commission, resolve_rate, to_money


class TestToMoney:
    def test_rounds_half_up(self):
        assert to_money(Decimal("10.005")) == Decimal("10.01")
        assert to_money(Decimal("10.004")) == Decimal("10.00")

    def test_accepts_ints_and_strings(self):
        assert to_money(15000) == Decimal("15000.00")
        assert to_money("0.1") == Decimal("0.10")


class TestCommission:
    def test_basic_rate(self):
        assert commission(Decimal("100000"), 2, Decimal("5")) == Decimal("10000.00")

    def test_no_rate_is_zero(self):
        assert commission(Decimal("100000"), 2, None) == Decimal("0.00")

    def test_zero_rate(self):
        assert commission(Decimal("199000"), 4, Decimal("0")) == Decimal("0.00")

    def test_fractional_result_is_rounded(self):
        # 333 * 1 * 2.5% = 8.325
        assert commission(Decimal("333"), 1, Decimal("2.5")) == Decimal("8.33")


class TestResolveRate:
    def test_service_rate_wins(self):
        service = Service(name="Massage", price=Decimal("100000"), commission_rate=Decimal("8"))
        employee = Employee(fullname="A", commission_rate=Decimal("5"))
        assert resolve_rate(service, employee) == Decimal("8")

    def test_employee_rate_when_service_has_none(self):
        service = Service(name="Coke", price=Decimal("15000"), commission_rate=None)
        employee = Employee(fullname="A", commission_rate=Decimal("5"))
        assert resolve_rate(service, employee) == Decimal("5")

    def test_zero_without_service_or_employee(self):
        assert resolve_rate(None, None) == Decimal("0")
