"""Sales commission arithmetic.

The one place where a commission amount is computed.  Settlement, direct
invoices and payroll all go through ``commission()`` so the three can never
disagree on rounding.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from tabsettle.models.catalog import Employee, Service

CENT = Decimal("0.01")

Number = Union[Decimal, int, str]


def to_money(value: Number) -> Decimal:
    """Quantize an amount to cents, half up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def commission(unit_price: Number, quantity: int, rate_percent: Optional[Number]) -> Decimal:
    """Commission earned on a line: ``unit_price * quantity * rate / 100``.

    >>> commission(Decimal("100000"), 2, Decimal("5"))
    Decimal('10000.00')
    """
    if rate_percent is None:
        return to_money(0)
    price = unit_price if isinstance(unit_price, Decimal) else Decimal(str(unit_price))
    rate = rate_percent if isinstance(rate_percent, Decimal) else Decimal(str(rate_percent))
    return to_money(price * quantity * rate / Decimal(100))


def resolve_rate(service: Optional[Service], employee: Optional[Employee]) -> Decimal:
    """Rate applied to a line: the service's own rate, else the employee's, else zero."""
    if service is not None and service.commission_rate is not None:
        return Decimal(service.commission_rate)
    if employee is not None and employee.commission_rate is not None:
        return Decimal(employee.commission_rate)
    return Decimal("0")
