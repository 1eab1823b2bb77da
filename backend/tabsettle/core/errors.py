"""Domain errors.

Two families live here:

* ``TabSettleError`` subclasses are raised.  They cover input that is invalid
  before any write happens (4xx), missing rows (404) and integrity failures
  that must stop the operation.  The API layer renders them through a single
  exception handler.
* ``Conflict`` values are *returned* inside ``Err`` by the order services.
  They describe a clash with concurrent state that the caller is expected to
  reconcile, and carry the context needed to do so.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class TabSettleError(Exception):
    """Base class for errors raised by the settlement core."""

    status_code = 400
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationError(TabSettleError):
    status_code = 422
    code = "validation_error"


class InvalidQuantity(ValidationError):
    code = "invalid_quantity"


class UnknownTable(ValidationError):
    code = "unknown_table"


class UnknownCatalogReference(ValidationError):
    code = "unknown_catalog_reference"


class UnknownEmployee(ValidationError):
    code = "unknown_employee"


class UnknownCustomer(ValidationError):
    code = "unknown_customer"


class EmptyOrder(ValidationError):
    code = "empty_order"


class InvalidMonth(ValidationError):
    code = "invalid_month"


class NotFoundError(TabSettleError):
    status_code = 404
    code = "not_found"


class OrderNotFound(NotFoundError):
    code = "order_not_found"

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class InvoiceNotFound(NotFoundError):
    code = "invoice_not_found"

    def __init__(self, invoice_id: int):
        super().__init__(f"Invoice {invoice_id} not found")
        self.invoice_id = invoice_id


class EmployeeNotFound(NotFoundError):
    code = "employee_not_found"

    def __init__(self, employee_id: int):
        super().__init__(f"Employee {employee_id} not found")
        self.employee_id = employee_id


class InconsistentTotals(TabSettleError):
    """Ledger-derived totals disagree with the totals persisted on the order."""

    status_code = 409
    code = "inconsistent_totals"

    def __init__(self, order_id: int, persisted: Decimal, derived: Decimal):
        super().__init__(
            f"Order {order_id} total {persisted} does not match ledger-derived total {derived}"
        )
        self.order_id = order_id
        self.persisted = persisted
        self.derived = derived

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["persisted_total"] = str(self.persisted)
        detail["derived_total"] = str(self.derived)
        return detail


class ConflictKind(str, Enum):
    TABLE_ALREADY_OPEN = "table_already_open"
    PACKAGE_MISMATCH = "package_mismatch"
    STALE_VERSION = "stale_version"
    ORDER_CLOSED = "order_closed"


@dataclass(frozen=True)
class Conflict:
    """A write rejected because of the current state of the order."""

    kind: ConflictKind
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    def to_detail(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.kind.value, **self.context}

    @classmethod
    def table_already_open(cls, table_id: int, order_id: int) -> "Conflict":
        return cls(
            ConflictKind.TABLE_ALREADY_OPEN,
            f"Table {table_id} already has an open order",
            {"table_id": table_id, "existing_order_id": order_id},
        )

    @classmethod
    def package_mismatch(
        cls, order_id: int, current_package_id: Optional[int], requested_package_id: int
    ) -> "Conflict":
        return cls(
            ConflictKind.PACKAGE_MISMATCH,
            f"Order {order_id} is on buffet package {current_package_id}, "
            f"cannot add tickets for package {requested_package_id}",
            {
                "order_id": order_id,
                "current_package_id": current_package_id,
                "requested_package_id": requested_package_id,
            },
        )

    @classmethod
    def stale_version(cls, order_id: int, expected: int, current: int) -> "Conflict":
        return cls(
            ConflictKind.STALE_VERSION,
            f"Order {order_id} was modified by another terminal",
            {"order_id": order_id, "expected_version": expected, "current_version": current},
        )

    @classmethod
    def order_closed(cls, order_id: int) -> "Conflict":
        return cls(
            ConflictKind.ORDER_CLOSED,
            f"Order {order_id} is already paid and can no longer be edited",
            {"order_id": order_id},
        )
