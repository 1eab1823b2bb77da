"""Buffet ticket ledger.

Every top-up is a new ``TicketEntry`` row; nothing is ever overwritten, so
two terminals adding tickets at the same moment both count.  Counts and
revenue are aggregated from the rows on every read.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tabsettle.core.errors import Conflict, InvalidQuantity, UnknownCatalogReference
from tabsettle.core.results import Err, Ok, Result
from tabsettle.models.order import Order, TicketEntry
from tabsettle.services.catalog_service import CatalogReader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketBlock:
    """Tickets of one package sold at one price."""

    buffet_package_id: int
    package_name: str
    unit_price: Decimal
    quantity: int

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


class TicketLedger:
    """Append-only store of buffet ticket top-ups for orders."""

    def __init__(self, db: Session, catalog: Optional[CatalogReader] = None):
        self.db = db
        self.catalog = catalog or CatalogReader(db)

    def add_tickets(
        self,
        order: Order,
        package_id: int,
        quantity: int,
        recorded_by: Optional[int] = None,
    ) -> Result[TicketEntry, Conflict]:
        """Append a top-up of ``quantity`` tickets of ``package_id`` to ``order``.

        The first top-up fixes the order's package.  A later top-up for a
        different package is returned as a ``package_mismatch`` conflict.
        """
        if quantity is None or quantity <= 0:
            raise InvalidQuantity(f"Ticket quantity must be positive, got {quantity}")

        package = self.catalog.get_package(package_id)
        if package is None or not package.is_active:
            raise UnknownCatalogReference(f"Buffet package {package_id} not found or inactive")

        current_package_id = order.buffet_package_id or self._first_package_id(order.id)
        if current_package_id is not None and current_package_id != package_id:
            logger.warning(
                f"Rejected top-up of package {package_id} on order {order.id} "
                f"(order is on package {current_package_id})"
            )
            return Err(Conflict.package_mismatch(order.id, current_package_id, package_id))

        entry = TicketEntry(
            order_id=order.id,
            buffet_package_id=package.id,
            package_name=package.name,
            unit_price=package.price,
            quantity=quantity,
            recorded_by=recorded_by,
        )
        self.db.add(entry)
        if order.buffet_package_id is None:
            order.buffet_package_id = package.id
        self.db.flush()

        logger.info(f"Order {order.id}: +{quantity} ticket(s) of package {package.id}")
        return Ok(entry)

    def total_tickets(self, order_id: int) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(TicketEntry.quantity), 0))
            .filter(TicketEntry.order_id == order_id)
            .scalar()
        )
        return int(total)

    def ticket_revenue(self, order_id: int) -> Decimal:
        return sum((block.amount for block in self.ticket_blocks(order_id)), Decimal("0"))

    def ticket_blocks(self, order_id: int) -> List[TicketBlock]:
        """Entries grouped by package and snapshot price, oldest first."""
        rows = (
            self.db.query(
                TicketEntry.buffet_package_id,
                TicketEntry.package_name,
                TicketEntry.unit_price,
                func.sum(TicketEntry.quantity),
            )
            .filter(TicketEntry.order_id == order_id)
            .group_by(
                TicketEntry.buffet_package_id,
                TicketEntry.package_name,
                TicketEntry.unit_price,
            )
            .order_by(func.min(TicketEntry.id))
            .all()
        )
        return [
            TicketBlock(
                buffet_package_id=package_id,
                package_name=name,
                unit_price=Decimal(price),
                quantity=int(quantity),
            )
            for package_id, name, price, quantity in rows
        ]

    def entries(self, order_id: int) -> List[TicketEntry]:
        return (
            self.db.query(TicketEntry)
            .filter(TicketEntry.order_id == order_id)
            .order_by(TicketEntry.id)
            .all()
        )

    def _first_package_id(self, order_id: int) -> Optional[int]:
        return (
            self.db.query(TicketEntry.buffet_package_id)
            .filter(TicketEntry.order_id == order_id)
            .order_by(TicketEntry.id)
            .limit(1)
            .scalar()
        )
