# Services module

from tabsettle.services.catalog_service import CatalogReader
from tabsettle.services.commission import commission, resolve_rate
from tabsettle.services.invoice_service import InvoiceService
from tabsettle.services.order_service import OrderManager, OrderState
from tabsettle.services.payroll_service import PayrollService
from tabsettle.services.settlement_service import Settlement, SettlementEngine
from tabsettle.services.ticket_ledger import TicketBlock, TicketLedger

__all__ = [
    "CatalogReader",
    "commission",
    "resolve_rate",
    "InvoiceService",
    "OrderManager",
    "OrderState",
    "PayrollService",
    "Settlement",
    "SettlementEngine",
    "TicketBlock",
    "TicketLedger",
]
