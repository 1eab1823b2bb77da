"""FastAPI dependencies wiring services to the running application's store."""

from typing import Annotated

from fastapi import Depends, Request

from tabsettle.core.config import Settings
from tabsettle.db.session import StoreDep
from tabsettle.services.invoice_service import InvoiceService
from tabsettle.services.order_service import OrderManager
from tabsettle.services.payroll_service import PayrollService
from tabsettle.services.settlement_service import SettlementEngine


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


def get_order_manager(store: StoreDep, settings: SettingsDep) -> OrderManager:
    return OrderManager(store, settings)


def get_settlement_engine(store: StoreDep, settings: SettingsDep) -> SettlementEngine:
    return SettlementEngine(store, settings)


def get_invoice_service(store: StoreDep, settings: SettingsDep) -> InvoiceService:
    return InvoiceService(store, settings)


def get_payroll_service(store: StoreDep, settings: SettingsDep) -> PayrollService:
    return PayrollService(store, settings)


OrderManagerDep = Annotated[OrderManager, Depends(get_order_manager)]
SettlementDep = Annotated[SettlementEngine, Depends(get_settlement_engine)]
InvoiceServiceDep = Annotated[InvoiceService, Depends(get_invoice_service)]
PayrollServiceDep = Annotated[PayrollService, Depends(get_payroll_service)]
