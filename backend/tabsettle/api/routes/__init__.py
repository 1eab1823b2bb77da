"""API routes."""

from fastapi import APIRouter

from tabsettle.api.routes import catalog, invoices, orders, payroll

api_router = APIRouter()

api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
api_router.include_router(catalog.router, prefix="/catalog", tags=["catalog"])
api_router.include_router(payroll.router, prefix="/payroll", tags=["payroll"])
