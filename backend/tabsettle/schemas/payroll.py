"""Payroll report schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class PayrollLineResponse(BaseModel):
    invoice_id: int
    invoice_number: str
    invoiced_at: datetime
    sales: Decimal
    commission: Decimal

    model_config = {"from_attributes": True}


class EmployeePayrollResponse(BaseModel):
    employee_id: int
    employee_code: Optional[str] = None
    fullname: str
    month: str
    base_salary: Decimal
    total_sales: Decimal
    total_commission: Decimal
    total_income: Decimal
    invoices: List[PayrollLineResponse] = []

    model_config = {"from_attributes": True}


class PayrollSummaryResponse(BaseModel):
    month: str
    employees: List[EmployeePayrollResponse]
    total_commission: Decimal
    total_income: Decimal
