"""Payroll report routes."""

from decimal import Decimal

from fastapi import APIRouter, HTTPException, Query, Request, status

from tabsettle.api.deps import PayrollServiceDep
from tabsettle.core.rate_limit import limiter
from tabsettle.core.rbac import CurrentUser, RequireManager, UserRole
from tabsettle.schemas.payroll import EmployeePayrollResponse, PayrollSummaryResponse

router = APIRouter()


@router.get("/employees/{employee_id}", response_model=EmployeePayrollResponse)
@limiter.limit("30/minute")
def employee_payroll(
    request: Request,
    employee_id: int,
    service: PayrollServiceDep,
    current_user: CurrentUser,
    month: str = Query(..., description="Month as YYYY-MM"),
):
    """Payroll of one employee for a month. Staff may only read their own."""
    if current_user.employee_id != employee_id and not current_user.has_role(UserRole.MANAGER):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff can only view their own payroll",
        )
    return EmployeePayrollResponse.model_validate(service.employee_report(employee_id, month))


@router.get("/summary", response_model=PayrollSummaryResponse)
@limiter.limit("10/minute")
def payroll_summary(
    request: Request,
    service: PayrollServiceDep,
    current_user: RequireManager,
    month: str = Query(..., description="Month as YYYY-MM"),
):
    """Payroll of every active employee for a month (manager only)."""
    reports = service.monthly_summary(month)
    return PayrollSummaryResponse(
        month=month,
        employees=[EmployeePayrollResponse.model_validate(report) for report in reports],
        total_commission=sum((r.total_commission for r in reports), Decimal("0")),
        total_income=sum((r.total_income for r in reports), Decimal("0")),
    )
