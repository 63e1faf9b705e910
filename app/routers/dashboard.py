from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas import AdminDashboardResponse, EmployeeDashboardResponse, PeriodSummary
from app.security import Principal, require_employee_id, require_principal, require_privileged
from app.services.attendance import day_key
from app.services.dashboard import admin_dashboard, employee_dashboard, period_bounds, summarize_period

router = APIRouter(tags=["dashboard"])


@router.get("/api/dashboard/admin", response_model=AdminDashboardResponse)
def get_admin_dashboard(
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> AdminDashboardResponse:
    return admin_dashboard(db)


@router.get("/api/dashboard/employee", response_model=EmployeeDashboardResponse)
def get_employee_dashboard(
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> EmployeeDashboardResponse:
    return employee_dashboard(db, employee_id=require_employee_id(principal))


@router.get("/api/dashboard/summary", response_model=PeriodSummary)
def get_period_summary(
    window: Literal["day", "month", "year"] = Query(default="month"),
    reference: date | None = Query(default=None),
    employee_id: int | None = Query(default=None, ge=1),
    department: str | None = Query(default=None, max_length=120),
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> PeriodSummary:
    start_date, end_date = period_bounds(window, reference or day_key())
    return summarize_period(
        db,
        start_date=start_date,
        end_date=end_date,
        employee_id=employee_id,
        department=department,
    )
