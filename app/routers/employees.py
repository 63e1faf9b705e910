from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.db import get_db
from app.schemas import (
    AttendanceRead,
    EmployeeCreate,
    EmployeeDetailResponse,
    EmployeeListResponse,
    EmployeeUpdate,
    EmployeeWithUserRead,
    LeaveRequestRead,
    PeriodSummary,
)
from app.security import Principal, ensure_owner_or_privileged, require_principal, require_privileged
from app.services.dashboard import employee_period_stats
from app.services.employees import (
    create_employee,
    delete_employee,
    get_employee_detail,
    list_employees,
    update_employee,
)
from app.services.pagination import PageParams, page_params

router = APIRouter(tags=["employees"])


@router.get("/api/employees", response_model=EmployeeListResponse)
def list_employee_records(
    search: str | None = Query(default=None, max_length=120),
    department: str | None = Query(default=None, max_length=120),
    is_active: bool | None = Query(default=None),
    paging: PageParams = Depends(page_params()),
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> EmployeeListResponse:
    items, meta = list_employees(
        db,
        search=search,
        department=department,
        is_active=is_active,
        page=paging.page,
        limit=paging.limit,
    )
    return EmployeeListResponse(
        items=[EmployeeWithUserRead.model_validate(item) for item in items],
        pagination=meta,
    )


@router.post(
    "/api/employees",
    response_model=EmployeeWithUserRead,
    status_code=status.HTTP_201_CREATED,
)
def create_employee_record(
    payload: EmployeeCreate,
    request: Request,
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> EmployeeWithUserRead:
    employee = create_employee(db, payload)
    audit_request(
        db,
        request,
        action="EMPLOYEE_CREATED",
        entity_type="employee",
        entity_id=employee.id,
        details={"user_id": employee.user_id, "role": payload.role.value, "department": employee.department},
    )
    return EmployeeWithUserRead.model_validate(employee)


@router.get("/api/employees/{employee_id}", response_model=EmployeeDetailResponse)
def get_employee_record(
    employee_id: int,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> EmployeeDetailResponse:
    ensure_owner_or_privileged(principal, employee_id)
    employee, attendances, leaves = get_employee_detail(db, employee_id)
    return EmployeeDetailResponse(
        employee=EmployeeWithUserRead.model_validate(employee),
        recent_attendance=[AttendanceRead.model_validate(item) for item in attendances],
        recent_leave_requests=[LeaveRequestRead.model_validate(item) for item in leaves],
    )


@router.patch("/api/employees/{employee_id}", response_model=EmployeeWithUserRead)
def update_employee_record(
    employee_id: int,
    payload: EmployeeUpdate,
    request: Request,
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> EmployeeWithUserRead:
    employee, changes = update_employee(db, employee_id=employee_id, payload=payload)
    if changes:
        audit_request(
            db,
            request,
            action="EMPLOYEE_UPDATED",
            entity_type="employee",
            entity_id=employee.id,
            details=changes,
        )
    return EmployeeWithUserRead.model_validate(employee)


@router.delete("/api/employees/{employee_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_employee_record(
    employee_id: int,
    request: Request,
    principal: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> None:
    snapshot = delete_employee(db, employee_id=employee_id, acting_user_id=principal.user_id)
    audit_request(
        db,
        request,
        action="EMPLOYEE_DELETED",
        entity_type="employee",
        entity_id=employee_id,
        details=snapshot,
    )


@router.get("/api/employees/{employee_id}/stats", response_model=PeriodSummary)
def get_employee_stats(
    employee_id: int,
    year: int = Query(ge=1970, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> PeriodSummary:
    ensure_owner_or_privileged(principal, employee_id)
    return employee_period_stats(db, employee_id=employee_id, year=year, month=month)
