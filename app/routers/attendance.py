from datetime import date

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.db import get_db
from app.models import Attendance, AttendanceStatus
from app.schemas import (
    AttendanceActionResponse,
    AttendanceListItem,
    AttendanceListResponse,
    AttendanceManualUpsertRequest,
    AttendanceRead,
    MessageResponse,
    PageMeta,
)
from app.security import (
    Principal,
    ensure_owner_or_privileged,
    require_employee_id,
    require_principal,
    require_privileged,
)
from app.services.attendance import (
    attendance_snapshot,
    check_in,
    check_out,
    delete_attendance,
    get_today_attendance,
    list_attendance,
    upsert_manual_attendance,
)
from app.services.exports import XLSX_MEDIA_TYPE, build_attendance_xlsx_bytes, export_filename
from app.services.pagination import PageParams, page_params

router = APIRouter(tags=["attendance"])

EMPLOYEE_HISTORY_PAGE_SIZE = 30


def _list_response(items: list[Attendance], meta: PageMeta) -> AttendanceListResponse:
    return AttendanceListResponse(
        items=[AttendanceListItem.model_validate(item) for item in items],
        pagination=meta,
    )


@router.post(
    "/api/attendance/check-in",
    response_model=AttendanceActionResponse,
    status_code=status.HTTP_201_CREATED,
)
def attendance_check_in(
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> AttendanceActionResponse:
    employee_id = require_employee_id(principal)
    attendance = check_in(db, employee_id=employee_id)
    request.state.attendance_id = attendance.id
    return AttendanceActionResponse(
        message="Checked in successfully.",
        attendance=AttendanceRead.model_validate(attendance),
    )


@router.post("/api/attendance/check-out", response_model=AttendanceActionResponse)
def attendance_check_out(
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> AttendanceActionResponse:
    employee_id = require_employee_id(principal)
    attendance = check_out(db, employee_id=employee_id)
    request.state.attendance_id = attendance.id
    return AttendanceActionResponse(
        message="Checked out successfully.",
        attendance=AttendanceRead.model_validate(attendance),
    )


@router.get("/api/attendance/today", response_model=AttendanceRead | None)
def attendance_today(
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> AttendanceRead | None:
    employee_id = require_employee_id(principal)
    attendance = get_today_attendance(db, employee_id=employee_id)
    if attendance is None:
        return None
    return AttendanceRead.model_validate(attendance)


@router.get("/api/attendance", response_model=AttendanceListResponse)
def list_attendance_records(
    employee_id: int | None = Query(default=None, ge=1),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    status_filter: AttendanceStatus | None = Query(default=None, alias="status"),
    department: str | None = Query(default=None, max_length=120),
    paging: PageParams = Depends(page_params()),
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> AttendanceListResponse:
    items, meta = list_attendance(
        db,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        status=status_filter,
        department=department,
        page=paging.page,
        limit=paging.limit,
    )
    return _list_response(items, meta)


@router.get("/api/attendance/export")
def export_attendance_records(
    employee_id: int | None = Query(default=None, ge=1),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    status_filter: AttendanceStatus | None = Query(default=None, alias="status"),
    department: str | None = Query(default=None, max_length=120),
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> Response:
    content = build_attendance_xlsx_bytes(
        db,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        status=status_filter,
        department=department,
    )
    filename = export_filename("attendance", start_date=start_date, end_date=end_date)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/api/attendance/employee/{employee_id}", response_model=AttendanceListResponse)
def employee_attendance_history(
    employee_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    paging: PageParams = Depends(page_params(EMPLOYEE_HISTORY_PAGE_SIZE)),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> AttendanceListResponse:
    ensure_owner_or_privileged(principal, employee_id)
    items, meta = list_attendance(
        db,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        page=paging.page,
        limit=paging.limit,
    )
    return _list_response(items, meta)


@router.put("/api/attendance/manual", response_model=AttendanceRead)
def manual_attendance_upsert(
    payload: AttendanceManualUpsertRequest,
    request: Request,
    response: Response,
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> AttendanceRead:
    attendance, created = upsert_manual_attendance(db, payload)
    if created:
        response.status_code = status.HTTP_201_CREATED
    result = AttendanceRead.model_validate(attendance)
    audit_request(
        db,
        request,
        action="ATTENDANCE_MANUAL_CREATED" if created else "ATTENDANCE_MANUAL_UPDATED",
        entity_type="attendance",
        entity_id=attendance.id,
        details=attendance_snapshot(attendance),
    )
    return result


@router.delete("/api/attendance/{attendance_id}", response_model=MessageResponse)
def delete_attendance_record(
    attendance_id: int,
    request: Request,
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> MessageResponse:
    snapshot = delete_attendance(db, attendance_id)
    audit_request(
        db,
        request,
        action="ATTENDANCE_DELETED",
        entity_type="attendance",
        entity_id=attendance_id,
        details=snapshot,
    )
    return MessageResponse(message="Attendance record deleted.")
