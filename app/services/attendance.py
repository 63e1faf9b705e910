from __future__ import annotations

import logging
import math
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.errors import AuthorizationError, ConflictError, NotFoundError, ValidationFailed
from app.models import Attendance, AttendanceStatus, Employee
from app.schemas import AttendanceManualUpsertRequest, PageMeta
from app.services.pagination import paginate
from app.settings import get_settings

logger = logging.getLogger("app.attendance")

WorkHoursRounding = Literal["TRUNCATE", "EXACT"]


def _normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


@lru_cache
def _attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("attendance_timezone_invalid", extra={"timezone": raw_name})
        return ZoneInfo("UTC")


def day_key(ts: datetime | None = None) -> date:
    """Calendar day an instant belongs to in the attendance timezone."""
    return _normalize_ts(ts).astimezone(_attendance_timezone()).date()


def compute_work_hours(
    check_in: datetime,
    check_out: datetime,
    *,
    rounding: WorkHoursRounding | None = None,
) -> float:
    """Hours between check-in and check-out, never negative.

    ``TRUNCATE`` drops the fractional part (08:15 -> 17:10 is 8 hours).
    ``EXACT`` keeps it, rounded to two decimals.
    """
    mode = rounding or get_settings().work_hours_rounding
    hours = (_normalize_ts(check_out) - _normalize_ts(check_in)).total_seconds() / 3600
    if mode == "EXACT":
        value = round(hours, 2)
    else:
        value = float(math.trunc(hours))
    return max(0.0, value)


def attendance_snapshot(attendance: Attendance) -> dict[str, Any]:
    return {
        "id": attendance.id,
        "employee_id": attendance.employee_id,
        "day_date": attendance.day_date.isoformat() if attendance.day_date else None,
        "check_in": attendance.check_in.isoformat() if attendance.check_in else None,
        "check_out": attendance.check_out.isoformat() if attendance.check_out else None,
        "work_hours": attendance.work_hours,
        "status": attendance.status.value if attendance.status else None,
    }


def _find_attendance_for_day(
    db: Session,
    *,
    employee_id: int,
    day_date: date,
    for_update: bool = False,
) -> Attendance | None:
    stmt = select(Attendance).where(
        Attendance.employee_id == employee_id,
        Attendance.day_date == day_date,
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def _resolve_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    return employee


def _resolve_active_employee(db: Session, employee_id: int) -> Employee:
    employee = _resolve_employee(db, employee_id)
    if not employee.is_active:
        raise AuthorizationError(
            "EMPLOYEE_INACTIVE",
            "Inactive employee cannot perform attendance actions.",
        )
    return employee


def _already_checked_in(existing: Attendance | None) -> ConflictError:
    return ConflictError(
        "ALREADY_CHECKED_IN",
        "Check-in already recorded for today.",
        details={"attendance": attendance_snapshot(existing)} if existing is not None else None,
    )


def check_in(db: Session, *, employee_id: int, now: datetime | None = None) -> Attendance:
    ts_utc = _normalize_ts(now)
    today = day_key(ts_utc)
    _resolve_active_employee(db, employee_id)

    existing = _find_attendance_for_day(db, employee_id=employee_id, day_date=today)
    if existing is not None:
        raise _already_checked_in(existing)

    attendance = Attendance(
        employee_id=employee_id,
        day_date=today,
        check_in=ts_utc,
        check_out=None,
        work_hours=None,
        status=AttendanceStatus.PRESENT,
    )
    db.add(attendance)
    try:
        db.commit()
    except IntegrityError as exc:
        # Lost a race against a concurrent check-in for the same day.
        db.rollback()
        raise _already_checked_in(
            _find_attendance_for_day(db, employee_id=employee_id, day_date=today)
        ) from exc
    db.refresh(attendance)

    logger.info(
        "attendance_checked_in",
        extra={"employee_id": employee_id, "attendance_id": attendance.id, "day_date": today.isoformat()},
    )
    return attendance


def check_out(db: Session, *, employee_id: int, now: datetime | None = None) -> Attendance:
    ts_utc = _normalize_ts(now)
    today = day_key(ts_utc)
    _resolve_active_employee(db, employee_id)

    attendance = _find_attendance_for_day(db, employee_id=employee_id, day_date=today, for_update=True)
    if attendance is None or attendance.check_in is None:
        db.rollback()
        raise ConflictError("NO_CHECK_IN_YET", "Check in before checking out.")
    if attendance.check_out is not None:
        details = {"attendance": attendance_snapshot(attendance)}
        db.rollback()
        raise ConflictError("ALREADY_CHECKED_OUT", "Check-out already recorded for today.", details=details)

    attendance.check_out = ts_utc
    attendance.work_hours = compute_work_hours(attendance.check_in, ts_utc)
    db.commit()
    db.refresh(attendance)

    logger.info(
        "attendance_checked_out",
        extra={
            "employee_id": employee_id,
            "attendance_id": attendance.id,
            "work_hours": attendance.work_hours,
        },
    )
    return attendance


def get_today_attendance(db: Session, *, employee_id: int, now: datetime | None = None) -> Attendance | None:
    return _find_attendance_for_day(db, employee_id=employee_id, day_date=day_key(now))


def upsert_manual_attendance(
    db: Session,
    payload: AttendanceManualUpsertRequest,
) -> tuple[Attendance, bool]:
    """Create or merge the row for ``(employee_id, day_date)``.

    Omitted fields keep their stored value and an explicit null clears it.
    ``work_hours`` is recomputed from the resulting pair of timestamps.
    Returns the row and whether it was created.
    """
    _resolve_employee(db, payload.employee_id)
    existing = _find_attendance_for_day(
        db,
        employee_id=payload.employee_id,
        day_date=payload.day_date,
        for_update=True,
    )

    provided = payload.model_fields_set
    check_in_ts = _normalize_ts(payload.check_in) if payload.check_in is not None else None
    check_out_ts = _normalize_ts(payload.check_out) if payload.check_out is not None else None
    if existing is not None:
        if "check_in" not in provided:
            check_in_ts = existing.check_in
        if "check_out" not in provided:
            check_out_ts = existing.check_out

    if check_out_ts is not None and check_in_ts is None:
        db.rollback()
        raise ValidationFailed("INVALID_CHECK_OUT", "check_out requires a check_in.")
    if check_in_ts is not None and check_out_ts is not None and _normalize_ts(check_out_ts) < _normalize_ts(check_in_ts):
        db.rollback()
        raise ValidationFailed(
            "INVALID_CHECK_OUT",
            "check_out must be greater than or equal to check_in.",
            details={"check_in": check_in_ts.isoformat(), "check_out": check_out_ts.isoformat()},
        )

    work_hours: float | None = None
    if check_in_ts is not None and check_out_ts is not None:
        work_hours = compute_work_hours(check_in_ts, check_out_ts)

    created = existing is None
    if existing is None:
        attendance = Attendance(
            employee_id=payload.employee_id,
            day_date=payload.day_date,
            check_in=check_in_ts,
            check_out=check_out_ts,
            work_hours=work_hours,
            status=payload.status or AttendanceStatus.PRESENT,
            notes=payload.notes,
        )
        db.add(attendance)
    else:
        attendance = existing
        attendance.check_in = check_in_ts
        attendance.check_out = check_out_ts
        attendance.work_hours = work_hours
        if payload.status is not None:
            attendance.status = payload.status
        if "notes" in provided:
            attendance.notes = payload.notes

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            "DUPLICATE_RECORD",
            "An attendance row for this employee and day was created concurrently.",
        ) from exc
    db.refresh(attendance)

    logger.info(
        "attendance_manual_upsert",
        extra={
            "employee_id": payload.employee_id,
            "attendance_id": attendance.id,
            "day_date": payload.day_date.isoformat(),
            "created_row": created,
        },
    )
    return attendance, created


def build_attendance_query(
    *,
    employee_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    status: AttendanceStatus | None = None,
    department: str | None = None,
) -> Select[tuple[Attendance]]:
    stmt = (
        select(Attendance)
        .options(selectinload(Attendance.employee))
        .order_by(Attendance.day_date.desc(), Attendance.id.desc())
    )
    if employee_id is not None:
        stmt = stmt.where(Attendance.employee_id == employee_id)
    if start_date is not None:
        stmt = stmt.where(Attendance.day_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(Attendance.day_date <= end_date)
    if status is not None:
        stmt = stmt.where(Attendance.status == status)
    if department:
        stmt = stmt.join(Employee, Employee.id == Attendance.employee_id).where(Employee.department == department)
    return stmt


def ensure_date_range(start_date: date | None, end_date: date | None) -> None:
    if start_date is not None and end_date is not None and start_date > end_date:
        raise ValidationFailed(
            "INVALID_DATE_RANGE",
            "start_date must be before or equal to end_date.",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def list_attendance(
    db: Session,
    *,
    employee_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    status: AttendanceStatus | None = None,
    department: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Attendance], PageMeta]:
    ensure_date_range(start_date, end_date)
    stmt = build_attendance_query(
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        status=status,
        department=department,
    )
    return paginate(db, stmt, page=page, limit=limit)


def delete_attendance(db: Session, attendance_id: int) -> dict[str, Any]:
    attendance = db.get(Attendance, attendance_id)
    if attendance is None:
        raise NotFoundError("ATTENDANCE_NOT_FOUND", "Attendance record not found.")

    snapshot = attendance_snapshot(attendance)
    db.delete(attendance)
    db.commit()
    logger.info("attendance_deleted", extra={"attendance_id": attendance_id, "employee_id": snapshot["employee_id"]})
    return snapshot
