from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from typing import Literal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.errors import NotFoundError, ValidationFailed
from app.models import Attendance, AttendanceStatus, Employee, LeaveRequest, LeaveStatus
from app.schemas import (
    AdminDashboardResponse,
    AttendanceCounts,
    AttendanceRead,
    DailyEmployeeStatus,
    DailyPresenceCount,
    DepartmentHeadcount,
    EmployeeDashboardResponse,
    EmployeeHeadcount,
    LeaveRequestListItem,
    LeaveRequestRead,
    LeaveTallies,
    PeriodSummary,
    TodayAttendanceCounts,
)
from app.services.attendance import day_key, ensure_date_range

PeriodWindow = Literal["day", "month", "year"]

TRAILING_DAYS = 7
RECENT_LEAVE_LIMIT = 5


def period_bounds(window: PeriodWindow, reference: date) -> tuple[date, date]:
    if window == "day":
        return reference, reference
    if window == "month":
        last_day = calendar.monthrange(reference.year, reference.month)[1]
        return reference.replace(day=1), reference.replace(day=last_day)
    if window == "year":
        return date(reference.year, 1, 1), date(reference.year, 12, 31)
    raise ValidationFailed("INVALID_PERIOD", f"Unsupported period window: {window}.")


def _trailing_days(today: date, days: int = TRAILING_DAYS) -> list[date]:
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def _attendance_counts(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    employee_id: int | None,
    department: str | None,
) -> AttendanceCounts:
    stmt = (
        select(Attendance.status, func.count(Attendance.id), func.coalesce(func.sum(Attendance.work_hours), 0))
        .where(Attendance.day_date >= start_date, Attendance.day_date <= end_date)
        .group_by(Attendance.status)
    )
    if employee_id is not None:
        stmt = stmt.where(Attendance.employee_id == employee_id)
    if department:
        stmt = stmt.join(Employee, Employee.id == Attendance.employee_id).where(Employee.department == department)

    by_status: dict[AttendanceStatus, int] = {}
    total_hours = 0.0
    for status, count, hours in db.execute(stmt).all():
        by_status[status] = int(count)
        total_hours += float(hours or 0)

    return AttendanceCounts(
        present=by_status.get(AttendanceStatus.PRESENT, 0),
        late=by_status.get(AttendanceStatus.LATE, 0),
        absent=by_status.get(AttendanceStatus.ABSENT, 0),
        half_day=by_status.get(AttendanceStatus.HALF_DAY, 0),
        total_days=sum(by_status.values()),
        total_work_hours=round(total_hours, 1),
    )


def _leave_tallies(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    employee_id: int | None,
    department: str | None,
) -> LeaveTallies:
    stmt = (
        select(LeaveRequest.status, func.count(LeaveRequest.id))
        .where(LeaveRequest.start_date <= end_date, LeaveRequest.end_date >= start_date)
        .group_by(LeaveRequest.status)
    )
    if employee_id is not None:
        stmt = stmt.where(LeaveRequest.employee_id == employee_id)
    if department:
        stmt = stmt.join(Employee, Employee.id == LeaveRequest.employee_id).where(Employee.department == department)

    by_status = {status: int(count) for status, count in db.execute(stmt).all()}
    return LeaveTallies(
        pending=by_status.get(LeaveStatus.PENDING, 0),
        approved=by_status.get(LeaveStatus.APPROVED, 0),
        rejected=by_status.get(LeaveStatus.REJECTED, 0),
        total=sum(by_status.values()),
    )


def summarize_period(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    employee_id: int | None = None,
    department: str | None = None,
) -> PeriodSummary:
    """Attendance counts and leave tallies for ``[start_date, end_date]``.

    Leave requests are counted when their interval intersects the window.
    Empty windows produce zero counts.
    """
    ensure_date_range(start_date, end_date)
    scope = {"start_date": start_date, "end_date": end_date, "employee_id": employee_id, "department": department}
    return PeriodSummary(
        **scope,
        attendance=_attendance_counts(db, **scope),
        leaves=_leave_tallies(db, **scope),
    )


def employee_period_stats(db: Session, *, employee_id: int, year: int, month: int | None = None) -> PeriodSummary:
    if db.get(Employee, employee_id) is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    if month is None:
        start_date, end_date = period_bounds("year", date(year, 1, 1))
    else:
        start_date, end_date = period_bounds("month", date(year, month, 1))
    return summarize_period(db, start_date=start_date, end_date=end_date, employee_id=employee_id)


def admin_dashboard(db: Session, *, now: datetime | None = None) -> AdminDashboardResponse:
    today = day_key(now)
    month_start, month_end = period_bounds("month", today)

    total_employees = db.scalar(select(func.count(Employee.id))) or 0
    active_employees = db.scalar(select(func.count(Employee.id)).where(Employee.is_active.is_(True))) or 0

    today_rows = {
        status: int(count)
        for status, count in db.execute(
            select(Attendance.status, func.count(Attendance.id))
            .where(Attendance.day_date == today)
            .group_by(Attendance.status)
        ).all()
    }
    on_leave = (
        db.scalar(
            select(func.count(func.distinct(LeaveRequest.employee_id))).where(
                LeaveRequest.status == LeaveStatus.APPROVED,
                LeaveRequest.start_date <= today,
                LeaveRequest.end_date >= today,
            )
        )
        or 0
    )

    days = _trailing_days(today)
    present_by_day = {
        day: int(count)
        for day, count in db.execute(
            select(Attendance.day_date, func.count(Attendance.id))
            .where(
                Attendance.day_date >= days[0],
                Attendance.day_date <= today,
                Attendance.status == AttendanceStatus.PRESENT,
            )
            .group_by(Attendance.day_date)
        ).all()
    }

    pending_leaves = (
        db.scalar(select(func.count(LeaveRequest.id)).where(LeaveRequest.status == LeaveStatus.PENDING)) or 0
    )
    approved_this_month = (
        db.scalar(
            select(func.count(LeaveRequest.id)).where(
                LeaveRequest.status == LeaveStatus.APPROVED,
                LeaveRequest.start_date <= month_end,
                LeaveRequest.end_date >= month_start,
            )
        )
        or 0
    )
    recent_pending = db.scalars(
        select(LeaveRequest)
        .options(selectinload(LeaveRequest.employee))
        .where(LeaveRequest.status == LeaveStatus.PENDING)
        .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
        .limit(RECENT_LEAVE_LIMIT)
    ).all()
    departments = db.execute(
        select(Employee.department, func.count(Employee.id))
        .where(Employee.is_active.is_(True))
        .group_by(Employee.department)
        .order_by(Employee.department.asc())
    ).all()

    return AdminDashboardResponse(
        employees=EmployeeHeadcount(
            total=total_employees,
            active=active_employees,
            inactive=total_employees - active_employees,
        ),
        today=TodayAttendanceCounts(
            present=today_rows.get(AttendanceStatus.PRESENT, 0),
            late=today_rows.get(AttendanceStatus.LATE, 0),
            absent=max(0, active_employees - sum(today_rows.values())),
            on_leave=on_leave,
        ),
        last_7_days=[DailyPresenceCount(day_date=day, count=present_by_day.get(day, 0)) for day in days],
        pending_leaves=pending_leaves,
        approved_leaves_this_month=approved_this_month,
        recent_leave_requests=[LeaveRequestListItem.model_validate(item) for item in recent_pending],
        departments=[DepartmentHeadcount(name=name, count=int(count)) for name, count in departments],
    )


def employee_dashboard(db: Session, *, employee_id: int, now: datetime | None = None) -> EmployeeDashboardResponse:
    if db.get(Employee, employee_id) is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")

    today = day_key(now)
    month_start, month_end = period_bounds("month", today)
    days = _trailing_days(today)

    rows = db.scalars(
        select(Attendance).where(
            Attendance.employee_id == employee_id,
            Attendance.day_date >= days[0],
            Attendance.day_date <= today,
        )
    ).all()
    by_day = {row.day_date: row for row in rows}

    recent = db.scalars(
        select(LeaveRequest)
        .where(LeaveRequest.employee_id == employee_id)
        .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
        .limit(RECENT_LEAVE_LIMIT)
    ).all()

    series: list[DailyEmployeeStatus] = []
    for day in days:
        row = by_day.get(day)
        if row is None:
            series.append(DailyEmployeeStatus(day_date=day, status=AttendanceStatus.ABSENT, work_hours=0.0))
        else:
            series.append(DailyEmployeeStatus(day_date=day, status=row.status, work_hours=row.work_hours or 0.0))

    today_row = by_day.get(today)
    return EmployeeDashboardResponse(
        today=AttendanceRead.model_validate(today_row) if today_row is not None else None,
        this_month=summarize_period(db, start_date=month_start, end_date=month_end, employee_id=employee_id),
        recent_leave_requests=[LeaveRequestRead.model_validate(item) for item in recent],
        last_7_days=series,
    )
