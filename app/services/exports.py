from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models import Attendance, AttendanceStatus, LeaveRequest, LeaveStatus
from app.services.attendance import build_attendance_query, ensure_date_range
from app.services.leaves import inclusive_day_count

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

ATTENDANCE_HEADERS = [
    "Employee",
    "Department",
    "Date",
    "Check-in",
    "Check-out",
    "Work Hours",
    "Status",
    "Notes",
]

LEAVE_HEADERS = [
    "Employee",
    "Department",
    "Leave Type",
    "Start Date",
    "End Date",
    "Days",
    "Status",
    "Reason",
    "Reviewed At",
    "Review Notes",
    "Requested At",
]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
META_LABEL_FILL = PatternFill(fill_type="solid", fgColor="EAF4F9")
META_VALUE_FILL = PatternFill(fill_type="solid", fgColor="F8FCFF")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
WARNING_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")
ALERT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
SUCCESS_FILL = PatternFill(fill_type="solid", fgColor="E6F4EA")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
MUTED_FONT = Font(color="334155")

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)

STATUS_FILLS: dict[str, PatternFill] = {
    AttendanceStatus.ABSENT.value: ALERT_FILL,
    AttendanceStatus.LATE.value: WARNING_FILL,
    AttendanceStatus.HALF_DAY.value: WARNING_FILL,
    LeaveStatus.PENDING.value: WARNING_FILL,
    LeaveStatus.APPROVED.value: SUCCESS_FILL,
    LeaveStatus.REJECTED.value: ALERT_FILL,
}


FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _text_cell(value: str | None) -> str:
    """Free text as a literal string; a leading quote stops spreadsheet formula evaluation."""
    if not value:
        return ""
    if value.startswith(FORMULA_PREFIXES):
        return f"'{value}"
    return value


def _to_excel_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _style_header(ws: Worksheet, row: int = 1) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _style_table_region(ws: Worksheet, *, status_col: int, data_end_row: int) -> None:
    ws.freeze_panes = "A2"
    if data_end_row < 2:
        return

    ws.auto_filter.ref = f"A1:{get_column_letter(ws.max_column)}{data_end_row}"
    for row_idx in range(2, data_end_row + 1):
        status_value = ws.cell(row=row_idx, column=status_col).value
        row_fill = ZEBRA_FILL if row_idx % 2 == 0 else None
        for col_idx in range(1, ws.max_column + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            if row_fill is not None:
                cell.fill = row_fill
            if isinstance(cell.value, (int, float)):
                cell.alignment = Alignment(horizontal="center", vertical="center")
            else:
                cell.alignment = Alignment(horizontal="left", vertical="center")

        status_fill = STATUS_FILLS.get(str(status_value))
        if status_fill is not None:
            ws.cell(row=row_idx, column=status_col).fill = status_fill


def _append_summary_sheet(wb: Workbook, *, title: str, rows: Iterable[tuple[str, object]]) -> None:
    ws = wb.create_sheet(title=title)
    for label, value in rows:
        ws.append([label, value])
    for row_idx in range(1, ws.max_row + 1):
        label_cell = ws.cell(row=row_idx, column=1)
        value_cell = ws.cell(row=row_idx, column=2)
        label_cell.font = BOLD_FONT
        label_cell.fill = META_LABEL_FILL
        label_cell.border = THIN_BORDER
        value_cell.font = MUTED_FONT
        value_cell.fill = META_VALUE_FILL
        value_cell.border = THIN_BORDER
    _auto_width(ws)


def _workbook_bytes(wb: Workbook) -> bytes:
    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()


def write_attendance_workbook(rows: Sequence[Attendance]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Attendance"
    ws.append(ATTENDANCE_HEADERS)
    _style_header(ws)

    status_counts: Counter[str] = Counter()
    total_hours = 0.0
    for row in rows:
        employee = row.employee
        ws.append(
            [
                _text_cell(employee.full_name) if employee is not None else f"#{row.employee_id}",
                _text_cell(employee.department) if employee is not None else "",
                row.day_date,
                _to_excel_datetime(row.check_in),
                _to_excel_datetime(row.check_out),
                row.work_hours if row.work_hours is not None else "",
                row.status.value,
                _text_cell(row.notes),
            ]
        )
        status_counts[row.status.value] += 1
        total_hours += row.work_hours or 0.0

    _style_table_region(ws, status_col=ATTENDANCE_HEADERS.index("Status") + 1, data_end_row=ws.max_row)
    _auto_width(ws)
    _append_summary_sheet(
        wb,
        title="Summary",
        rows=[
            ("Records", len(rows)),
            *((status.value, status_counts.get(status.value, 0)) for status in AttendanceStatus),
            ("Total Work Hours", round(total_hours, 1)),
        ],
    )
    return _workbook_bytes(wb)


def write_leave_workbook(rows: Sequence[LeaveRequest]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Leave Requests"
    ws.append(LEAVE_HEADERS)
    _style_header(ws)

    status_counts: Counter[str] = Counter()
    approved_days = 0
    for row in rows:
        employee = row.employee
        day_count = inclusive_day_count(row.start_date, row.end_date)
        ws.append(
            [
                _text_cell(employee.full_name) if employee is not None else f"#{row.employee_id}",
                _text_cell(employee.department) if employee is not None else "",
                row.leave_type.value,
                row.start_date,
                row.end_date,
                day_count,
                row.status.value,
                _text_cell(row.reason),
                _to_excel_datetime(row.reviewed_at),
                _text_cell(row.review_notes),
                _to_excel_datetime(row.created_at),
            ]
        )
        status_counts[row.status.value] += 1
        if row.status == LeaveStatus.APPROVED:
            approved_days += day_count

    _style_table_region(ws, status_col=LEAVE_HEADERS.index("Status") + 1, data_end_row=ws.max_row)
    _auto_width(ws)
    _append_summary_sheet(
        wb,
        title="Summary",
        rows=[
            ("Requests", len(rows)),
            *((status.value, status_counts.get(status.value, 0)) for status in LeaveStatus),
            ("Approved Days", approved_days),
        ],
    )
    return _workbook_bytes(wb)


def build_attendance_xlsx_bytes(
    db: Session,
    *,
    employee_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    status: AttendanceStatus | None = None,
    department: str | None = None,
) -> bytes:
    ensure_date_range(start_date, end_date)
    stmt = build_attendance_query(
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        status=status,
        department=department,
    )
    return write_attendance_workbook(db.scalars(stmt).all())


def build_leave_xlsx_bytes(
    db: Session,
    *,
    employee_id: int | None = None,
    status: LeaveStatus | None = None,
) -> bytes:
    stmt = (
        select(LeaveRequest)
        .options(selectinload(LeaveRequest.employee))
        .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    )
    if employee_id is not None:
        stmt = stmt.where(LeaveRequest.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    return write_leave_workbook(db.scalars(stmt).all())


def export_filename(prefix: str, *, start_date: date | None = None, end_date: date | None = None) -> str:
    if start_date is not None and end_date is not None:
        return f"{prefix}_{start_date.isoformat()}_{end_date.isoformat()}.xlsx"
    return f"{prefix}_{date.today().isoformat()}.xlsx"
