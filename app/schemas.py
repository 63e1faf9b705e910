from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models import AttendanceStatus, LeaveStatus, LeaveType, Role


class MessageResponse(BaseModel):
    message: str


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


# Identity


class EmployeeBrief(BaseModel):
    id: int
    first_name: str
    last_name: str
    position: str
    department: str

    model_config = ConfigDict(from_attributes=True)


class EmployeeRead(BaseModel):
    id: int
    user_id: int
    first_name: str
    last_name: str
    phone: str | None = None
    address: str | None = None
    position: str
    department: str
    salary: float | None = None
    hire_date: date
    birth_date: date | None = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserRead(BaseModel):
    id: int
    email: str
    role: Role
    created_at: datetime
    employee: EmployeeRead | None = None

    model_config = ConfigDict(from_attributes=True)


class UserBrief(BaseModel):
    id: int
    email: str
    role: Role

    model_config = ConfigDict(from_attributes=True)


class EmployeeWithUserRead(EmployeeRead):
    user: UserBrief


class EmployeeCreate(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    role: Role = Role.EMPLOYEE
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    phone: str | None = Field(default=None, max_length=50)
    address: str | None = Field(default=None, max_length=500)
    position: str = Field(min_length=1, max_length=120)
    department: str = Field(min_length=1, max_length=120)
    salary: float | None = Field(default=None, ge=0)
    hire_date: date | None = None
    birth_date: date | None = None


class EmployeeUpdate(BaseModel):
    email: str | None = Field(default=None, min_length=3, max_length=255)
    role: Role | None = None
    first_name: str | None = Field(default=None, min_length=1, max_length=120)
    last_name: str | None = Field(default=None, min_length=1, max_length=120)
    phone: str | None = Field(default=None, max_length=50)
    address: str | None = Field(default=None, max_length=500)
    position: str | None = Field(default=None, min_length=1, max_length=120)
    department: str | None = Field(default=None, min_length=1, max_length=120)
    salary: float | None = Field(default=None, ge=0)
    birth_date: date | None = None
    is_active: bool | None = None


class EmployeeListResponse(BaseModel):
    items: list[EmployeeWithUserRead]
    pagination: PageMeta


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    position: str | None = Field(default=None, max_length=120)
    department: str | None = Field(default=None, max_length=120)


class AuthResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int
    user: UserRead


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


# Attendance


class AttendanceRead(BaseModel):
    id: int
    employee_id: int
    day_date: date
    check_in: datetime | None
    check_out: datetime | None
    work_hours: float | None
    status: AttendanceStatus
    notes: str | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AttendanceListItem(AttendanceRead):
    employee: EmployeeBrief | None = None


class AttendanceListResponse(BaseModel):
    items: list[AttendanceListItem]
    pagination: PageMeta


class AttendanceActionResponse(BaseModel):
    message: str
    attendance: AttendanceRead


class AttendanceManualUpsertRequest(BaseModel):
    employee_id: int = Field(ge=1)
    day_date: date
    check_in: datetime | None = None
    check_out: datetime | None = None
    status: AttendanceStatus | None = None
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("day_date", mode="before")
    @classmethod
    def truncate_to_day(cls, value: object) -> object:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return value


# Leave requests


class LeaveCreateRequest(BaseModel):
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str = Field(min_length=1, max_length=4000)

    @field_validator("reason", mode="before")
    @classmethod
    def strip_reason(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class LeaveReviewRequest(BaseModel):
    status: LeaveStatus
    review_notes: str | None = Field(default=None, max_length=1000)


class LeaveRequestRead(BaseModel):
    id: int
    employee_id: int
    leave_type: LeaveType
    start_date: date
    end_date: date
    day_count: int
    reason: str
    status: LeaveStatus
    reviewed_by: int | None
    reviewed_at: datetime | None
    review_notes: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LeaveRequestListItem(LeaveRequestRead):
    employee: EmployeeBrief | None = None


class LeaveRequestListResponse(BaseModel):
    items: list[LeaveRequestListItem]
    pagination: PageMeta


class LeaveStatsResponse(BaseModel):
    employee_id: int
    year: int
    total_days: int
    by_type: dict[LeaveType, int]


class EmployeeDetailResponse(BaseModel):
    employee: EmployeeWithUserRead
    recent_attendance: list[AttendanceRead]
    recent_leave_requests: list[LeaveRequestRead]


# Aggregation


class AttendanceCounts(BaseModel):
    present: int = 0
    late: int = 0
    absent: int = 0
    half_day: int = 0
    total_days: int = 0
    total_work_hours: float = 0.0


class LeaveTallies(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    total: int = 0


class PeriodSummary(BaseModel):
    start_date: date
    end_date: date
    employee_id: int | None = None
    department: str | None = None
    attendance: AttendanceCounts
    leaves: LeaveTallies


class DailyPresenceCount(BaseModel):
    day_date: date
    count: int


class DailyEmployeeStatus(BaseModel):
    day_date: date
    status: AttendanceStatus
    work_hours: float


class EmployeeHeadcount(BaseModel):
    total: int
    active: int
    inactive: int


class DepartmentHeadcount(BaseModel):
    name: str
    count: int


class TodayAttendanceCounts(BaseModel):
    present: int
    late: int
    absent: int
    on_leave: int


class AdminDashboardResponse(BaseModel):
    employees: EmployeeHeadcount
    today: TodayAttendanceCounts
    last_7_days: list[DailyPresenceCount]
    pending_leaves: int
    approved_leaves_this_month: int
    recent_leave_requests: list[LeaveRequestListItem]
    departments: list[DepartmentHeadcount]


class EmployeeDashboardResponse(BaseModel):
    today: AttendanceRead | None
    this_month: PeriodSummary
    recent_leave_requests: list[LeaveRequestRead]
    last_7_days: list[DailyEmployeeStatus]
