from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.errors import ConflictError, NotFoundError, ValidationFailed
from app.models import Attendance, Employee, LeaveRequest, Role, User
from app.schemas import EmployeeCreate, EmployeeUpdate, PageMeta
from app.security import hash_password
from app.services.pagination import paginate
from app.settings import get_settings

logger = logging.getLogger("app.employees")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
RECENT_ATTENDANCE_LIMIT = 10
RECENT_LEAVE_LIMIT = 5


def normalize_email(value: str) -> str:
    email = (value or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationFailed("INVALID_EMAIL", "A valid email address is required.")
    return email


def ensure_password_strength(password: str) -> None:
    min_length = get_settings().min_password_length
    if len(password or "") < min_length:
        raise ValidationFailed(
            "WEAK_PASSWORD",
            f"Password must be at least {min_length} characters.",
            details={"min_length": min_length},
        )


def _email_taken(db: Session, email: str, *, exclude_user_id: int | None = None) -> bool:
    stmt = select(User.id).where(User.email == email)
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)
    return db.scalar(stmt) is not None


def create_user_with_employee(
    db: Session,
    *,
    email: str,
    password: str,
    role: Role,
    first_name: str,
    last_name: str,
    position: str | None = None,
    department: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    salary: float | None = None,
    hire_date: date | None = None,
    birth_date: date | None = None,
) -> Employee:
    """Create a user and its employee profile in a single transaction."""
    normalized_email = normalize_email(email)
    ensure_password_strength(password)
    if _email_taken(db, normalized_email):
        raise ConflictError("EMAIL_TAKEN", "A user with this email already exists.")

    user = User(email=normalized_email, password_hash=hash_password(password), role=role)
    employee = Employee(
        user=user,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        position=(position or "").strip() or "Employee",
        department=(department or "").strip() or "General",
        phone=phone,
        address=address,
        salary=salary,
        hire_date=hire_date or date.today(),
        birth_date=birth_date,
        is_active=True,
    )
    db.add_all([user, employee])
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("EMAIL_TAKEN", "A user with this email already exists.") from exc
    db.refresh(employee)

    logger.info(
        "employee_created",
        extra={"employee_id": employee.id, "user_id": user.id, "role": role.value},
    )
    return employee


def create_employee(db: Session, payload: EmployeeCreate) -> Employee:
    return create_user_with_employee(
        db,
        email=payload.email,
        password=payload.password,
        role=payload.role,
        first_name=payload.first_name,
        last_name=payload.last_name,
        position=payload.position,
        department=payload.department,
        phone=payload.phone,
        address=payload.address,
        salary=payload.salary,
        hire_date=payload.hire_date,
        birth_date=payload.birth_date,
    )


def get_employee(db: Session, employee_id: int) -> Employee:
    employee = db.scalar(
        select(Employee).options(selectinload(Employee.user)).where(Employee.id == employee_id)
    )
    if employee is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    return employee


def get_employee_detail(db: Session, employee_id: int) -> tuple[Employee, list[Attendance], list[LeaveRequest]]:
    employee = get_employee(db, employee_id)
    attendances = db.scalars(
        select(Attendance)
        .where(Attendance.employee_id == employee_id)
        .order_by(Attendance.day_date.desc(), Attendance.id.desc())
        .limit(RECENT_ATTENDANCE_LIMIT)
    ).all()
    leaves = db.scalars(
        select(LeaveRequest)
        .where(LeaveRequest.employee_id == employee_id)
        .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
        .limit(RECENT_LEAVE_LIMIT)
    ).all()
    return employee, list(attendances), list(leaves)


def list_employees(
    db: Session,
    *,
    search: str | None = None,
    department: str | None = None,
    is_active: bool | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Employee], PageMeta]:
    stmt = (
        select(Employee)
        .options(selectinload(Employee.user))
        .order_by(Employee.created_at.desc(), Employee.id.desc())
    )
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        stmt = stmt.where(
            or_(
                Employee.first_name.ilike(pattern),
                Employee.last_name.ilike(pattern),
                Employee.position.ilike(pattern),
            )
        )
    if department:
        stmt = stmt.where(Employee.department == department)
    if is_active is not None:
        stmt = stmt.where(Employee.is_active.is_(is_active))
    return paginate(db, stmt, page=page, limit=limit)


def update_employee(db: Session, *, employee_id: int, payload: EmployeeUpdate) -> tuple[Employee, dict[str, Any]]:
    """Apply the fields present in ``payload``; returns the employee and the changed values."""
    employee = get_employee(db, employee_id)
    user = employee.user
    changes: dict[str, Any] = {}
    fields = payload.model_dump(exclude_unset=True)

    if "email" in fields and fields["email"] is not None:
        email = normalize_email(fields.pop("email"))
        if email != user.email:
            if _email_taken(db, email, exclude_user_id=user.id):
                raise ConflictError("EMAIL_TAKEN", "A user with this email already exists.")
            user.email = email
            changes["email"] = email
    fields.pop("email", None)

    role = fields.pop("role", None)
    if role is not None and role != user.role:
        user.role = role
        changes["role"] = role.value

    for name, value in fields.items():
        if value is None and name in {"first_name", "last_name", "position", "department", "is_active"}:
            continue
        if isinstance(value, str) and name in {"first_name", "last_name", "position", "department"}:
            value = value.strip()
        if getattr(employee, name) != value:
            setattr(employee, name, value)
            changes[name] = value.isoformat() if isinstance(value, date) else value

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("EMAIL_TAKEN", "A user with this email already exists.") from exc
    db.refresh(employee)

    logger.info("employee_updated", extra={"employee_id": employee.id, "fields": sorted(changes)})
    return employee, changes


def delete_employee(db: Session, *, employee_id: int, acting_user_id: int) -> dict[str, Any]:
    """Delete the employee's user; attendance and leave rows go with it."""
    employee = get_employee(db, employee_id)
    user = employee.user
    if user.id == acting_user_id:
        raise ConflictError("CANNOT_DELETE_SELF", "You cannot delete your own account.")

    snapshot = {
        "employee_id": employee.id,
        "user_id": user.id,
        "email": user.email,
        "full_name": employee.full_name,
    }
    db.delete(user)
    db.commit()

    logger.info("employee_deleted", extra=snapshot)
    return snapshot
