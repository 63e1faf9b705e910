from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.errors import AuthorizationError, ConflictError, NotFoundError, ValidationFailed
from app.models import ACTIVE_LEAVE_STATUSES, Employee, LeaveRequest, LeaveStatus, LeaveType
from app.schemas import LeaveCreateRequest, LeaveStatsResponse, PageMeta
from app.security import Principal, ensure_owner_or_privileged
from app.services.attendance import ensure_date_range
from app.services.pagination import paginate

logger = logging.getLogger("app.leaves")

REVIEW_DECISIONS: frozenset[LeaveStatus] = frozenset({LeaveStatus.APPROVED, LeaveStatus.REJECTED})


@dataclass(frozen=True, slots=True)
class CancelledLeave:
    leave_request_id: int
    employee_id: int
    previous_status: LeaveStatus
    privileged_override: bool


def intervals_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    """Closed intervals share at least one calendar day."""
    return max(start_a, start_b) <= min(end_a, end_b)


def inclusive_day_count(start_date: date, end_date: date) -> int:
    return (end_date - start_date).days + 1


def leave_snapshot(leave: LeaveRequest) -> dict[str, Any]:
    return {
        "id": leave.id,
        "employee_id": leave.employee_id,
        "leave_type": leave.leave_type.value,
        "start_date": leave.start_date.isoformat(),
        "end_date": leave.end_date.isoformat(),
        "status": leave.status.value,
    }


def _lock_employee(db: Session, employee_id: int) -> Employee:
    # Row lock serializes concurrent submissions for the same employee so the
    # overlap read below cannot be invalidated before the insert commits.
    employee = db.scalar(
        select(Employee)
        .where(Employee.id == employee_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if employee is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    return employee


def _lock_leave_request(db: Session, leave_request_id: int) -> LeaveRequest:
    # Callers check the status while this row lock is held.
    leave = db.scalar(
        select(LeaveRequest)
        .where(LeaveRequest.id == leave_request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if leave is None:
        raise NotFoundError("LEAVE_REQUEST_NOT_FOUND", "Leave request not found.")
    return leave


def _find_overlapping_request(
    db: Session,
    *,
    employee_id: int,
    start_date: date,
    end_date: date,
) -> LeaveRequest | None:
    return db.scalar(
        select(LeaveRequest)
        .where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
            LeaveRequest.start_date <= end_date,
            LeaveRequest.end_date >= start_date,
        )
        .order_by(LeaveRequest.start_date.asc(), LeaveRequest.id.asc())
        .limit(1)
    )


def create_leave_request(db: Session, *, employee_id: int, payload: LeaveCreateRequest) -> LeaveRequest:
    ensure_date_range(payload.start_date, payload.end_date)

    employee = _lock_employee(db, employee_id)
    if not employee.is_active:
        db.rollback()
        raise AuthorizationError("EMPLOYEE_INACTIVE", "Inactive employee cannot request leave.")

    overlapping = _find_overlapping_request(
        db,
        employee_id=employee_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    if overlapping is not None:
        details = {"leave_request": leave_snapshot(overlapping)}
        db.rollback()
        raise ConflictError(
            "OVERLAPPING_REQUEST",
            "A pending or approved leave request already covers part of this period.",
            details=details,
        )

    leave = LeaveRequest(
        employee_id=employee_id,
        leave_type=payload.leave_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
        status=LeaveStatus.PENDING,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)

    logger.info(
        "leave_request_created",
        extra={
            "employee_id": employee_id,
            "leave_request_id": leave.id,
            "leave_type": leave.leave_type.value,
            "day_count": inclusive_day_count(leave.start_date, leave.end_date),
        },
    )
    return leave


def review_leave_request(
    db: Session,
    *,
    leave_request_id: int,
    decision: LeaveStatus,
    reviewer_id: int,
    review_notes: str | None = None,
    now: datetime | None = None,
) -> LeaveRequest:
    if decision not in REVIEW_DECISIONS:
        raise ValidationFailed("INVALID_DECISION", "Decision must be APPROVED or REJECTED.")

    leave = _lock_leave_request(db, leave_request_id)
    if leave.status != LeaveStatus.PENDING:
        details = {"leave_request": leave_snapshot(leave)}
        db.rollback()
        raise ConflictError("ALREADY_REVIEWED", "This leave request has already been reviewed.", details=details)

    leave.status = decision
    leave.reviewed_by = reviewer_id
    leave.reviewed_at = now or datetime.now(timezone.utc)
    leave.review_notes = review_notes
    db.commit()
    db.refresh(leave)

    logger.info(
        "leave_request_reviewed",
        extra={"leave_request_id": leave.id, "status": decision.value, "reviewer_id": reviewer_id},
    )
    return leave


def cancel_leave_request(db: Session, *, leave_request_id: int, principal: Principal) -> CancelledLeave:
    leave = _lock_leave_request(db, leave_request_id)

    is_owner = principal.employee_id is not None and principal.employee_id == leave.employee_id
    if not is_owner and not principal.is_privileged:
        db.rollback()
        raise AuthorizationError("FORBIDDEN", "You can only cancel your own leave requests.")

    if not principal.is_privileged:
        if leave.status == LeaveStatus.APPROVED:
            db.rollback()
            raise ConflictError(
                "CANNOT_CANCEL_APPROVED",
                "An approved leave request can only be cancelled by HR or an administrator.",
            )
        if leave.status == LeaveStatus.REJECTED:
            db.rollback()
            raise ConflictError("CANNOT_CANCEL_REVIEWED", "A rejected leave request cannot be cancelled.")

    cancelled = CancelledLeave(
        leave_request_id=leave.id,
        employee_id=leave.employee_id,
        previous_status=leave.status,
        privileged_override=principal.is_privileged and leave.status != LeaveStatus.PENDING,
    )
    db.delete(leave)
    db.commit()

    logger.info(
        "leave_request_cancelled",
        extra={
            "leave_request_id": cancelled.leave_request_id,
            "employee_id": cancelled.employee_id,
            "previous_status": cancelled.previous_status.value,
            "privileged_override": cancelled.privileged_override,
        },
    )
    return cancelled


def get_leave_request(db: Session, *, leave_request_id: int, principal: Principal) -> LeaveRequest:
    leave = db.get(LeaveRequest, leave_request_id)
    if leave is None:
        raise NotFoundError("LEAVE_REQUEST_NOT_FOUND", "Leave request not found.")
    ensure_owner_or_privileged(principal, leave.employee_id)
    return leave


def list_leave_requests(
    db: Session,
    *,
    employee_id: int | None = None,
    status: LeaveStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[LeaveRequest], PageMeta]:
    stmt = (
        select(LeaveRequest)
        .options(selectinload(LeaveRequest.employee))
        .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    )
    if employee_id is not None:
        stmt = stmt.where(LeaveRequest.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    return paginate(db, stmt, page=page, limit=limit)


def leave_stats_for(db: Session, *, employee_id: int, year: int) -> LeaveStatsResponse:
    """Approved leave days per type for requests starting in ``year``."""
    if db.get(Employee, employee_id) is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")

    rows = db.scalars(
        select(LeaveRequest).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status == LeaveStatus.APPROVED,
            LeaveRequest.start_date >= date(year, 1, 1),
            LeaveRequest.start_date <= date(year, 12, 31),
        )
    ).all()

    by_type: dict[LeaveType, int] = defaultdict(int)
    for leave in rows:
        by_type[leave.leave_type] += inclusive_day_count(leave.start_date, leave.end_date)

    return LeaveStatsResponse(
        employee_id=employee_id,
        year=year,
        total_days=sum(by_type.values()),
        by_type=dict(by_type),
    )
