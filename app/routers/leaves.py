from datetime import date

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.db import get_db
from app.models import LeaveRequest, LeaveStatus
from app.schemas import (
    LeaveCreateRequest,
    LeaveRequestListItem,
    LeaveRequestListResponse,
    LeaveRequestRead,
    LeaveReviewRequest,
    LeaveStatsResponse,
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
from app.services.exports import XLSX_MEDIA_TYPE, build_leave_xlsx_bytes, export_filename
from app.services.leaves import (
    cancel_leave_request,
    create_leave_request,
    get_leave_request,
    leave_snapshot,
    leave_stats_for,
    list_leave_requests,
    review_leave_request,
)
from app.services.pagination import PageParams, page_params

router = APIRouter(tags=["leaves"])


def _list_response(items: list[LeaveRequest], meta: PageMeta) -> LeaveRequestListResponse:
    return LeaveRequestListResponse(
        items=[LeaveRequestListItem.model_validate(item) for item in items],
        pagination=meta,
    )


@router.post("/api/leaves", response_model=LeaveRequestRead, status_code=status.HTTP_201_CREATED)
def submit_leave_request(
    payload: LeaveCreateRequest,
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    employee_id = require_employee_id(principal)
    leave = create_leave_request(db, employee_id=employee_id, payload=payload)
    request.state.leave_request_id = leave.id
    return LeaveRequestRead.model_validate(leave)


@router.get("/api/leaves/me", response_model=LeaveRequestListResponse)
def list_my_leave_requests(
    status_filter: LeaveStatus | None = Query(default=None, alias="status"),
    paging: PageParams = Depends(page_params()),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> LeaveRequestListResponse:
    employee_id = require_employee_id(principal)
    items, meta = list_leave_requests(
        db,
        employee_id=employee_id,
        status=status_filter,
        page=paging.page,
        limit=paging.limit,
    )
    return _list_response(items, meta)


@router.get("/api/leaves", response_model=LeaveRequestListResponse)
def list_all_leave_requests(
    status_filter: LeaveStatus | None = Query(default=None, alias="status"),
    employee_id: int | None = Query(default=None, ge=1),
    paging: PageParams = Depends(page_params()),
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> LeaveRequestListResponse:
    items, meta = list_leave_requests(
        db,
        employee_id=employee_id,
        status=status_filter,
        page=paging.page,
        limit=paging.limit,
    )
    return _list_response(items, meta)


@router.get("/api/leaves/export")
def export_leave_requests(
    status_filter: LeaveStatus | None = Query(default=None, alias="status"),
    employee_id: int | None = Query(default=None, ge=1),
    _: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> Response:
    content = build_leave_xlsx_bytes(db, employee_id=employee_id, status=status_filter)
    filename = export_filename("leave_requests")
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/api/leaves/stats/{employee_id}", response_model=LeaveStatsResponse)
def get_leave_stats(
    employee_id: int,
    year: int | None = Query(default=None, ge=1970, le=2100),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> LeaveStatsResponse:
    ensure_owner_or_privileged(principal, employee_id)
    return leave_stats_for(db, employee_id=employee_id, year=year or date.today().year)


@router.get("/api/leaves/{leave_request_id}", response_model=LeaveRequestListItem)
def get_leave_request_detail(
    leave_request_id: int,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> LeaveRequestListItem:
    leave = get_leave_request(db, leave_request_id=leave_request_id, principal=principal)
    return LeaveRequestListItem.model_validate(leave)


@router.patch("/api/leaves/{leave_request_id}/review", response_model=LeaveRequestRead)
def review_leave(
    leave_request_id: int,
    payload: LeaveReviewRequest,
    request: Request,
    principal: Principal = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave = review_leave_request(
        db,
        leave_request_id=leave_request_id,
        decision=payload.status,
        reviewer_id=principal.user_id,
        review_notes=payload.review_notes,
    )
    result = LeaveRequestRead.model_validate(leave)
    audit_request(
        db,
        request,
        action=f"LEAVE_REQUEST_{payload.status.value}",
        entity_type="leave_request",
        entity_id=leave.id,
        details={**leave_snapshot(leave), "review_notes": payload.review_notes},
    )
    return result


@router.delete("/api/leaves/{leave_request_id}", response_model=MessageResponse)
def cancel_leave(
    leave_request_id: int,
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> MessageResponse:
    cancelled = cancel_leave_request(db, leave_request_id=leave_request_id, principal=principal)
    audit_request(
        db,
        request,
        action="LEAVE_REQUEST_CANCELLED",
        entity_type="leave_request",
        entity_id=cancelled.leave_request_id,
        details={
            "employee_id": cancelled.employee_id,
            "previous_status": cancelled.previous_status.value,
            "privileged_override": cancelled.privileged_override,
        },
    )
    return MessageResponse(message="Leave request cancelled.")
