from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.audit import client_ip, log_audit
from app.db import get_db
from app.errors import ApiError
from app.models import AuditActorType
from app.schemas import AuthResponse, ChangePasswordRequest, LoginRequest, MessageResponse, RegisterRequest, UserRead
from app.security import Principal, require_principal
from app.services.accounts import authenticate, change_password, get_user, issue_token, register

router = APIRouter(tags=["auth"])


@router.post("/api/auth/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AuthResponse:
    ip = client_ip(request)
    user_agent = request.headers.get("user-agent")
    request_id = getattr(request.state, "request_id", None)

    try:
        user = authenticate(db, email=payload.email, password=payload.password)
    except ApiError as exc:
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=payload.email.strip().lower() or "anonymous",
            action="LOGIN_FAIL",
            success=False,
            ip=ip,
            user_agent=user_agent,
            details={"reason": exc.code},
            request_id=request_id,
        )
        raise

    request.state.actor = user.role.value.lower()
    request.state.actor_id = str(user.id)
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(user.id),
        action="LOGIN_SUCCESS",
        success=True,
        entity_type="user",
        entity_id=str(user.id),
        ip=ip,
        user_agent=user_agent,
        request_id=request_id,
    )
    return issue_token(user)


@router.post("/api/auth/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register_account(
    payload: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AuthResponse:
    user = register(db, payload)
    request.state.actor = "employee"
    request.state.actor_id = str(user.id)
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(user.id),
        action="USER_REGISTERED",
        success=True,
        entity_type="user",
        entity_id=str(user.id),
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        request_id=getattr(request.state, "request_id", None),
    )
    return issue_token(user)


@router.get("/api/auth/me", response_model=UserRead)
def me(
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> UserRead:
    return get_user(db, principal.user_id)


@router.post("/api/auth/change-password", response_model=MessageResponse)
def change_own_password(
    payload: ChangePasswordRequest,
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> MessageResponse:
    change_password(
        db,
        user_id=principal.user_id,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    log_audit(
        db,
        actor_type=AuditActorType.USER,
        actor_id=str(principal.user_id),
        action="PASSWORD_CHANGED",
        success=True,
        entity_type="user",
        entity_id=str(principal.user_id),
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        request_id=getattr(request.state, "request_id", None),
    )
    return MessageResponse(message="Password changed successfully.")
