from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.errors import AuthorizationError, NotFoundError
from app.models import Role, User
from app.schemas import AuthResponse, RegisterRequest, UserRead
from app.security import create_access_token, hash_password, verify_password
from app.services.employees import create_user_with_employee, ensure_password_strength, normalize_email
from app.settings import get_settings

logger = logging.getLogger("app.accounts")


def _invalid_credentials() -> AuthorizationError:
    return AuthorizationError("INVALID_CREDENTIALS", "Invalid credentials.", status_code=401)


def get_user(db: Session, user_id: int) -> User:
    user = db.scalar(select(User).options(selectinload(User.employee)).where(User.id == user_id))
    if user is None:
        raise NotFoundError("USER_NOT_FOUND", "User not found.")
    return user


def issue_token(user: User) -> AuthResponse:
    token, expires_in = create_access_token(user_id=user.id, role=user.role)
    return AuthResponse(access_token=token, expires_in=expires_in, user=UserRead.model_validate(user))


def authenticate(db: Session, *, email: str, password: str) -> User:
    normalized_email = normalize_email(email)
    user = db.scalar(
        select(User).options(selectinload(User.employee)).where(User.email == normalized_email)
    )
    if user is None or not verify_password(password, user.password_hash):
        logger.info("login_failed", extra={"email": normalized_email})
        raise _invalid_credentials()
    if user.employee is not None and not user.employee.is_active:
        logger.info("login_rejected_inactive", extra={"user_id": user.id})
        raise AuthorizationError("EMPLOYEE_INACTIVE", "Employee account is inactive.")

    logger.info("login_succeeded", extra={"user_id": user.id, "role": user.role.value})
    return user


def register(db: Session, payload: RegisterRequest) -> User:
    if not get_settings().allow_self_registration:
        raise AuthorizationError("REGISTRATION_DISABLED", "Self registration is disabled.")

    employee = create_user_with_employee(
        db,
        email=payload.email,
        password=payload.password,
        role=Role.EMPLOYEE,
        first_name=payload.first_name,
        last_name=payload.last_name,
        position=payload.position,
        department=payload.department,
    )
    return get_user(db, employee.user_id)


def change_password(db: Session, *, user_id: int, current_password: str, new_password: str) -> None:
    user = get_user(db, user_id)
    if not verify_password(current_password, user.password_hash):
        raise _invalid_credentials()
    ensure_password_strength(new_password)

    user.password_hash = hash_password(new_password)
    db.commit()
    logger.info("password_changed", extra={"user_id": user.id})
