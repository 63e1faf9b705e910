from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import AuthorizationError
from app.models import PRIVILEGED_ROLES, Role, User
from app.settings import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller as seen by the services."""

    user_id: int
    email: str
    role: Role
    employee_id: int | None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        return False


def create_access_token(*, user_id: int, role: Role) -> tuple[str, int]:
    settings = get_settings()
    now = _utcnow()
    expires_in = settings.access_token_minutes * 60
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "role": role.value,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, expires_in


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise AuthorizationError("INVALID_TOKEN", "Token is invalid.", status_code=401) from exc

    if payload.get("typ") != "access":
        raise AuthorizationError("INVALID_TOKEN", "Token type is invalid.", status_code=401)

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        raise AuthorizationError("INVALID_TOKEN", "Token subject is invalid.", status_code=401)

    return payload


def principal_for_user(user: User) -> Principal:
    return Principal(
        user_id=user.id,
        email=user.email,
        role=user.role,
        employee_id=user.employee.id if user.employee is not None else None,
    )


def require_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthorizationError("INVALID_TOKEN", "Missing bearer token.", status_code=401)

    payload = decode_token(credentials.credentials)
    user = db.get(User, int(payload["sub"]))
    if user is None:
        raise AuthorizationError("INVALID_TOKEN", "User no longer exists.", status_code=401)

    principal = principal_for_user(user)
    request.state.actor = principal.role.value.lower()
    request.state.actor_id = str(principal.user_id)
    request.state.employee_id = principal.employee_id
    return principal


def require_roles(*roles: Role) -> Callable[..., Principal]:
    """Route-level capability check: the principal's role must be one of ``roles``."""
    if not roles:
        raise ValueError("require_roles needs at least one role")
    allowed = frozenset(roles)

    def _dependency(principal: Principal = Depends(require_principal)) -> Principal:
        if principal.role not in allowed:
            raise AuthorizationError()
        return principal

    return _dependency


require_privileged = require_roles(*PRIVILEGED_ROLES)


def ensure_owner_or_privileged(principal: Principal, employee_id: int) -> None:
    if principal.is_privileged:
        return
    if principal.employee_id is not None and principal.employee_id == employee_id:
        return
    raise AuthorizationError("FORBIDDEN", "You can only access your own records.")


def require_employee_id(principal: Principal) -> int:
    if principal.employee_id is None:
        raise AuthorizationError(
            "EMPLOYEE_PROFILE_REQUIRED",
            "This action requires an employee profile.",
        )
    return principal.employee_id
