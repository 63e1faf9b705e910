from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    kind = "API_ERROR"

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class ValidationFailed(ApiError):
    kind = "VALIDATION_ERROR"

    def __init__(self, code: str, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(422, code, message, details=details)


class ConflictError(ApiError):
    kind = "CONFLICT"

    def __init__(self, code: str, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(409, code, message, details=details)


class NotFoundError(ApiError):
    kind = "NOT_FOUND"

    def __init__(self, code: str, message: str):
        super().__init__(404, code, message)


class AuthorizationError(ApiError):
    """Role or ownership mismatch.

    Never carries details: a caller who may not see a record must not
    learn anything about it from the error body.
    """

    kind = "AUTHORIZATION_ERROR"

    def __init__(self, code: str = "FORBIDDEN", message: str = "Insufficient permissions.", *, status_code: int = 403):
        super().__init__(status_code, code, message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    kind: str,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "kind": kind,
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=payload)
