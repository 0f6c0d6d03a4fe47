# taskcollab/core/errors.py
"""
Error taxonomy shared by the services, the request gate and the HTTP layer.

Every failure the core produces is an ``ApiError`` with a closed ``kind``.
The HTTP status is derived from the kind, and authentication failures carry
one of the machine-readable ``AuthErrorCode`` values so clients can branch
without looking at message text.
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi.responses import JSONResponse


class AuthErrorCode(str, Enum):
    ACCESS_TOKEN_MISSING = "ACCESS_TOKEN_MISSING"
    ACCESS_TOKEN_EXPIRED = "ACCESS_TOKEN_EXPIRED"
    ACCESS_TOKEN_INVALID = "ACCESS_TOKEN_INVALID"
    REFRESH_TOKEN_MISSING = "REFRESH_TOKEN_MISSING"
    REFRESH_TOKEN_EXPIRED = "REFRESH_TOKEN_EXPIRED"
    REFRESH_TOKEN_INVALID = "REFRESH_TOKEN_INVALID"
    REFRESH_TOKEN_REVOKED = "REFRESH_TOKEN_REVOKED"
    USER_NOT_FOUND = "USER_NOT_FOUND"


# Service-level codes (not part of the refresh protocol).
DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
EMAIL_TAKEN = "EMAIL_TAKEN"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


def error_label(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


class ApiError(Exception):
    """Base exception for every failure surfaced to API clients."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self.kind]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": error_label(self.status_code), "message": self.message}
        if self.code:
            payload["code"] = self.code
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ApiError):
    kind = ErrorKind.VALIDATION


class AuthenticationError(ApiError):
    """Raised for 401 failures; ``code`` drives the client refresh state machine."""

    kind = ErrorKind.AUTHENTICATION

    def __init__(self, message: str, code: AuthErrorCode | str | None = None) -> None:
        value = code.value if isinstance(code, AuthErrorCode) else code
        super().__init__(message, code=value)


class NotFoundError(ApiError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(ApiError):
    kind = ErrorKind.CONFLICT


class InternalError(ApiError):
    kind = ErrorKind.INTERNAL


def render_error(exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
