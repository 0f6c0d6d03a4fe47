from __future__ import annotations

from enum import Enum
from typing import Any

import httpx

# Codes after which the session cannot be recovered: log out.
TERMINAL_CODES = frozenset(
    {
        "REFRESH_TOKEN_MISSING",
        "REFRESH_TOKEN_EXPIRED",
        "REFRESH_TOKEN_INVALID",
        "REFRESH_TOKEN_REVOKED",
        "USER_NOT_FOUND",
    }
)

# Codes that a successful refresh can fix.
REFRESHABLE_CODES = frozenset(
    {
        "ACCESS_TOKEN_EXPIRED",
        "ACCESS_TOKEN_INVALID",
        "ACCESS_TOKEN_MISSING",
    }
)


class ErrorKind(str, Enum):
    # Session is gone; the user must sign in again.
    SESSION_ENDED = "session_ended"
    # Non-auth HTTP failure (4xx/5xx) returned by the server.
    HTTP = "http"
    # The request never produced a response (connection error, timeout).
    TRANSPORT = "transport"


class ApiClientError(Exception):
    """Every failure the API client raises to its callers."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        response: httpx.Response | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code
        self.status_code = status_code
        self.response = response

    @classmethod
    def from_response(cls, response: httpx.Response, kind: ErrorKind = ErrorKind.HTTP) -> ApiClientError:
        body = _json_body(response)
        message = body.get("message") if isinstance(body.get("message"), str) else None
        code = body.get("code") if isinstance(body.get("code"), str) else None
        return cls(
            kind,
            message or f"Request failed with status {response.status_code}",
            code=code,
            status_code=response.status_code,
            response=response,
        )


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def error_code(response: httpx.Response) -> str | None:
    code = _json_body(response).get("code")
    return code if isinstance(code, str) else None
