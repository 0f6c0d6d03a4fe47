from __future__ import annotations

from fastapi import Response
from starlette.requests import HTTPConnection

from taskcollab.auth.tokens import TokenClass, TokenCodec, TokenPair
from taskcollab.core.config import settings


# -----------------------------
# Cookie helpers
# -----------------------------
def access_cookie_name() -> str:
    return str(getattr(settings, "ACCESS_COOKIE_NAME", "access_token")).strip() or "access_token"


def refresh_cookie_name() -> str:
    return str(getattr(settings, "REFRESH_COOKIE_NAME", "refresh_token")).strip() or "refresh_token"


def cookie_path() -> str:
    return str(getattr(settings, "COOKIE_PATH", "/")).strip() or "/"


def cookie_secure() -> bool:
    # Prod => HTTPS => Secure cookies. Dev http://localhost => must be False.
    return settings.is_prod


def cookie_samesite() -> str:
    # Prod serves the client from another origin, which needs "none" (+ Secure).
    return "none" if settings.is_prod else "lax"


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": cookie_secure(),
        "samesite": cookie_samesite(),
        "path": cookie_path(),
        "domain": settings.COOKIE_DOMAIN,
    }


def set_token_cookies(resp: Response, tokens: TokenPair, codec: TokenCodec) -> None:
    resp.set_cookie(
        key=access_cookie_name(),
        value=tokens.access_token,
        max_age=codec.ttl_seconds(TokenClass.ACCESS),
        **_cookie_options(),
    )
    resp.set_cookie(
        key=refresh_cookie_name(),
        value=tokens.refresh_token,
        max_age=codec.ttl_seconds(TokenClass.REFRESH),
        **_cookie_options(),
    )


def clear_token_cookies(resp: Response) -> None:
    for key in (access_cookie_name(), refresh_cookie_name()):
        resp.delete_cookie(key=key, **_cookie_options())


def _read_cookie(cookies: dict[str, str], name: str) -> str | None:
    val = cookies.get(name)
    if not val:
        return None
    val = val.strip()
    return val or None


def read_access_cookie(conn: HTTPConnection) -> str | None:
    return _read_cookie(conn.cookies, access_cookie_name())


def read_refresh_cookie(conn: HTTPConnection) -> str | None:
    return _read_cookie(conn.cookies, refresh_cookie_name())
