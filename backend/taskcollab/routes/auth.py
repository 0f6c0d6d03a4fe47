# taskcollab/routes/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from taskcollab.auth.tokens import TokenCodec
from taskcollab.core.errors import ApiError, AuthenticationError, AuthErrorCode, render_error
from taskcollab.dependencies.auth import get_auth_service, get_current_user, get_token_codec
from taskcollab.models.user import User
from taskcollab.schemas.auth import LoginIn, MessageOut, RegisterIn
from taskcollab.schemas.user import UpdateProfileIn, UserOut
from taskcollab.services.auth import AuthService
from taskcollab.services.cookies import clear_token_cookies, read_refresh_cookie, set_token_cookies

router = APIRouter(prefix="/auth", tags=["auth"])


def _client_meta(request: Request) -> tuple[str | None, str | None]:
    user_agent = request.headers.get("user-agent")
    ip_address = request.client.host if request.client else None
    return user_agent, ip_address


# -----------------------------
# Routes
# -----------------------------
@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterIn,
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
    codec: TokenCodec = Depends(get_token_codec),
):
    user_agent, ip_address = _client_meta(request)
    result = auth.register(
        email=payload.email,
        name=payload.name,
        password=payload.password,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    set_token_cookies(response, result.tokens, codec)
    return result.user


@router.post("/login", response_model=UserOut)
def login(
    payload: LoginIn,
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
    codec: TokenCodec = Depends(get_token_codec),
):
    user_agent, ip_address = _client_meta(request)
    result = auth.login(
        email=payload.email,
        password=payload.password,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    set_token_cookies(response, result.tokens, codec)
    return result.user


@router.post("/logout", response_model=MessageOut)
def logout(request: Request, response: Response, auth: AuthService = Depends(get_auth_service)):
    """
    Logout by deleting the session for the refresh cookie (if present) and clearing cookies.
    """
    raw = read_refresh_cookie(request)
    if raw:
        auth.logout(raw)

    clear_token_cookies(response)
    return {"message": "Logout successful"}


@router.post("/logout-all", response_model=MessageOut)
def logout_all(
    response: Response,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    auth.logout_all(user.id)
    clear_token_cookies(response)
    return {"message": "Logged out from all devices"}


@router.post("/refresh", response_model=MessageOut)
def refresh(
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
    codec: TokenCodec = Depends(get_token_codec),
):
    """
    Rotate tokens via HttpOnly cookies:
      - read refresh token from cookie (missing => REFRESH_TOKEN_MISSING, no verification)
      - verify + look up session
      - delete old session, issue new pair, create new session
      - set new cookies
    Any failure clears both cookies.
    """
    raw = read_refresh_cookie(request)
    try:
        if not raw:
            raise AuthenticationError("No refresh token provided", AuthErrorCode.REFRESH_TOKEN_MISSING)
        user_agent, ip_address = _client_meta(request)
        tokens = auth.refresh(raw, user_agent=user_agent, ip_address=ip_address)
    except ApiError as exc:
        # Raising would drop cookie headers set on `response`, so build the error here.
        error_response: JSONResponse = render_error(exc)
        clear_token_cookies(error_response)
        return error_response

    set_token_cookies(response, tokens, codec)
    return {"message": "Tokens refreshed successfully"}


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user


@router.patch("/me", response_model=UserOut)
def update_me(
    payload: UpdateProfileIn,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.update_profile(user.id, name=payload.name, email=payload.email)
