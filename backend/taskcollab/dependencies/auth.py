# taskcollab/dependencies/auth.py
from __future__ import annotations

import logging

from fastapi import Depends, Request
from sqlalchemy.orm import Session
from starlette.requests import HTTPConnection

from taskcollab.auth.identity import Identity
from taskcollab.auth.tokens import RejectReason, TokenClass, TokenCodec, TokenRejected
from taskcollab.core.database import get_db
from taskcollab.core.errors import AuthenticationError, AuthErrorCode
from taskcollab.core.security import PasswordHasher
from taskcollab.models.user import User
from taskcollab.services.auth import AuthService
from taskcollab.services.cookies import read_access_cookie
from taskcollab.services.sessions import SessionStore
from taskcollab.services.users import UserStore

logger = logging.getLogger(__name__)


# -----------------------------
# Process-wide collaborators (built in create_app)
# -----------------------------
def get_token_codec(conn: HTTPConnection) -> TokenCodec:
    return conn.app.state.token_codec


def get_password_hasher(conn: HTTPConnection) -> PasswordHasher:
    return conn.app.state.password_hasher


def get_auth_service(
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    hasher: PasswordHasher = Depends(get_password_hasher),
) -> AuthService:
    return AuthService(
        users=UserStore(db),
        sessions=SessionStore(db),
        codec=codec,
        hasher=hasher,
    )


# -----------------------------
# Request gate
# -----------------------------
def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
) -> User:
    """
    Validates:
      - access token cookie present
      - token signature + exp + class
      - user still exists
    Every failure is a 401 carrying a classified code.
    """
    request.state.identity = Identity.unauthenticated()
    request.state.user = None

    token = read_access_cookie(request)
    if not token:
        raise AuthenticationError("Access token not provided", AuthErrorCode.ACCESS_TOKEN_MISSING)

    result = codec.verify(token, TokenClass.ACCESS)
    if isinstance(result, TokenRejected):
        if result.reason == RejectReason.EXPIRED:
            logger.info("Rejected expired access token path=%s", request.url.path)
            raise AuthenticationError("Access token has expired", AuthErrorCode.ACCESS_TOKEN_EXPIRED)
        logger.warning("Rejected invalid access token path=%s", request.url.path)
        raise AuthenticationError("Invalid access token", AuthErrorCode.ACCESS_TOKEN_INVALID)

    user = UserStore(db).get_by_id(result.claims.subject_id)
    if user is None:
        # Subject deleted after the token was issued.
        logger.warning("Access token subject no longer exists user_id=%s", result.claims.subject_id)
        raise AuthenticationError("User not found", AuthErrorCode.USER_NOT_FOUND)

    request.state.user = user
    request.state.identity = Identity.from_claims(result.claims)
    return user
