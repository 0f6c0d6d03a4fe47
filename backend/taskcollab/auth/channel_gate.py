# taskcollab/auth/channel_gate.py
"""
Handshake authentication for realtime connections.

Uses the same access token as the REST gate, read from (in order):
the access cookie, an ``Authorization: Bearer`` header, or a ``token`` query
parameter. There is no refresh path here: an expired access token simply fails
the handshake and the client reconnects after refreshing over HTTP.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session
from starlette.requests import HTTPConnection

from taskcollab.auth.identity import Identity
from taskcollab.auth.tokens import TokenClass, TokenCodec, TokenRejected
from taskcollab.services.cookies import read_access_cookie
from taskcollab.services.users import UserStore

logger = logging.getLogger(__name__)

TOKEN_REQUIRED = "Authentication token required"
TOKEN_INVALID = "Invalid or expired token"
USER_NOT_FOUND = "User not found"


class HandshakeRejected(Exception):
    """Raised when a realtime handshake cannot be authenticated."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def extract_handshake_token(conn: HTTPConnection) -> str | None:
    token = read_access_cookie(conn)
    if token:
        return token

    auth = conn.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
        if token:
            return token

    token = (conn.query_params.get("token") or "").strip()
    return token or None


def authenticate_handshake(conn: HTTPConnection, db: Session, codec: TokenCodec) -> Identity:
    token = extract_handshake_token(conn)
    if not token:
        raise HandshakeRejected(TOKEN_REQUIRED)

    # Expired and invalid are not distinguished: nothing here can refresh.
    result = codec.verify(token, TokenClass.ACCESS)
    if isinstance(result, TokenRejected):
        logger.info("Realtime handshake rejected: %s token", result.reason.value.lower())
        raise HandshakeRejected(TOKEN_INVALID)

    user = UserStore(db).get_by_id(result.claims.subject_id)
    if user is None:
        raise HandshakeRejected(USER_NOT_FOUND)

    return Identity(
        user_id=user.id,
        email=user.email,
        is_authenticated=True,
        token_id=result.claims.token_id or None,
    )
