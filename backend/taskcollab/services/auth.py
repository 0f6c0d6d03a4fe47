# taskcollab/services/auth.py
"""
Authentication service: register, login, refresh (with rotation), logout.

Successful register/login/refresh always produce a new credential pair plus a
Session row bound to the new refresh token. Refresh tokens are single-use:
refreshing deletes the presented token's Session before creating the next one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from taskcollab.auth.tokens import (
    RejectReason,
    SubjectClaims,
    TokenClass,
    TokenCodec,
    TokenPair,
    TokenRejected,
)
from taskcollab.core.errors import (
    DUPLICATE_EMAIL,
    EMAIL_TAKEN,
    INVALID_CREDENTIALS,
    AuthenticationError,
    AuthErrorCode,
    ConflictError,
    NotFoundError,
)
from taskcollab.core.security import PasswordHasher
from taskcollab.models.user import User
from taskcollab.services.sessions import SessionStore, is_expired
from taskcollab.services.users import UserStore, normalize_email

logger = logging.getLogger(__name__)

INVALID_LOGIN_MESSAGE = "Invalid email or password"


@dataclass(frozen=True)
class AuthResult:
    user: User
    tokens: TokenPair


class AuthService:
    def __init__(
        self,
        *,
        users: UserStore,
        sessions: SessionStore,
        codec: TokenCodec,
        hasher: PasswordHasher,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.codec = codec
        self.hasher = hasher

    # -----------------------------
    # Internal helpers
    # -----------------------------
    def _start_session(
        self,
        user: User,
        user_agent: str | None,
        ip_address: str | None,
    ) -> TokenPair:
        tokens = self.codec.issue_pair(SubjectClaims(subject_id=user.id, email=user.email))
        self.sessions.create(
            owner_id=user.id,
            refresh_token=tokens.refresh_token,
            user_agent=user_agent,
            ip_address=ip_address,
            expires_at=self.codec.refresh_expires_at(),
        )
        return tokens

    # -----------------------------
    # Operations
    # -----------------------------
    def register(
        self,
        *,
        email: str,
        name: str,
        password: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthResult:
        email = normalize_email(email)
        logger.info("User registration started")

        if self.users.get_by_email(email) is not None:
            logger.info("User registration rejected: email already registered")
            raise ConflictError("User with this email already exists", code=DUPLICATE_EMAIL)

        user = self.users.create(email=email, name=name, password_hash=self.hasher.hash(password))
        tokens = self._start_session(user, user_agent, ip_address)

        logger.info("User registration completed user_id=%s", user.id)
        return AuthResult(user=user, tokens=tokens)

    def login(
        self,
        *,
        email: str,
        password: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthResult:
        logger.info("User login started")

        user = self.users.get_by_email(email)
        # Unknown email and wrong password produce the same error.
        if user is None or not self.hasher.verify(password, user.password_hash):
            logger.info("User login rejected")
            raise AuthenticationError(INVALID_LOGIN_MESSAGE, code=INVALID_CREDENTIALS)

        tokens = self._start_session(user, user_agent, ip_address)

        logger.info("User login completed user_id=%s", user.id)
        return AuthResult(user=user, tokens=tokens)

    def refresh(
        self,
        refresh_token: str,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> TokenPair:
        result = self.codec.verify(refresh_token, TokenClass.REFRESH)
        if isinstance(result, TokenRejected):
            if result.reason == RejectReason.EXPIRED:
                raise AuthenticationError("Refresh token has expired", AuthErrorCode.REFRESH_TOKEN_EXPIRED)
            raise AuthenticationError("Invalid refresh token", AuthErrorCode.REFRESH_TOKEN_INVALID)

        claims = result.claims

        session = self.sessions.find_by_token(refresh_token)
        if session is None:
            logger.info("Refresh rejected: no session for presented token (user_id=%s)", claims.subject_id)
            raise AuthenticationError("Session not found or expired", AuthErrorCode.REFRESH_TOKEN_INVALID)

        if is_expired(session, self.codec.clock()):
            self.sessions.delete(refresh_token)
            logger.info("Refresh rejected: session expired (user_id=%s)", claims.subject_id)
            raise AuthenticationError("Session expired", AuthErrorCode.REFRESH_TOKEN_EXPIRED)

        # Rotate. Two separate store calls: a crash in between leaves this chain with no session.
        self.sessions.delete(refresh_token)

        tokens = self.codec.issue_pair(claims.subject)
        self.sessions.create(
            owner_id=claims.subject_id,
            refresh_token=tokens.refresh_token,
            user_agent=user_agent,
            ip_address=ip_address,
            expires_at=self.codec.refresh_expires_at(),
        )

        logger.info("Refresh completed user_id=%s", claims.subject_id)
        return tokens

    def logout(self, refresh_token: str) -> None:
        self.sessions.delete(refresh_token)
        logger.info("Logout completed")

    def logout_all(self, user_id: int) -> int:
        count = self.sessions.delete_all_by_owner(user_id)
        logger.info("Logout-all completed user_id=%s sessions_removed=%s", user_id, count)
        return count

    def get_current_user(self, user_id: int) -> User:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def update_profile(
        self,
        user_id: int,
        *,
        name: str | None = None,
        email: str | None = None,
    ) -> User:
        """
        Update name and/or email. Existing sessions stay valid: a profile change
        is not a credential change.
        """
        logger.info("Profile update started user_id=%s", user_id)
        user = self.get_current_user(user_id)

        if email is not None:
            existing = self.users.get_by_email(email)
            if existing is not None and existing.id != user.id:
                logger.info("Profile update rejected: email in use (user_id=%s)", user_id)
                raise ConflictError("Email is already in use by another account", code=EMAIL_TAKEN)

        user = self.users.update(user, name=name, email=email)
        logger.info("Profile update completed user_id=%s", user_id)
        return user
