# taskcollab/auth/tokens.py
"""
Credential codec: signed, expiring access/refresh tokens.

Responsibilities:
- Issue tokens with a class-specific secret and TTL
- Verify tokens and classify failures as EXPIRED or INVALID
- Parse TTL duration strings ("15m", "7d") so Session expiry can be computed
  independently of the token's own ``exp`` claim
"""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Union

from jose import ExpiredSignatureError, JWTError, jwt

from taskcollab.core.config import Settings

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}


def parse_duration(value: str) -> timedelta:
    """Parse ``<magnitude><unit>`` (units s/m/h/d) into a timedelta."""
    match = _DURATION_RE.match((value or "").strip())
    if not match:
        raise ValueError(f"Invalid duration: {value!r} (expected e.g. '15m', '7d')")
    return timedelta(seconds=int(match.group(1)) * _UNIT_SECONDS[match.group(2)])


def duration_ms(value: str) -> int:
    return int(parse_duration(value).total_seconds() * 1000)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class TokenClass(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class RejectReason(str, Enum):
    EXPIRED = "EXPIRED"
    INVALID = "INVALID"


@dataclass(frozen=True)
class SubjectClaims:
    """What a token says about its holder."""

    subject_id: int
    email: str


@dataclass(frozen=True)
class TokenClaims:
    subject_id: int
    email: str
    token_class: TokenClass
    issued_at: datetime
    expires_at: datetime
    token_id: str

    @property
    def subject(self) -> SubjectClaims:
        return SubjectClaims(subject_id=self.subject_id, email=self.email)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class TokenValid:
    claims: TokenClaims
    valid: bool = True


@dataclass(frozen=True)
class TokenRejected:
    reason: RejectReason
    valid: bool = False


VerifyResult = Union[TokenValid, TokenRejected]


class TokenCodec:
    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        access_ttl: str = "15m",
        refresh_ttl: str = "7d",
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise RuntimeError("Both access and refresh token secrets must be set.")
        self._secrets = {
            TokenClass.ACCESS: access_secret,
            TokenClass.REFRESH: refresh_secret,
        }
        self._ttls = {
            TokenClass.ACCESS: parse_duration(access_ttl),
            TokenClass.REFRESH: parse_duration(refresh_ttl),
        }
        self.algorithm = algorithm
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(
            access_secret=settings.JWT_ACCESS_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET,
            access_ttl=settings.JWT_ACCESS_EXPIRY,
            refresh_ttl=settings.JWT_REFRESH_EXPIRY,
            algorithm=settings.JWT_ALGORITHM,
        )

    def ttl(self, token_class: TokenClass) -> timedelta:
        return self._ttls[token_class]

    def ttl_seconds(self, token_class: TokenClass) -> int:
        return int(self._ttls[token_class].total_seconds())

    def refresh_expires_at(self) -> datetime:
        """Authoritative Session expiry for a refresh token issued now."""
        return self.clock() + self._ttls[TokenClass.REFRESH]

    # -------------------------
    # Issue
    # -------------------------
    def issue(self, subject: SubjectClaims, token_class: TokenClass) -> str:
        now = self.clock()
        exp = now + self._ttls[token_class]
        payload = {
            "sub": str(subject.subject_id),
            "email": subject.email,
            "purpose": token_class.value,
            # Unique id: two tokens minted in the same second must still differ.
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        }
        return jwt.encode(payload, self._secrets[token_class], algorithm=self.algorithm)

    def issue_pair(self, subject: SubjectClaims) -> TokenPair:
        return TokenPair(
            access_token=self.issue(subject, TokenClass.ACCESS),
            refresh_token=self.issue(subject, TokenClass.REFRESH),
        )

    # -------------------------
    # Verify
    # -------------------------
    def verify(self, token: str, token_class: TokenClass) -> VerifyResult:
        try:
            payload = jwt.decode(token, self._secrets[token_class], algorithms=[self.algorithm])
        except ExpiredSignatureError:
            return TokenRejected(reason=RejectReason.EXPIRED)
        except JWTError:
            return TokenRejected(reason=RejectReason.INVALID)

        claims = self._claims_from_payload(payload, token_class)
        if claims is None:
            return TokenRejected(reason=RejectReason.INVALID)
        return TokenValid(claims=claims)

    @staticmethod
    def _claims_from_payload(payload: dict[str, Any], token_class: TokenClass) -> TokenClaims | None:
        if payload.get("purpose") != token_class.value:
            return None
        try:
            subject_id = int(payload["sub"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError):
            return None
        email = payload.get("email")
        if not isinstance(email, str) or not email:
            return None
        return TokenClaims(
            subject_id=subject_id,
            email=email,
            token_class=token_class,
            issued_at=issued_at,
            expires_at=expires_at,
            token_id=str(payload.get("jti") or ""),
        )
