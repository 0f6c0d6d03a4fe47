# taskcollab/auth/identity.py
"""
Canonical authenticated identity model.

The request gate and the realtime channel gate both resolve a verified access
token to an ``Identity`` so downstream code can ask "who is this?" without
touching raw token claims.

The Identity object is INTERNAL ONLY and should not be returned to clients.
"""
from __future__ import annotations

from dataclasses import dataclass

from taskcollab.auth.tokens import TokenClaims


@dataclass(frozen=True)
class Identity:
    """
    Attributes:
        user_id: Internal user id taken from the token subject.
        email: Email embedded in the token at issuance (may be stale after a
               profile update; the user row is authoritative).
        is_authenticated: True once the gate has verified the token and found the user.
        token_id: ``jti`` of the access token, for audit logging.
    """

    user_id: int | None = None
    email: str | None = None
    is_authenticated: bool = False
    token_id: str | None = None

    @classmethod
    def unauthenticated(cls) -> Identity:
        return cls()

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> Identity:
        return cls(
            user_id=claims.subject_id,
            email=claims.email.strip().lower(),
            is_authenticated=True,
            token_id=claims.token_id or None,
        )
