# taskcollab/services/sessions.py
"""
Server-side session store.

One row per issued refresh token. A refresh token is only honoured while its
row exists, so deleting rows is how logout, rotation and "sign out everywhere"
revoke credentials. No in-process cache: every check goes to the database, so
a deletion is visible to all workers at once.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from taskcollab.models.session import AuthSession


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_comparable(value: datetime, now: datetime) -> datetime:
    """
    SQLite may round-trip tz-aware datetimes as naive. Return ``now`` in the
    same flavour as ``value`` so the two can be compared.
    """
    if getattr(value, "tzinfo", None) is None and now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def is_expired(session: AuthSession, now: datetime | None = None) -> bool:
    now = now or _now_utc()
    expires_at = session.expires_at
    if expires_at is None:
        return True
    return expires_at < as_comparable(expires_at, now)


class SessionStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def create(
        self,
        *,
        owner_id: int,
        refresh_token: str,
        expires_at: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthSession:
        session = AuthSession(
            user_id=owner_id,
            refresh_token=refresh_token,
            user_agent=user_agent,
            ip_address=ip_address,
            expires_at=expires_at,
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def find_by_token(self, refresh_token: str) -> Optional[AuthSession]:
        return (
            self.db.query(AuthSession)
            .filter(AuthSession.refresh_token == refresh_token)
            .first()
        )

    def delete(self, refresh_token: str) -> None:
        """Remove the session for ``refresh_token``; no-op if it does not exist."""
        self.db.query(AuthSession).filter(AuthSession.refresh_token == refresh_token).delete(
            synchronize_session=False
        )
        self.db.commit()

    def delete_all_by_owner(self, owner_id: int) -> int:
        count = (
            self.db.query(AuthSession)
            .filter(AuthSession.user_id == owner_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return int(count or 0)

    def delete_expired(self, now: datetime | None = None) -> int:
        cutoff = (now or _now_utc()).astimezone(timezone.utc)
        count = (
            self.db.query(AuthSession)
            .filter(AuthSession.expires_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return int(count or 0)
