# taskcollab/services/users.py
"""
User persistence helpers.

The auth core only needs a handful of operations on users: create, look up by
id or email, and apply a profile update. Emails are normalized (trimmed,
lower-cased) on the way in so lookups are case-insensitive.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskcollab.core.errors import DUPLICATE_EMAIL, EMAIL_TAKEN, ConflictError
from taskcollab.models.user import User

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class UserStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == normalize_email(email)).first()

    def create(self, *, email: str, name: str, password_hash: str) -> User:
        user = User(
            email=normalize_email(email),
            name=name.strip(),
            password_hash=password_hash,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if self._is_unique_violation(exc):
                raise ConflictError("User with this email already exists", code=DUPLICATE_EMAIL) from exc
            raise
        self.db.refresh(user)
        logger.info("Created user id=%s", user.id)
        return user

    def update(self, user: User, *, name: str | None = None, email: str | None = None) -> User:
        if name is not None:
            user.name = name.strip()
        if email is not None:
            user.email = normalize_email(email)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if self._is_unique_violation(exc):
                raise ConflictError("Email is already in use by another account", code=EMAIL_TAKEN) from exc
            raise
        self.db.refresh(user)
        return user

    def _is_unique_violation(self, exc: IntegrityError) -> bool:
        # Covers the lookup-then-write race: another request took the email first.
        orig = getattr(exc, "orig", None)
        pgcode = getattr(orig, "pgcode", None)
        if pgcode == "23505":
            return True
        message = str(orig or exc)
        return "ix_users_email" in message or "UNIQUE constraint failed: users.email" in message
