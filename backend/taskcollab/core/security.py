# taskcollab/core/security.py
from __future__ import annotations

from passlib.context import CryptContext

DEFAULT_BCRYPT_ROUNDS = 12


# -------------------------
# Password hashing
# -------------------------
class PasswordHasher:
    """
    Adaptive, salted password hashing (bcrypt).

    Built once at startup and shared by every request; the cost factor comes
    from PASSWORD_HASH_ROUNDS so tests can run with a cheap one.
    """

    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
        self.rounds = rounds
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        return self._context.verify(password, password_hash)
