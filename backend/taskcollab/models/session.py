# taskcollab/models/session.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from taskcollab.core.base import Base


class AuthSession(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Keyed by the exact refresh token string; deleting the row revokes the token.
    refresh_token = Column(String(1024), unique=True, index=True, nullable=False)

    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)

    # Absolute expiration, independent of the token's embedded exp
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="sessions")
