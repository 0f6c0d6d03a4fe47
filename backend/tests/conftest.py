import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time; make sure secrets + an in-memory DB are configured first.
os.environ.setdefault("JWT_ACCESS_SECRET", "test_access_secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test_refresh_secret")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from taskcollab.auth.tokens import SubjectClaims, TokenClass, TokenCodec
from taskcollab.core.base import Base
from taskcollab.core.database import get_db
from taskcollab.core.security import PasswordHasher
from taskcollab.main import create_app

# Import models so they register with SQLAlchemy metadata.
from taskcollab.models.user import User
from taskcollab.models.session import AuthSession  # noqa: F401
from taskcollab.services.auth import AuthService
from taskcollab.services.sessions import SessionStore
from taskcollab.services.users import UserStore

TEST_PASSWORD = "test_password_123"


class ShiftableClock:
    """Real UTC time plus an adjustable offset, for minting already-expired tokens."""

    def __init__(self) -> None:
        self.offset = timedelta(0)

    def __call__(self) -> datetime:
        return datetime.now(timezone.utc) + self.offset


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # Important: because we use an in-memory SQLite DB with StaticPool, the DB
    # persists across tests. Reset schema per test to avoid cross-test coupling.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def clock():
    return ShiftableClock()


@pytest.fixture()
def codec(clock):
    return TokenCodec(
        access_secret="test_access_secret",
        refresh_secret="test_refresh_secret",
        access_ttl="15m",
        refresh_ttl="7d",
        clock=clock,
    )


@pytest.fixture(scope="session")
def hasher():
    # Minimum bcrypt cost keeps the suite fast.
    return PasswordHasher(rounds=4)


@pytest.fixture()
def auth_service(db_session, codec, hasher):
    return AuthService(
        users=UserStore(db_session),
        sessions=SessionStore(db_session),
        codec=codec,
        hasher=hasher,
    )


@pytest.fixture()
def app(db_session, codec, hasher):
    fastapi_app = create_app(token_codec=codec, password_hasher=hasher)

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def users(db_session, hasher):
    """
    Two distinct users for ownership / isolation tests.
    """
    user_a = User(email="test@example.com", name="Test User", password_hash=hasher.hash(TEST_PASSWORD))
    user_b = User(email="other@example.com", name="Other User", password_hash=hasher.hash(TEST_PASSWORD))
    db_session.add_all([user_a, user_b])
    db_session.commit()
    db_session.refresh(user_a)
    db_session.refresh(user_b)
    return user_a, user_b


@pytest.fixture()
def access_token_for(codec):
    def _issue(user: User) -> str:
        return codec.issue(SubjectClaims(subject_id=user.id, email=user.email), TokenClass.ACCESS)

    return _issue


@pytest.fixture()
def expired_access_token_for(codec, clock):
    def _issue(user: User) -> str:
        clock.offset = timedelta(minutes=-20)
        try:
            return codec.issue(SubjectClaims(subject_id=user.id, email=user.email), TokenClass.ACCESS)
        finally:
            clock.offset = timedelta(0)

    return _issue
