from __future__ import annotations

from datetime import datetime, timedelta, timezone

from taskcollab.models.session import AuthSession
from taskcollab.services.sessions import SessionStore, is_expired


def _future(days: int = 7) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def test_create_and_find_by_token(db_session, users):
    user_a, _ = users
    store = SessionStore(db_session)

    created = store.create(
        owner_id=user_a.id,
        refresh_token="tok-1",
        expires_at=_future(),
        user_agent="pytest-agent",
        ip_address="10.0.0.1",
    )

    found = store.find_by_token("tok-1")
    assert found is not None
    assert found.id == created.id
    assert found.user_id == user_a.id
    assert found.user_agent == "pytest-agent"
    assert found.ip_address == "10.0.0.1"
    assert found.created_at is not None


def test_find_unknown_token_returns_none(db_session):
    assert SessionStore(db_session).find_by_token("missing") is None


def test_delete_is_idempotent(db_session, users):
    user_a, _ = users
    store = SessionStore(db_session)
    store.create(owner_id=user_a.id, refresh_token="tok-1", expires_at=_future())

    store.delete("tok-1")
    store.delete("tok-1")
    store.delete("never-existed")

    assert store.find_by_token("tok-1") is None


def test_delete_all_by_owner_only_touches_that_owner(db_session, users):
    user_a, user_b = users
    store = SessionStore(db_session)
    store.create(owner_id=user_a.id, refresh_token="a-1", expires_at=_future())
    store.create(owner_id=user_a.id, refresh_token="a-2", expires_at=_future())
    store.create(owner_id=user_b.id, refresh_token="b-1", expires_at=_future())

    removed = store.delete_all_by_owner(user_a.id)

    assert removed == 2
    assert store.find_by_token("a-1") is None
    assert store.find_by_token("a-2") is None
    assert store.find_by_token("b-1") is not None
    assert store.delete_all_by_owner(user_a.id) == 0


def test_delete_expired_keeps_live_sessions(db_session, users):
    user_a, _ = users
    store = SessionStore(db_session)
    store.create(owner_id=user_a.id, refresh_token="old", expires_at=_future(days=-1))
    store.create(owner_id=user_a.id, refresh_token="live", expires_at=_future())

    assert store.delete_expired() == 1
    assert store.find_by_token("old") is None
    assert store.find_by_token("live") is not None


def test_is_expired_handles_naive_timestamps():
    now = datetime.now(timezone.utc)
    past = AuthSession(expires_at=(now - timedelta(minutes=1)).replace(tzinfo=None))
    future = AuthSession(expires_at=(now + timedelta(minutes=1)).replace(tzinfo=None))

    assert is_expired(past, now) is True
    assert is_expired(future, now) is False


def test_sessions_removed_with_owner(db_session, users):
    user_a, _ = users
    store = SessionStore(db_session)
    store.create(owner_id=user_a.id, refresh_token="tok-1", expires_at=_future())

    db_session.delete(user_a)
    db_session.commit()

    assert db_session.query(AuthSession).count() == 0
