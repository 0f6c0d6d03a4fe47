"""
Client-side refresh coordination against a mocked server.

The mock server answers protected requests with 401 ACCESS_TOKEN_EXPIRED until
the client presents the cookie set by a successful refresh.
"""
from __future__ import annotations

import asyncio

import httpx
import pytest

from taskcollab.client.api import ApiClient
from taskcollab.client.errors import ApiClientError, ErrorKind
from taskcollab.client.refresh import RefreshCoordinator, SessionHooks

BASE_URL = "http://testserver"


class Recorder:
    """Collects SessionHooks callbacks."""

    def __init__(self, current_path: str = "/tasks") -> None:
        self.path = current_path
        self.redirects: list[str] = []
        self.clears = 0
        self.notified: list[ApiClientError] = []

    def hooks(self) -> SessionHooks:
        return SessionHooks(
            clear_state=self._clear,
            redirect=self.redirects.append,
            current_path=lambda: self.path,
            notify_error=self.notified.append,
            entry_path="/",
        )

    def _clear(self) -> None:
        self.clears += 1


def _auth_error(code: str, status_code: int = 401) -> httpx.Response:
    return httpx.Response(status_code, json={"error": "UNAUTHORIZED", "message": code.lower(), "code": code})


def _make_client(handler, recorder: Recorder, **kwargs) -> ApiClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    http.cookies.set("access_token", "old")
    http.cookies.set("refresh_token", "r1")
    return ApiClient(http=http, hooks=recorder.hooks(), **kwargs)


def _has_fresh_access(request: httpx.Request) -> bool:
    return "access_token=new" in request.headers.get("cookie", "")


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


# ---------------------------------------------------------------------------
# Single flight
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_expiries_share_one_refresh():
    n = 5
    recorder = Recorder()
    calls = {"refresh": 0, "tasks": 0}
    api: ApiClient

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            calls["refresh"] += 1
            # Hold the refresh open until every other request is parked behind it.
            await _wait_until(lambda: api.coordinator.pending_count == n - 1)
            return httpx.Response(
                200,
                json={"message": "Tokens refreshed successfully"},
                headers={"set-cookie": "access_token=new; Path=/"},
            )
        if _has_fresh_access(request):
            calls["tasks"] += 1
            return httpx.Response(200, json={"ok": True})
        return _auth_error("ACCESS_TOKEN_EXPIRED")

    api = _make_client(handler, recorder)
    async with api:
        responses = await asyncio.gather(*(api.get(f"/tasks/{i}") for i in range(n)))

    assert [r.status_code for r in responses] == [200] * n
    assert calls["refresh"] == 1
    assert calls["tasks"] == n
    assert recorder.redirects == []
    assert api.coordinator.is_refreshing is False
    assert api.coordinator.pending_count == 0


@pytest.mark.asyncio
async def test_refresh_failure_rejects_every_waiter_and_redirects_once():
    n = 4
    recorder = Recorder()
    calls = {"refresh": 0}
    api: ApiClient

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            calls["refresh"] += 1
            await _wait_until(lambda: api.coordinator.pending_count == n - 1)
            return _auth_error("REFRESH_TOKEN_INVALID")
        return _auth_error("ACCESS_TOKEN_EXPIRED")

    api = _make_client(handler, recorder)
    async with api:
        results = await asyncio.gather(*(api.get(f"/tasks/{i}") for i in range(n)), return_exceptions=True)

    assert calls["refresh"] == 1
    assert all(isinstance(r, ApiClientError) for r in results)
    assert all(r.kind == ErrorKind.SESSION_ENDED for r in results)
    assert all(r.code == "REFRESH_TOKEN_INVALID" for r in results)
    assert recorder.redirects == ["/"]
    assert len(api.http.cookies) == 0
    assert recorder.notified == []


@pytest.mark.asyncio
async def test_later_expiry_starts_a_new_refresh():
    recorder = Recorder()
    calls = {"refresh": 0}
    state = {"access": "old"}

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            calls["refresh"] += 1
            state["access"] = f"gen{calls['refresh']}"
            return httpx.Response(200, json={}, headers={"set-cookie": f"access_token={state['access']}; Path=/"})
        if f"access_token={state['access']}" in request.headers.get("cookie", "") and state["access"] != "old":
            return httpx.Response(200, json={"ok": True})
        return _auth_error("ACCESS_TOKEN_EXPIRED")

    api = _make_client(handler, recorder)
    async with api:
        assert (await api.get("/tasks")).status_code == 200
        # Server-side expiry of the rotated token.
        state["access"] = "gen-expired"
        assert (await api.get("/tasks")).status_code == 200

    assert calls["refresh"] == 2


# ---------------------------------------------------------------------------
# Terminal outcomes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "code",
    ["REFRESH_TOKEN_MISSING", "REFRESH_TOKEN_EXPIRED", "REFRESH_TOKEN_INVALID", "REFRESH_TOKEN_REVOKED", "USER_NOT_FOUND"],
)
async def test_terminal_codes_end_session_without_refresh(code):
    recorder = Recorder()
    calls = {"refresh": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            calls["refresh"] += 1
        return _auth_error(code)

    api = _make_client(handler, recorder)
    async with api:
        with pytest.raises(ApiClientError) as exc_info:
            await api.get("/tasks")

    assert exc_info.value.kind == ErrorKind.SESSION_ENDED
    assert exc_info.value.code == code
    assert calls["refresh"] == 0
    assert recorder.redirects == ["/"]
    assert recorder.clears == 1
    assert len(api.http.cookies) == 0


@pytest.mark.asyncio
async def test_no_redirect_when_already_at_entry_point():
    recorder = Recorder(current_path="/")

    async def handler(request: httpx.Request) -> httpx.Response:
        return _auth_error("REFRESH_TOKEN_EXPIRED")

    api = _make_client(handler, recorder)
    async with api:
        with pytest.raises(ApiClientError):
            await api.get("/tasks")

    assert recorder.redirects == []
    assert recorder.clears == 1


@pytest.mark.asyncio
async def test_retried_request_is_not_refreshed_again():
    recorder = Recorder()
    calls = {"refresh": 0, "tasks": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            calls["refresh"] += 1
            return httpx.Response(200, json={}, headers={"set-cookie": "access_token=new; Path=/"})
        calls["tasks"] += 1
        # Server keeps rejecting even the fresh token.
        return _auth_error("ACCESS_TOKEN_INVALID")

    api = _make_client(handler, recorder)
    async with api:
        with pytest.raises(ApiClientError) as exc_info:
            await api.get("/tasks")

    assert exc_info.value.kind == ErrorKind.SESSION_ENDED
    assert calls == {"refresh": 1, "tasks": 2}
    assert recorder.redirects == ["/"]


@pytest.mark.asyncio
async def test_access_code_on_refresh_endpoint_is_terminal():
    recorder = Recorder()
    calls = {"refresh": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        calls["refresh"] += 1
        return _auth_error("ACCESS_TOKEN_EXPIRED")

    api = _make_client(handler, recorder)
    async with api:
        with pytest.raises(ApiClientError) as exc_info:
            await api.post("/auth/refresh")

    assert exc_info.value.kind == ErrorKind.SESSION_ENDED
    assert calls["refresh"] == 1
    assert recorder.redirects == ["/"]


@pytest.mark.asyncio
async def test_refresh_timeout_ends_session():
    recorder = Recorder()

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            await asyncio.sleep(5)
            return httpx.Response(200, json={})
        return _auth_error("ACCESS_TOKEN_EXPIRED")

    api = _make_client(handler, recorder, refresh_timeout=0.05)
    async with api:
        with pytest.raises(ApiClientError) as exc_info:
            await api.get("/tasks")

    assert exc_info.value.kind == ErrorKind.SESSION_ENDED
    assert recorder.redirects == ["/"]
    assert api.coordinator.is_refreshing is False


# ---------------------------------------------------------------------------
# Non-auth failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_server_error_is_notified_and_raised():
    recorder = Recorder()

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "INTERNAL_ERROR", "message": "An unexpected error occurred"})

    api = _make_client(handler, recorder)
    async with api:
        with pytest.raises(ApiClientError) as exc_info:
            await api.get("/tasks")

    assert exc_info.value.kind == ErrorKind.HTTP
    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "An unexpected error occurred"
    assert recorder.notified == [exc_info.value]
    assert recorder.redirects == []
    assert len(api.http.cookies) == 2


@pytest.mark.asyncio
async def test_unclassified_401_is_raised_without_refresh():
    recorder = Recorder()
    calls = {"refresh": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            calls["refresh"] += 1
        return _auth_error("INVALID_CREDENTIALS")

    api = _make_client(handler, recorder)
    async with api:
        with pytest.raises(ApiClientError) as exc_info:
            await api.post("/auth/login", json={"email": "a@example.com", "password": "x"})

    assert exc_info.value.kind == ErrorKind.HTTP
    assert exc_info.value.code == "INVALID_CREDENTIALS"
    assert calls["refresh"] == 0
    assert recorder.notified == []
    assert recorder.redirects == []


@pytest.mark.asyncio
async def test_transport_error_is_notified():
    recorder = Recorder()

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    api = _make_client(handler, recorder)
    async with api:
        with pytest.raises(ApiClientError) as exc_info:
            await api.get("/tasks")

    assert exc_info.value.kind == ErrorKind.TRANSPORT
    assert recorder.notified == [exc_info.value]


# ---------------------------------------------------------------------------
# Coordinator in isolation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_coordinator_resets_after_success():
    calls = []

    async def refresh():
        calls.append(1)

    coordinator = RefreshCoordinator(refresh)
    await coordinator.await_refresh()
    await coordinator.await_refresh()

    assert len(calls) == 2
    assert coordinator.is_refreshing is False
    assert coordinator.pending_count == 0


@pytest.mark.asyncio
async def test_coordinator_end_session_clears_credentials():
    cleared = []
    recorder = Recorder()
    coordinator = RefreshCoordinator(lambda: None, hooks=recorder.hooks(), on_session_end=lambda: cleared.append(1))

    coordinator.end_session()

    assert cleared == [1]
    assert recorder.clears == 1
    assert recorder.redirects == ["/"]


@pytest.mark.asyncio
async def test_cancelled_leader_releases_waiters_and_resets():
    state = {"slow": True, "calls": 0}

    async def refresh():
        state["calls"] += 1
        if state["slow"]:
            await asyncio.sleep(5)

    coordinator = RefreshCoordinator(refresh, refresh_timeout=10)

    leader = asyncio.create_task(coordinator.await_refresh())
    await _wait_until(lambda: coordinator.is_refreshing)
    waiter = asyncio.create_task(coordinator.await_refresh())
    await _wait_until(lambda: coordinator.pending_count == 1)

    leader.cancel()
    with pytest.raises(asyncio.CancelledError):
        await leader

    with pytest.raises(ApiClientError) as exc_info:
        await asyncio.wait_for(waiter, 1)
    assert exc_info.value.kind == ErrorKind.SESSION_ENDED
    assert coordinator.is_refreshing is False
    assert coordinator.pending_count == 0

    # The next expiry starts a fresh refresh instead of queueing forever.
    state["slow"] = False
    await asyncio.wait_for(coordinator.await_refresh(), 1)
    assert state["calls"] == 2


@pytest.mark.asyncio
async def test_cancelled_leader_does_not_end_session():
    recorder = Recorder()

    async def refresh():
        await asyncio.sleep(5)

    coordinator = RefreshCoordinator(refresh, hooks=recorder.hooks())
    leader = asyncio.create_task(coordinator.await_refresh())
    await _wait_until(lambda: coordinator.is_refreshing)

    leader.cancel()
    with pytest.raises(asyncio.CancelledError):
        await leader

    assert recorder.redirects == []
    assert recorder.clears == 0


@pytest.mark.asyncio
async def test_simultaneous_terminal_failures_end_session_once():
    n = 4
    recorder = Recorder()
    arrived = {"count": 0}
    all_arrived = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        arrived["count"] += 1
        if arrived["count"] == n:
            all_arrived.set()
        await all_arrived.wait()
        return _auth_error("REFRESH_TOKEN_EXPIRED")

    api = _make_client(handler, recorder)
    async with api:
        results = await asyncio.gather(*(api.get(f"/tasks/{i}") for i in range(n)), return_exceptions=True)

        # A request issued after the session ended belongs to the next session.
        with pytest.raises(ApiClientError):
            await api.get("/tasks/late")

    assert all(isinstance(r, ApiClientError) and r.kind == ErrorKind.SESSION_ENDED for r in results)
    assert recorder.clears == 2
    assert recorder.redirects == ["/", "/"]


def test_end_session_ignores_stale_epoch():
    recorder = Recorder()
    coordinator = RefreshCoordinator(lambda: None, hooks=recorder.hooks())

    assert coordinator.end_session(0) is True
    assert coordinator.end_session(0) is False
    assert coordinator.end_session(coordinator.session_epoch) is True
    assert recorder.redirects == ["/", "/"]
