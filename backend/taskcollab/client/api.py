# taskcollab/client/api.py
"""
Cookie-authenticated API client with transparent token refresh.

Failure handling for a request R that came back with error code C:

- C is terminal (refresh token missing/expired/invalid/revoked, user gone):
  end the session (clear cookies + state, redirect) and raise. No retry.
- C is an access-token failure:
    - R is the refresh endpoint itself, or R was already retried: terminal.
    - otherwise join/lead the single in-flight refresh, then re-issue R.
- anything else: notify and raise as-is.

Requests carry the session epoch they were issued in, so several requests
failing terminally together end the session (and redirect) only once.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from taskcollab.client.errors import (
    REFRESHABLE_CODES,
    TERMINAL_CODES,
    ApiClientError,
    ErrorKind,
    error_code,
)
from taskcollab.client.refresh import DEFAULT_REFRESH_TIMEOUT, RefreshCoordinator, SessionHooks

logger = logging.getLogger(__name__)

REFRESH_PATH = "/auth/refresh"


@dataclass
class PendingRequest:
    method: str
    url: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    retried: bool = False
    # Session epoch at the time the request was issued.
    epoch: int = 0


class ApiClient:
    def __init__(
        self,
        base_url: str = "",
        *,
        http: httpx.AsyncClient | None = None,
        hooks: SessionHooks | None = None,
        refresh_path: str = REFRESH_PATH,
        refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT,
    ) -> None:
        self.http = http or httpx.AsyncClient(base_url=base_url)
        self.refresh_path = refresh_path
        self.hooks = hooks or SessionHooks()
        self.coordinator = RefreshCoordinator(
            self._refresh_tokens,
            hooks=self.hooks,
            on_session_end=self.http.cookies.clear,
            refresh_timeout=refresh_timeout,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -----------------------------
    # Public verbs
    # -----------------------------
    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        pending = PendingRequest(
            method=method.upper(),
            url=url,
            kwargs=kwargs,
            epoch=self.coordinator.session_epoch,
        )
        return await self._execute(pending)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    # -----------------------------
    # Internals
    # -----------------------------
    def _is_refresh_endpoint(self, url: str) -> bool:
        return self.refresh_path in url

    def _notify(self, error: ApiClientError) -> None:
        if self.hooks.notify_error is not None:
            self.hooks.notify_error(error)

    async def _send(self, pending: PendingRequest) -> httpx.Response:
        try:
            return await self.http.request(pending.method, pending.url, **pending.kwargs)
        except httpx.RequestError as exc:
            error = ApiClientError(ErrorKind.TRANSPORT, str(exc) or "Network error")
            self._notify(error)
            raise error from exc

    async def _execute(self, pending: PendingRequest) -> httpx.Response:
        response = await self._send(pending)
        if response.is_success:
            return response
        return await self._handle_failure(pending, response)

    async def _handle_failure(self, pending: PendingRequest, response: httpx.Response) -> httpx.Response:
        code = error_code(response) if response.status_code == 401 else None

        if code in TERMINAL_CODES:
            self.coordinator.end_session(pending.epoch)
            raise ApiClientError.from_response(response, ErrorKind.SESSION_ENDED)

        if code in REFRESHABLE_CODES:
            if self._is_refresh_endpoint(pending.url) or pending.retried:
                # The refresh itself is unusable, or a fresh token did not help.
                self.coordinator.end_session(pending.epoch)
                raise ApiClientError.from_response(response, ErrorKind.SESSION_ENDED)

            pending.retried = True
            await self.coordinator.await_refresh(pending.epoch)
            return await self._execute(pending)

        error = ApiClientError.from_response(response)
        if response.status_code != 401:
            self._notify(error)
        raise error

    async def _refresh_tokens(self) -> None:
        """Call the refresh endpoint directly; the server rotates both cookies."""
        try:
            response = await self.http.post(self.refresh_path)
        except httpx.RequestError as exc:
            raise ApiClientError(ErrorKind.TRANSPORT, str(exc) or "Network error") from exc
        if not response.is_success:
            raise ApiClientError.from_response(response, ErrorKind.SESSION_ENDED)
        logger.debug("Access token refreshed")
