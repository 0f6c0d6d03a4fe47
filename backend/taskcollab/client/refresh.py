# taskcollab/client/refresh.py
"""
Single-flight token refresh for API clients.

When many requests fail at once because the access token expired, exactly one
of them (the "leader") calls the refresh endpoint; the rest park on a future
and re-issue their own request once the refresh resolves. If the refresh
fails, every parked request is rejected and the session is ended once.

State (``is_refreshing`` + pending futures) is guarded by an ``asyncio.Lock``;
electing the leader is a single check-then-set under it.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from taskcollab.client.errors import ApiClientError, ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_TIMEOUT = 10.0


@dataclass
class SessionHooks:
    """
    Callbacks into the embedding application.

    clear_state: drop any cached user data.
    redirect: navigate to the unauthenticated entry point.
    current_path: where the application currently is (to avoid redirect loops).
    notify_error: surface a non-auth failure to the user.
    """

    clear_state: Callable[[], None] | None = None
    redirect: Callable[[str], None] | None = None
    current_path: Callable[[], str] | None = None
    notify_error: Callable[[ApiClientError], None] | None = None
    entry_path: str = "/"


class RefreshCoordinator:
    def __init__(
        self,
        refresh: Callable[[], Awaitable[None]],
        *,
        hooks: SessionHooks | None = None,
        on_session_end: Callable[[], None] | None = None,
        refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT,
    ) -> None:
        self._refresh = refresh
        self.hooks = hooks or SessionHooks()
        self._on_session_end = on_session_end
        self.refresh_timeout = refresh_timeout

        self._lock = asyncio.Lock()
        self.is_refreshing = False
        self._pending: list[asyncio.Future[None]] = []
        # Bumped each time the session ends; requests remember the epoch they started in.
        self.session_epoch = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def end_session(self, epoch: int | None = None) -> bool:
        """
        Clear local credentials/state and send the user to the entry point.

        ``epoch`` is the session epoch the failing request started in. Once a
        session has ended, failures from requests issued before that point are
        ignored, so one terminal event causes one clear and at most one
        redirect. Returns True if this call ended the session.
        """
        if epoch is not None and epoch != self.session_epoch:
            return False
        self.session_epoch += 1

        if self._on_session_end is not None:
            self._on_session_end()
        if self.hooks.clear_state is not None:
            self.hooks.clear_state()

        entry = self.hooks.entry_path
        current = self.hooks.current_path() if self.hooks.current_path is not None else None
        if current == entry:
            return True
        if self.hooks.redirect is not None:
            logger.info("Session ended; redirecting to %s", entry)
            self.hooks.redirect(entry)
        return True

    async def await_refresh(self, epoch: int | None = None) -> None:
        """
        Join the in-flight refresh or become the one that performs it.

        Returns once new credentials are in place; the caller re-issues its request.
        Raises ApiClientError(SESSION_ENDED) if the refresh failed.
        """
        async with self._lock:
            if self.is_refreshing:
                waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
                self._pending.append(waiter)
                leader = False
            else:
                self.is_refreshing = True
                leader = True

        if not leader:
            await waiter
            return

        try:
            await asyncio.wait_for(self._refresh(), timeout=self.refresh_timeout)
        except asyncio.TimeoutError as exc:
            failure = ApiClientError(ErrorKind.SESSION_ENDED, "Token refresh timed out")
            self._finish(failure)
            self.end_session(epoch)
            raise failure from exc
        except ApiClientError as exc:
            failure = ApiClientError(
                ErrorKind.SESSION_ENDED,
                exc.message,
                code=exc.code,
                status_code=exc.status_code,
                response=exc.response,
            )
            self._finish(failure)
            self.end_session(epoch)
            raise failure from exc
        except BaseException:
            # Leader cancelled (or crashed): release the queue, keep the session.
            self._finish(ApiClientError(ErrorKind.SESSION_ENDED, "Token refresh was cancelled"))
            raise

        self._finish(None)

    def _finish(self, failure: ApiClientError | None) -> None:
        # Synchronous: no await between reading and resetting the state, so the
        # lock holder in await_refresh can never observe a half-reset.
        self.is_refreshing = False
        waiters, self._pending = self._pending, []

        logger.debug("Refresh finished ok=%s waiters=%s", failure is None, len(waiters))
        for waiter in waiters:
            if waiter.done():
                # Caller went away; nothing to notify.
                continue
            if failure is None:
                waiter.set_result(None)
            else:
                waiter.set_exception(failure)
