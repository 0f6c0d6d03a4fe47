"""Async API client with cookie auth and single-flight token refresh."""

from taskcollab.client.api import ApiClient, PendingRequest
from taskcollab.client.auth import AuthClient
from taskcollab.client.errors import ApiClientError, ErrorKind
from taskcollab.client.refresh import RefreshCoordinator, SessionHooks

__all__ = [
    "ApiClient",
    "ApiClientError",
    "AuthClient",
    "ErrorKind",
    "PendingRequest",
    "RefreshCoordinator",
    "SessionHooks",
]
