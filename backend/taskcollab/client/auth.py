from __future__ import annotations

from typing import Any

from taskcollab.client.api import ApiClient


class AuthClient:
    """Typed wrappers for the /auth endpoints."""

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    async def register(self, *, email: str, name: str, password: str) -> dict[str, Any]:
        res = await self.api.post("/auth/register", json={"email": email, "name": name, "password": password})
        return res.json()

    async def login(self, *, email: str, password: str) -> dict[str, Any]:
        res = await self.api.post("/auth/login", json={"email": email, "password": password})
        return res.json()

    async def logout(self) -> None:
        await self.api.post("/auth/logout")
        self.api.http.cookies.clear()

    async def logout_all(self) -> None:
        await self.api.post("/auth/logout-all")
        self.api.http.cookies.clear()

    async def me(self) -> dict[str, Any]:
        res = await self.api.get("/auth/me")
        return res.json()

    async def update_profile(self, *, name: str | None = None, email: str | None = None) -> dict[str, Any]:
        body = {k: v for k, v in {"name": name, "email": email}.items() if v is not None}
        res = await self.api.patch("/auth/me", json=body)
        return res.json()
