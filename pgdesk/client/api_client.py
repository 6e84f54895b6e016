"""
Async API client with transparent access-token renewal.

A request that comes back 401 triggers one refresh exchange and is retried once
with the new access token. Concurrent 401s share a single in-flight exchange, so
the rotating refresh token is presented to the server only once. When the
server rejects the refresh token, the session is cleared and SessionExpiredError
is raised to every waiting caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import httpx

from pgdesk.client.session import AuthSession

logger = logging.getLogger(__name__)

# Refresh responses that mean the refresh token is dead rather than the server being unwell.
TERMINAL_REFRESH_STATUSES = frozenset({400, 401, 403})


class ApiError(Exception):
    """Non-2xx response from login, or a refresh that failed for a non-terminal reason."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class SessionExpiredError(Exception):
    """Refresh failed for good; the session has been cleared and the user must log in again."""

    def __init__(self, message: str = "Session expired. Please log in again.") -> None:
        self.message = message
        super().__init__(message)


def _message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return default


class ApiClient:
    """
    Thin wrapper over httpx.AsyncClient bound to an AuthSession.

    base_url should include the API prefix, e.g. "http://localhost:8000/api/v1".
    """

    def __init__(
        self,
        base_url: str,
        session: AuthSession | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
        on_session_expired: Callable[[], None] | None = None,
    ) -> None:
        self.session = session or AuthSession()
        self.on_session_expired = on_session_expired
        self.refresh_exchanges = 0
        self._renewal: asyncio.Future[None] | None = None
        self._http = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Log in and populate the session. Returns the user snapshot."""
        response = await self._http.post(
            "/auth/login",
            json={"email": email, "password": password},
        )
        if response.status_code != 200:
            raise ApiError(_message(response, "Login failed"), response.status_code)
        data = response.json()["data"]
        self.session.set(
            data["tokens"]["accessToken"],
            data["tokens"]["refreshToken"],
            data["user"],
        )
        logger.info("Logged in as %s", data["user"].get("email"))
        return data["user"]

    async def logout(self) -> None:
        """
        Tell the server to revoke the refresh token, then always clear local state.

        The refresh token authenticates the call, so a stale access token is fine.
        """
        access, refresh = self.session.access_token, self.session.refresh_token
        try:
            if access is not None or refresh is not None:
                await self._send(
                    "POST",
                    "/auth/logout",
                    access,
                    json={"refreshToken": refresh},
                )
        except httpx.HTTPError as e:
            logger.warning("Logout request failed, clearing session anyway: %s", e)
        finally:
            self.session.clear()

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send an authenticated request, renewing the session at most once on 401."""
        token = self.session.access_token
        response = await self._send(method, url, token, **kwargs)
        if response.status_code != 401 or token is None:
            return response
        await self._renew(token)
        return await self._send(method, url, self.session.access_token, **kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def _send(
        self,
        method: str,
        url: str,
        token: str | None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        return await self._http.request(method, url, headers=headers, **kwargs)

    async def _renew(self, stale_token: str) -> None:
        """
        Make sure the session holds an access token newer than stale_token.

        Joins the in-flight exchange if there is one; if another caller already
        finished one, returns without contacting the server.
        """
        current = self.session.access_token
        if current is not None and current != stale_token:
            return
        if current is None and self._renewal is None:
            # Cleared by a terminal refresh while this request was in flight.
            raise SessionExpiredError()
        if self._renewal is None:
            self._renewal = asyncio.ensure_future(self._exchange_refresh_token())
        renewal = self._renewal
        try:
            await asyncio.shield(renewal)
        finally:
            if renewal.done() and self._renewal is renewal:
                self._renewal = None

    async def _exchange_refresh_token(self) -> None:
        refresh_token = self.session.refresh_token
        if not refresh_token:
            self._expire()
            raise SessionExpiredError("No refresh token available.")

        self.refresh_exchanges += 1
        response = await self._http.post("/auth/refresh", json={"refreshToken": refresh_token})
        if response.status_code in TERMINAL_REFRESH_STATUSES:
            message = _message(response, "Session expired. Please log in again.")
            logger.info("Refresh rejected (%s): %s", response.status_code, message)
            self._expire()
            raise SessionExpiredError(message)
        if response.status_code != 200:
            raise ApiError(_message(response, "Token refresh failed"), response.status_code)

        data = response.json()["data"]
        self.session.set(
            data["tokens"]["accessToken"],
            data["tokens"]["refreshToken"],
            data.get("user"),
        )
        logger.debug("Session renewed")

    def _expire(self) -> None:
        self.session.clear()
        if self.on_session_expired is not None:
            self.on_session_expired()
