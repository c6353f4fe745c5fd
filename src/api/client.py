# HTTP access to the storefront backend, shared by every endpoint helper
from __future__ import annotations

from typing import Any, Optional

import httpx

from services.session import SessionBridge
from utils.logger import get_logger

_logger = get_logger(__name__)

REFRESH_PATH = "/user/refresh-token"


class ApiError(Exception):
    """A request that did not produce a usable response.

    status is the HTTP status when the server answered, None otherwise.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class NetworkError(ApiError):
    def __init__(self, message: str = "Network error. Check your connection."):
        super().__init__(message, None)


def _body(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"data": data}


def _error_message(response: httpx.Response) -> str:
    message = _body(response).get("message")
    if isinstance(message, str) and message:
        return message
    return f"Server error ({response.status_code})"


class ApiClient:
    """
    Thin wrapper over httpx.AsyncClient.

    - adds the bearer token of the current session
    - on a 401, refreshes the access token once and retries the request once
    - turns HTTP and transport failures into ApiError
    """

    def __init__(
        self,
        base_url: str,
        session: SessionBridge,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session = session
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def _send(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict] = None,
        auth: bool = True,
    ) -> httpx.Response:
        headers = {}
        if auth and self.session.access_token:
            headers["Authorization"] = f"Bearer {self.session.access_token}"
        try:
            return await self._http.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TransportError as e:
            _logger.warning(f"{method} {path} failed: {e!r}")
            raise NetworkError() from e

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict] = None,
        auth: bool = True,
    ) -> dict:
        response = await self._send(method, path, json, params, auth)

        if response.status_code == 401 and auth and self.session.refresh_token:
            if await self.refresh_access_token():
                response = await self._send(method, path, json, params, auth)

        if response.status_code >= 400:
            raise ApiError(_error_message(response), response.status_code)
        return _body(response)

    async def refresh_access_token(self) -> bool:
        """
        Exchange the refresh token for a new access token.
        A rejected refresh ends the session; a network failure leaves it alone.
        """
        refresh_token = self.session.refresh_token
        if not refresh_token:
            await self.session.logout()
            return False

        response = await self._send(
            "POST", REFRESH_PATH, json={"refreshToken": refresh_token}, auth=False
        )
        data = _body(response)
        if (
            response.status_code < 400
            and data.get("success", True)
            and data.get("accessToken")
        ):
            await self.session.update_tokens(
                data["accessToken"], data.get("refreshToken")
            )
            _logger.info("Access token refreshed.")
            return True

        _logger.warning(f"Token refresh rejected ({response.status_code}), logging out.")
        await self.session.logout()
        return False

    async def aclose(self) -> None:
        await self._http.aclose()

    # shorthands

    async def get(self, path: str, params: Optional[dict] = None) -> dict:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None, auth: bool = True) -> dict:
        return await self.request("POST", path, json=json, auth=auth)

    async def put(self, path: str, json: Any = None) -> dict:
        return await self.request("PUT", path, json=json)

    async def delete(self, path: str) -> dict:
        return await self.request("DELETE", path)
