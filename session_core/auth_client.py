"""
Network side of the session: credential exchange, token refresh, server logout.
Each call is a single round trip; no retries or backoff here (that is the
monitor's policy). Failures surface as LoginError / RefreshError.
"""
import logging
from dataclasses import replace
from typing import Any

import httpx

from session_core.config import API_BASE_URL, HTTP_TIMEOUT, LOGIN_PATH, LOGOUT_PATH, REFRESH_PATH
from session_core.exceptions import LoginError, RefreshError
from session_core.token_store import TokenBundle, TokenStore

logger = logging.getLogger(__name__)


def _error_description(r: httpx.Response) -> str:
    """Best error text from a failed response (JSON message/error fields, else status)."""
    if r.headers.get("content-type", "").startswith("application/json"):
        try:
            body = r.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("message", "error_description", "error"):
                if body.get(key):
                    return str(body[key])
    return f"HTTP {r.status_code}"


def _parse_bundle(r: httpx.Response) -> tuple[TokenBundle | None, str]:
    """(bundle, problem). bundle is None when the body is not a usable token response."""
    try:
        data: Any = r.json()
    except ValueError:
        return None, "response is not JSON"
    if not isinstance(data, dict):
        return None, "unexpected response body"
    if data.get("status") == "FAILED":
        return None, str(data.get("message") or "request failed")
    bundle = TokenBundle.from_response(data)
    if bundle is None:
        return None, "no access token in response"
    return bundle, ""


class AuthClient:
    """
    Talks to the console backend. The httpx.AsyncClient is shared so the
    backend's HttpOnly refresh cookie (if it uses one) rides along with refresh().
    """

    def __init__(
        self,
        store: TokenStore,
        *,
        base_url: str = API_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.store = store
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    async def login(self, email: str, password: str) -> TokenBundle:
        """Exchange credentials for a token bundle. Does not touch the store."""
        try:
            r = await self.http.post(
                f"{self.base_url}{LOGIN_PATH}",
                json={"email": email, "password": password},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise LoginError(f"login request failed: {e}") from e
        if r.status_code != 200:
            raise LoginError(_error_description(r), status_code=r.status_code)
        bundle, problem = _parse_bundle(r)
        if bundle is None:
            raise LoginError(problem, status_code=r.status_code)
        return bundle

    async def refresh(self) -> TokenBundle:
        """
        Trade the current refresh credential for a new bundle. Does not touch the store.
        When the server does not rotate the refresh token, the current one is carried over.
        """
        current = self.store.get_refresh_token()
        payload = {"refreshToken": current} if current else {}
        try:
            r = await self.http.post(
                f"{self.base_url}{REFRESH_PATH}",
                json=payload,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise RefreshError(f"refresh request failed: {e}") from e
        if r.status_code != 200:
            raise RefreshError(_error_description(r), status_code=r.status_code)
        bundle, problem = _parse_bundle(r)
        if bundle is None:
            raise RefreshError(problem, status_code=r.status_code)
        if bundle.refresh_token is None and current:
            bundle = replace(bundle, refresh_token=current)
        return bundle

    async def logout(self) -> None:
        """Best-effort server logout (clears the refresh cookie server-side). Never raises."""
        headers = {"Accept": "application/json"}
        auth = self.store.get_authorization_header()
        if auth:
            headers["Authorization"] = auth
        try:
            r = await self.http.post(f"{self.base_url}{LOGOUT_PATH}", headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Server logout failed: %s", e)
            return
        if r.status_code >= 400:
            logger.warning("Server logout returned %s", r.status_code)
