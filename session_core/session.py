"""
Wiring for one console process: token store, auth client, event bus and
monitor built from config, plus the two user-driven paths (login, logout) and
authorized backend requests that refresh and retry once on 401.
"""
import logging

import httpx

from session_core.auth_client import AuthClient
from session_core.config import API_BASE_URL, HTTP_TIMEOUT, STORAGE_PATH, MonitorSettings
from session_core.events import EventBus
from session_core.monitor import SessionMonitor
from session_core.storage import StorageBackend, default_storage
from session_core.token_store import TokenBundle, TokenStore

logger = logging.getLogger(__name__)


class SessionManager:
    def __init__(
        self,
        *,
        backend: StorageBackend | None = None,
        store: TokenStore | None = None,
        bus: EventBus | None = None,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = API_BASE_URL,
        settings: MonitorSettings | None = None,
    ):
        if store is None:
            store = TokenStore(backend if backend is not None else default_storage(STORAGE_PATH))
        self.store = store
        self.bus = bus if bus is not None else EventBus()
        self.http = http_client if http_client is not None else httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self._owns_http = http_client is None
        self.base_url = base_url.rstrip("/")
        self.auth = AuthClient(self.store, base_url=self.base_url, http_client=self.http)
        self.monitor = SessionMonitor(self.store, self.auth, self.bus, settings)

    async def login(self, email: str, password: str) -> TokenBundle:
        """Exchange credentials and start the session. Raises LoginError."""
        bundle = await self.auth.login(email, password)
        self.monitor.begin_session(bundle)
        return bundle

    async def logout(self) -> None:
        """Tell the backend (best-effort), then clear the local session."""
        if self.store.has_access_token():
            await self.auth.logout()
        self.monitor.logout()

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """
        Backend request with the current Authorization header.
        On 401: refresh through the monitor (shared with any refresh in flight) and retry once.
        """
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        extra = kwargs.pop("headers", None)
        r = await self.http.request(method, url, headers=self._headers(extra), **kwargs)
        if r.status_code != 401 or not self.store.has_access_token():
            return r
        logger.info("Backend answered 401 for %s %s; refreshing", method, path)
        if not await self.monitor.ensure_fresh():
            return r
        headers = self._headers(extra)
        headers["X-Token-Refreshed"] = "true"
        return await self.http.request(method, url, headers=headers, **kwargs)

    def _headers(self, extra: dict | None) -> dict:
        headers = dict(extra or {})
        auth = self.store.get_authorization_header()
        if auth:
            headers["Authorization"] = auth
        user_id = self.store.get_user_id()
        if user_id:
            headers["X-User-ID"] = user_id
        return headers

    async def aclose(self) -> None:
        await self.monitor.aclose()
        if self._owns_http:
            await self.http.aclose()
