"""
Session observers: read-only consumers of session state.
They read the token store and listen on the event bus; they never save or clear.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from session_core.events import LOGOUT, REFRESH_FAILED, TOKEN_EXPIRED, TOKEN_REFRESHED, EventBus, SessionEvent
from session_core.token_store import TokenStore

logger = logging.getLogger(__name__)


def format_countdown(remaining_seconds: int | None) -> str:
    """MM:SS; '--:--' when there is no countdown (no session or non-expiring token)."""
    if remaining_seconds is None:
        return "--:--"
    minutes, seconds = divmod(max(0, remaining_seconds), 60)
    return f"{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True)
class TimerView:
    visible: bool
    display: str
    remaining_seconds: int | None
    expired: bool
    login_time: datetime | None
    expiry_time: datetime | None

    @property
    def tooltip(self) -> str:
        login = self.login_time.strftime("%H:%M:%S") if self.login_time else "Unknown"
        expiry = self.expiry_time.strftime("%H:%M:%S") if self.expiry_time else "Unknown"
        return f"Login: {login}\nExpires: {expiry}\nRemaining: {self.display}"


class SessionTimer:
    """
    Visible countdown. `refresh_pending` is set while the display shows the
    near-expiry window and reset by any refresh/logout event, so the UI knows
    whether the current countdown has been acted on.
    """

    def __init__(self, store: TokenStore, bus: EventBus, *, warn_below: int = 180):
        self.store = store
        self.warn_below = warn_below
        self.refresh_pending = False
        self.last_event: SessionEvent | None = None
        self._unsubscribe = bus.subscribe(
            self._on_event, names=[TOKEN_REFRESHED, REFRESH_FAILED, TOKEN_EXPIRED, LOGOUT]
        )

    def _on_event(self, event: SessionEvent) -> None:
        self.refresh_pending = False
        self.last_event = event

    def snapshot(self) -> TimerView:
        if not self.store.has_access_token():
            return TimerView(False, "--:--", None, False, None, None)
        info = self.store.get_session_info()
        remaining = info["time_remaining"]
        expired = remaining is not None and remaining <= 0
        if remaining is not None and 0 < remaining <= self.warn_below:
            self.refresh_pending = True
        return TimerView(
            visible=True,
            display="00:00" if expired else format_countdown(remaining),
            remaining_seconds=remaining,
            expired=expired,
            login_time=info["login_time"],
            expiry_time=info["expiry_time"],
        )

    def close(self) -> None:
        self._unsubscribe()


class RouteGuard:
    """Gate for protected views: a token must exist and not be past its hard expiry."""

    def __init__(self, store: TokenStore, *, login_path: str = "/"):
        self.store = store
        self.login_path = login_path

    def allows(self) -> bool:
        return self.store.has_access_token() and not self.store.is_token_expired()

    def redirect_target(self) -> str | None:
        """None when the view may render, else where to send the user."""
        if self.allows():
            return None
        logger.debug("No valid session; redirecting to %s", self.login_path)
        return self.login_path
