"""
Session monitor: the token lifecycle state machine.

Ticks (its own background task, or explicit calls) compare remaining validity
with the proactive window and start at most one refresh at a time. On success
the new bundle is saved and auth:token-refreshed is published; on failure the
bundle is kept and auth:refresh-failed is published; at zero remaining with no
successful refresh the store is cleared and auth:token-expired is published.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from session_core.config import MonitorSettings, RefreshFailurePolicy
from session_core.events import (
    KIND_EXPLICIT_LOGOUT,
    KIND_HARD_EXPIRY,
    KIND_LOGIN,
    KIND_PROACTIVE_REFRESH,
    KIND_REACTIVE_REFRESH,
    KIND_REFRESH_FAILURE,
    LOGIN_SUCCESS,
    LOGOUT,
    REFRESH_FAILED,
    TOKEN_EXPIRED,
    TOKEN_REFRESHED,
    EventBus,
    SessionEvent,
)
from session_core.exceptions import RefreshError
from session_core.token_store import TokenBundle, TokenStore

logger = logging.getLogger(__name__)

STAGE_EARLY = "early"
STAGE_PROACTIVE = "proactive"
STAGE_LATE = "late"


class SessionState(str, Enum):
    NO_SESSION = "no-session"
    VALID = "valid"
    NEAR_EXPIRY = "near-expiry"
    REFRESH_IN_FLIGHT = "refresh-in-flight"
    EXPIRED = "expired"


class RefreshClient(Protocol):
    async def refresh(self) -> TokenBundle: ...


@dataclass
class _Failure:
    expires_at: float | None
    stage: str
    at: float
    count: int = 1


class SessionMonitor:
    """
    Single writer of the token store (together with logout()).
    The in-flight refresh is a shared task: a second trigger while it runs is a
    no-op for tick() and a wait-for-the-same-result for ensure_fresh().
    """

    def __init__(
        self,
        store: TokenStore,
        refresh_client: RefreshClient,
        bus: EventBus,
        settings: MonitorSettings | None = None,
        *,
        source: str | None = None,
    ):
        self.store = store
        self.refresh_client = refresh_client
        self.bus = bus
        self.settings = settings or MonitorSettings()
        self.source = source or f"session-monitor-{id(self):x}"
        self._pending: asyncio.Future | None = None
        # Bumped whenever a pending result must no longer be applied
        self._generation = 0
        self._failure: _Failure | None = None
        self._ticker: asyncio.Task | None = None
        self._closed = False
        self._unsubscribe = bus.subscribe(self._on_token_refreshed, names=[TOKEN_REFRESHED])

    # -- derived state --

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    @property
    def state(self) -> SessionState:
        bundle = self.store.load()
        if bundle is None:
            return SessionState.NO_SESSION
        if self._pending is not None:
            return SessionState.REFRESH_IN_FLIGHT
        remaining = bundle.remaining_seconds(self.store.clock())
        if remaining is None:
            return SessionState.VALID
        if remaining == 0:
            return SessionState.EXPIRED
        if remaining <= self.settings.window_upper:
            return SessionState.NEAR_EXPIRY
        return SessionState.VALID

    def _stage(self, remaining: int | None) -> str:
        # Early: outside the window (or no known expiry); failures there do not count against it
        if remaining is None or remaining > self.settings.window_upper:
            return STAGE_EARLY
        if remaining > self.settings.window_lower:
            return STAGE_PROACTIVE
        return STAGE_LATE

    def _may_attempt(self, bundle: TokenBundle, remaining: int) -> bool:
        f = self._failure
        if f is None or f.expires_at != bundle.expires_at:
            return True
        if self.settings.failure_policy is RefreshFailurePolicy.RETRY_WITH_BACKOFF:
            delay = min(self.settings.backoff_max, self.settings.backoff_base * 2 ** (f.count - 1))
            return self.store.clock() - f.at >= delay
        # Wait for the next window: a proactive-stage failure gets one more try once
        # remaining time has dropped to the lower bound; a late-stage failure gets none.
        return f.stage == STAGE_PROACTIVE and remaining <= self.settings.window_lower

    # -- triggers --

    async def tick(self) -> SessionState:
        """
        One observation. Returns the state observed; EXPIRED means this tick ended the session.
        """
        bundle = self.store.load()
        if bundle is None:
            return SessionState.NO_SESSION
        if self._closed:
            return self.state
        remaining = bundle.remaining_seconds(self.store.clock())
        if remaining is None:
            return SessionState.VALID
        if self._pending is not None:
            logger.debug("Refresh already in flight; tick is a no-op")
            return SessionState.REFRESH_IN_FLIGHT
        # remaining is floored, so this fires up to 1s before is_token_expired() would
        if remaining == 0:
            self._end_session(TOKEN_EXPIRED, KIND_HARD_EXPIRY)
            logger.info("Access token expired without a successful refresh; session ended")
            return SessionState.EXPIRED
        if remaining > self.settings.window_upper:
            return SessionState.VALID
        if not self._may_attempt(bundle, remaining):
            logger.debug("Refresh failed earlier in this window; waiting (remaining=%ss)", remaining)
            return SessionState.NEAR_EXPIRY
        logger.info("Access token near expiry (remaining=%ss); refreshing", remaining)
        await asyncio.shield(self._begin_refresh(KIND_PROACTIVE_REFRESH, bundle, remaining))
        return self.state

    async def ensure_fresh(self) -> bool:
        """
        On-demand refresh, e.g. after the backend answered 401. Concurrent callers
        share one attempt and all get its outcome. True when a new bundle was saved.
        """
        bundle = self.store.load()
        if bundle is None or self._closed:
            return False
        task = self._pending
        if task is None:
            remaining = bundle.remaining_seconds(self.store.clock())
            task = self._begin_refresh(KIND_REACTIVE_REFRESH, bundle, remaining)
        return await asyncio.shield(task)

    def _begin_refresh(self, kind: str, bundle: TokenBundle, remaining: int | None) -> asyncio.Future:
        # Flag is set here, synchronously, before the network call can suspend
        self._pending = asyncio.ensure_future(
            self._run_refresh(kind, self._generation, bundle, self._stage(remaining))
        )
        return self._pending

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    async def _run_refresh(self, kind: str, generation: int, started: TokenBundle, stage: str) -> bool:
        try:
            bundle = await self.refresh_client.refresh()
        except RefreshError as e:
            if self._is_stale(generation):
                return self._superseded(started)
            self._pending = None
            if stage != STAGE_EARLY:
                self._record_failure(started.expires_at, stage)
            logger.warning("Token refresh failed (%s stage): %s", stage, e)
            self.bus.publish(
                SessionEvent(
                    name=REFRESH_FAILED,
                    kind=KIND_REFRESH_FAILURE,
                    source=self.source,
                    detail={"error": str(e), "status_code": e.status_code, "stage": stage},
                )
            )
            return False
        except BaseException:
            if not self._is_stale(generation):
                self._pending = None
            raise
        if self._is_stale(generation):
            logger.debug("Discarding refresh result superseded while in flight")
            return self._superseded(started)
        self.store.save(bundle)
        self._pending = None
        self._failure = None
        logger.info("Access token refreshed (%s)", kind)
        self.bus.publish(
            SessionEvent(
                name=TOKEN_REFRESHED,
                kind=kind,
                source=self.source,
                detail={"remaining_seconds": self.store.get_remaining_seconds()},
            )
        )
        return True

    def _superseded(self, started: TokenBundle) -> bool:
        """After a discarded result: True when another path already stored a newer token."""
        if self._closed:
            return False
        current = self.store.get_access_token()
        return current is not None and current != started.access_token

    def _record_failure(self, expires_at: float | None, stage: str) -> None:
        now = self.store.clock()
        f = self._failure
        if f is not None and f.expires_at == expires_at:
            f.count += 1
            f.stage = stage
            f.at = now
        else:
            self._failure = _Failure(expires_at=expires_at, stage=stage, at=now)

    def _on_token_refreshed(self, event: SessionEvent) -> None:
        """Another refresh path succeeded: our pending call (if any) no longer owns the outcome."""
        if event.source == self.source:
            return
        self._generation += 1
        self._pending = None
        self._failure = None
        logger.debug("Token refreshed by %s; in-flight guard reset", event.source)

    # -- session start / end --

    def begin_session(self, bundle: TokenBundle) -> None:
        """Store a bundle from a fresh credential exchange and publish auth:login-success."""
        self._generation += 1
        self._pending = None
        self._failure = None
        self.store.save(bundle)
        self.bus.publish(
            SessionEvent(name=LOGIN_SUCCESS, kind=KIND_LOGIN, source=self.source, detail={"user_id": self.store.get_user_id()})
        )
        logger.info("Session started")

    def _end_session(self, name: str, kind: str) -> None:
        self._generation += 1
        self._pending = None
        self._failure = None
        self.store.clear()
        self.bus.publish(SessionEvent(name=name, kind=kind, source=self.source))

    def logout(self) -> None:
        """Explicit sign-out: clear the store and publish auth:logout."""
        self._end_session(LOGOUT, KIND_EXPLICIT_LOGOUT)
        logger.info("Session logged out")

    # -- scheduling --

    def start(self) -> None:
        """Start the background ticker on the running loop. No-op if already running."""
        if self._ticker is not None and not self._ticker.done():
            return
        self._ticker = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Cancel the ticker. A refresh already in flight still completes."""
        ticker, self._ticker = self._ticker, None
        if ticker is None:
            return
        ticker.cancel()
        try:
            await ticker
        except asyncio.CancelledError:
            pass

    async def aclose(self) -> None:
        """Tear down: stop ticking, unsubscribe, discard any pending refresh result."""
        await self.stop()
        self._closed = True
        self._pending = None
        self._unsubscribe()

    async def __aenter__(self) -> "SessionMonitor":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Session monitor tick failed")
            await asyncio.sleep(self.settings.tick_seconds)
