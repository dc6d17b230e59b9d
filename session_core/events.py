"""
Process-wide publish/subscribe channel for session outcomes.
Synchronous fan-out; no persistence, no replay for late subscribers.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)

# Named signals
TOKEN_REFRESHED = "auth:token-refreshed"
TOKEN_EXPIRED = "auth:token-expired"
REFRESH_FAILED = "auth:refresh-failed"
LOGOUT = "auth:logout"
LOGIN_SUCCESS = "auth:login-success"

# Outcome kinds carried on the event
KIND_PROACTIVE_REFRESH = "proactive-refresh-success"
KIND_REACTIVE_REFRESH = "reactive-refresh-success"
KIND_EXTERNAL_REFRESH = "external-refresh"
KIND_REFRESH_FAILURE = "refresh-failure"
KIND_HARD_EXPIRY = "hard-expiry"
KIND_EXPLICIT_LOGOUT = "explicit-logout"
KIND_LOGIN = "login-success"


@dataclass(frozen=True)
class SessionEvent:
    name: str
    kind: str
    source: str
    timestamp: float = field(default_factory=time.time)
    detail: dict[str, Any] = field(default_factory=dict)


Handler = Callable[[SessionEvent], None]


class EventBus:
    def __init__(self):
        self._subscribers: list[tuple[Handler, frozenset[str] | None]] = []

    def subscribe(self, handler: Handler, names: Iterable[str] | None = None) -> Callable[[], None]:
        """
        Register handler for every event, or only for the given signal names.
        Returns an unsubscribe callable (idempotent).
        """
        entry = (handler, frozenset(names) if names is not None else None)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(entry)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, event: SessionEvent) -> None:
        """Deliver to subscribers registered right now. A failing handler does not stop the others."""
        logger.debug("Publishing %s (%s) from %s", event.name, event.kind, event.source)
        for handler, names in list(self._subscribers):
            if names is not None and event.name not in names:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Session event handler failed for %s", event.name)

    def __len__(self) -> int:
        return len(self._subscribers)
