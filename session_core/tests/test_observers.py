"""Tests for the read-only session observers (countdown timer, route guard)."""
from session_core.events import LOGOUT, TOKEN_REFRESHED, SessionEvent
from session_core.observers import RouteGuard, SessionTimer, format_countdown
from session_core.tests.helpers import START, make_jwt
from session_core.token_store import TokenBundle


def test_format_countdown():
    assert format_countdown(None) == "--:--"
    assert format_countdown(0) == "00:00"
    assert format_countdown(59) == "00:59"
    assert format_countdown(3599) == "59:59"
    assert format_countdown(-5) == "00:00"


def test_timer_hidden_without_session(store, bus):
    view = SessionTimer(store, bus).snapshot()
    assert view.visible is False
    assert view.display == "--:--"


def test_timer_counts_down(store, bus, clock):
    timer = SessionTimer(store, bus)
    store.save(TokenBundle(access_token="at", expires_in=300))
    assert timer.snapshot().display == "05:00"
    clock.advance(61)
    view = timer.snapshot()
    assert view.display == "03:59"
    assert view.remaining_seconds == 239
    assert view.expired is False


def test_timer_shows_expired(store, bus, clock):
    timer = SessionTimer(store, bus)
    store.save(TokenBundle(access_token="at", expires_in=10))
    clock.advance(30)
    view = timer.snapshot()
    assert view.expired is True
    assert view.display == "00:00"


def test_timer_non_expiring_session_has_no_countdown(store, bus):
    store.save(TokenBundle(access_token="opaque"))
    view = SessionTimer(store, bus).snapshot()
    assert view.visible is True
    assert view.remaining_seconds is None
    assert view.display == "--:--"
    assert view.expired is False


def test_timer_tooltip_has_login_and_expiry(store, bus):
    store.save(TokenBundle(access_token=make_jwt(iat=int(START), exp=int(START) + 600)))
    tooltip = SessionTimer(store, bus).snapshot().tooltip
    assert tooltip.startswith("Login: ")
    assert "Expires: " in tooltip
    assert tooltip.endswith("Remaining: 10:00")


def test_refresh_event_resets_pending_flag(store, bus, clock):
    timer = SessionTimer(store, bus)
    store.save(TokenBundle(access_token="at", expires_in=150))
    timer.snapshot()
    assert timer.refresh_pending is True
    bus.publish(SessionEvent(name=TOKEN_REFRESHED, kind="external-refresh", source="other"))
    assert timer.refresh_pending is False
    assert timer.last_event.name == TOKEN_REFRESHED


def test_timer_close_unsubscribes(store, bus):
    timer = SessionTimer(store, bus)
    timer.close()
    bus.publish(SessionEvent(name=LOGOUT, kind="explicit-logout", source="test"))
    assert timer.last_event is None


def test_timer_never_writes_the_store(store, bus, backend, clock):
    store.save(TokenBundle(access_token="at", expires_in=5))
    before = {k: backend.get(k) for k in backend.keys()}
    clock.advance(100)
    SessionTimer(store, bus).snapshot()
    assert {k: backend.get(k) for k in backend.keys()} == before


def test_route_guard(store, clock):
    guard = RouteGuard(store, login_path="/login")
    assert guard.allows() is False
    assert guard.redirect_target() == "/login"
    store.save(TokenBundle(access_token="at", expires_in=60))
    assert guard.allows() is True
    assert guard.redirect_target() is None
    clock.advance(60)
    assert guard.allows() is False
