"""
Workforce console web process.
Login/logout, live session status (countdown), guarded dashboard and a
backend profile call that refreshes on 401. The session monitor ticks in the
background for the lifetime of the app.
"""
import html
import json
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, Form, HTTPException, status
from fastapi.responses import HTMLResponse, RedirectResponse

from console_web.config import HOST, LOGIN_REDIRECT, PORT, PROFILE_PATH
from session_core.exceptions import LoginError
from session_core.observers import RouteGuard, SessionTimer
from session_core.session import SessionManager

logger = logging.getLogger(__name__)

manager = SessionManager()
timer = SessionTimer(manager.store, manager.bus)
guard = RouteGuard(manager.store, login_path=LOGIN_REDIRECT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the session monitor's ticker; tear the session wiring down on shutdown."""
    manager.monitor.start()
    yield
    await manager.aclose()


app = FastAPI(title="Workforce Console", version="0.1.0", lifespan=lifespan)


def get_manager() -> SessionManager:
    return manager


def get_timer() -> SessionTimer:
    return timer


def get_guard() -> RouteGuard:
    return guard


def require_session(g: RouteGuard = Depends(get_guard)) -> None:
    """Dependency: redirect to the login surface when there is no valid session."""
    target = g.redirect_target()
    if target is not None:
        raise HTTPException(status_code=status.HTTP_302_FOUND, headers={"Location": target})


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
{body}
</body>
</html>""",
        status_code=status_code,
    )


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "console_web"}


@app.get("/", response_class=HTMLResponse)
def home(t: SessionTimer = Depends(get_timer)):
    """Login form, or the session timer and links when signed in."""
    view = t.snapshot()
    if view.visible:
        return _page(
            "Workforce Console",
            f"""  <h1>Workforce Console</h1>
  <p title="{html.escape(view.tooltip)}">Session Time: {html.escape(view.display)}</p>
  <p><a href="/dashboard">Dashboard</a> | <a href="/profile">Profile</a></p>
  <form method="post" action="/logout"><button type="submit">Log out</button></form>""",
        )
    return _page(
        "Workforce Console",
        """  <h1>Workforce Console</h1>
  <form method="post" action="/login">
    <label>Email <input type="email" name="email"></label>
    <label>Password <input type="password" name="password"></label>
    <button type="submit">Log in</button>
  </form>""",
    )


@app.post("/login")
async def login(
    email: str = Form(...),
    password: str = Form(...),
    m: SessionManager = Depends(get_manager),
):
    """Exchange credentials with the backend; on success go to the dashboard."""
    try:
        await m.login(email, password)
    except LoginError as e:
        logger.info("Login failed: %s", e)
        return _page(
            "Login failed",
            f"""  <h1>Login failed</h1>
  <p>{html.escape(str(e))}</p>
  <p><a href="/">Try again</a></p>""",
            status_code=401,
        )
    return RedirectResponse(url="/dashboard", status_code=302)


@app.post("/logout")
async def logout(m: SessionManager = Depends(get_manager)):
    await m.logout()
    return RedirectResponse(url=LOGIN_REDIRECT, status_code=302)


@app.get("/session")
def session_status(
    m: SessionManager = Depends(get_manager),
    t: SessionTimer = Depends(get_timer),
):
    """Session status for the header badge / countdown poller (read-only)."""
    view = t.snapshot()
    return {
        "state": m.monitor.state.value,
        "authenticated": view.visible and not view.expired,
        "remaining_seconds": view.remaining_seconds,
        "display": view.display,
        "expired": view.expired,
        "refresh_in_flight": m.monitor.in_flight,
        "user_id": m.store.get_user_id(),
        "last_event": t.last_event.name if t.last_event else None,
    }


@app.get("/dashboard", response_class=HTMLResponse, dependencies=[Depends(require_session)])
def dashboard(t: SessionTimer = Depends(get_timer), m: SessionManager = Depends(get_manager)):
    """Protected view."""
    view = t.snapshot()
    claims = m.store.decode_claims() or {}
    who = claims.get("email") or m.store.get_user_id() or "user"
    return _page(
        "Dashboard",
        f"""  <h1>Dashboard</h1>
  <p>Signed in as {html.escape(str(who))}</p>
  <p>Session Time: {html.escape(view.display)}</p>
  <p><a href="/profile">Profile</a> | <a href="/">Home</a></p>""",
    )


@app.get("/profile", response_class=HTMLResponse, dependencies=[Depends(require_session)])
async def profile(m: SessionManager = Depends(get_manager)):
    """Call the backend profile endpoint with the stored token (refresh + retry once on 401)."""
    try:
        r = await m.request("GET", PROFILE_PATH)
    except httpx.HTTPError as e:
        return _page(
            "Profile",
            f"""  <h1>Profile</h1>
  <p>Request failed: {html.escape(str(e))}</p>
  <p><a href="/">Home</a></p>""",
            status_code=502,
        )
    try:
        if r.headers.get("content-type", "").startswith("application/json"):
            body_str = html.escape(json.dumps(r.json(), indent=2))
        else:
            body_str = html.escape(r.text[:500] if r.text else "(no body)")
    except ValueError:
        body_str = html.escape(r.text[:500] if r.text else "(no body)")
    return _page(
        "Profile",
        f"""  <h1>Profile</h1>
  <p>Status: {r.status_code}</p>
  <pre>{body_str}</pre>
  <p><a href="/profile">Reload</a> | <a href="/">Home</a></p>""",
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "console_web.main:app",
        host=HOST,
        port=PORT,
        reload=True,
    )
