"""
Session core configuration. Values come from env with console defaults.
No secrets in this file; tokens only ever live in the token store.
"""
import os
from dataclasses import dataclass
from enum import Enum

# Backend the console talks to (login, refresh, logout)
API_BASE_URL = os.environ.get("SESSION_API_BASE_URL", "http://127.0.0.1:8080/api/v1").rstrip("/")

REFRESH_PATH = os.environ.get("SESSION_REFRESH_PATH", "/auth/refresh")
LOGIN_PATH = os.environ.get("SESSION_LOGIN_PATH", "/login")
LOGOUT_PATH = os.environ.get("SESSION_LOGOUT_PATH", "/logout")

# Timeout for a single refresh / login round trip (seconds)
HTTP_TIMEOUT = float(os.environ.get("SESSION_HTTP_TIMEOUT", "10"))

# Durable token storage. Empty path means in-memory only (session-less after restart).
STORAGE_PATH = os.environ.get("SESSION_STORAGE_PATH", ".session_tokens.json").strip()
STORAGE_PREFIX = os.environ.get("SESSION_STORAGE_PREFIX", "workplace_tracker_")

# Proactive refresh window (seconds of remaining validity): (lower, upper]
WINDOW_UPPER_SECONDS = int(os.environ.get("SESSION_WINDOW_UPPER_SECONDS", "180"))
WINDOW_LOWER_SECONDS = int(os.environ.get("SESSION_WINDOW_LOWER_SECONDS", "120"))

# needs_refresh() treats the token as unusable this long before it actually expires
REFRESH_BUFFER_SECONDS = int(os.environ.get("SESSION_REFRESH_BUFFER_SECONDS", "180"))

# Background check cadence of the monitor's ticker
MONITOR_TICK_SECONDS = float(os.environ.get("SESSION_MONITOR_TICK_SECONDS", "60"))

# What to do after a failed refresh: "wait-for-next-window" or "retry-with-backoff"
REFRESH_FAILURE_POLICY = os.environ.get("SESSION_REFRESH_FAILURE_POLICY", "wait-for-next-window")
RETRY_BACKOFF_BASE = float(os.environ.get("SESSION_RETRY_BACKOFF_BASE", "5"))
RETRY_BACKOFF_MAX = float(os.environ.get("SESSION_RETRY_BACKOFF_MAX", "60"))


class RefreshFailurePolicy(str, Enum):
    """How the monitor reacts after a refresh attempt fails."""

    # One attempt in the proactive stage, one more once remaining time drops below the lower bound
    WAIT_FOR_NEXT_WINDOW = "wait-for-next-window"
    # Retry on later ticks once an exponential backoff delay has elapsed
    RETRY_WITH_BACKOFF = "retry-with-backoff"


@dataclass(frozen=True)
class MonitorSettings:
    """Per-monitor tuning. Defaults mirror the module constants above."""

    window_upper: int = WINDOW_UPPER_SECONDS
    window_lower: int = WINDOW_LOWER_SECONDS
    tick_seconds: float = MONITOR_TICK_SECONDS
    failure_policy: RefreshFailurePolicy = RefreshFailurePolicy(REFRESH_FAILURE_POLICY)
    backoff_base: float = RETRY_BACKOFF_BASE
    backoff_max: float = RETRY_BACKOFF_MAX

    def __post_init__(self):
        if self.window_lower < 0 or self.window_upper <= self.window_lower:
            raise ValueError("window_upper must exceed window_lower (both non-negative)")
        if self.tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        # Accept the plain string form too (env / tests)
        object.__setattr__(self, "failure_policy", RefreshFailurePolicy(self.failure_policy))
