"""
Console web configuration. Backend and session tuning live in session_core.config.
"""
import os

# Where the route guard sends users without a valid session
LOGIN_REDIRECT = os.environ.get("CONSOLE_LOGIN_REDIRECT", "/")

# Backend path for the signed-in user's profile (proxied by /profile)
PROFILE_PATH = os.environ.get("CONSOLE_PROFILE_PATH", "/users/me")

HOST = os.environ.get("CONSOLE_HOST", "127.0.0.1")
PORT = int(os.environ.get("CONSOLE_PORT", "3000"))
