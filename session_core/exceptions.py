"""
Error types for the session core. Callers outside the core only ever see
LoginError (credential exchange); the rest are handled inside the core.
"""


class SessionError(Exception):
    """Base class for session core errors."""


class StorageError(SessionError):
    """Durable token storage is unavailable or refused the operation."""


class RefreshError(SessionError):
    """A refresh round trip failed (network, rejected refresh credential, server error)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LoginError(SessionError):
    """Credential exchange failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
