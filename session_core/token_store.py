"""
Token store: the single owner of the current token bundle.
Persists access_token, refresh_token (optional), token_type and expiry metadata
through a pluggable key-value backend; answers expiry questions for the monitor
and the observers. Storage failures are logged and swallowed so the console
keeps working (session-less) when persistence is denied.
"""
import json
import logging
import math
import time
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable

import jwt

from session_core.config import REFRESH_BUFFER_SECONDS, STORAGE_PREFIX
from session_core.exceptions import StorageError
from session_core.storage import StorageBackend

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class TokenBundle:
    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    # Relative lifetime as supplied by the server; turned into expires_at on save
    expires_in: int | None = None
    expires_at: float | None = None
    issued_at: float | None = None
    scope: str = ""
    user_id: str | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "TokenBundle | None":
        """
        Build a bundle from a login/refresh response body.
        Accepts the console backend's camelCase fields and OAuth snake_case.
        Returns None when the body carries no access token.
        """
        access = data.get("accessToken") or data.get("token") or data.get("access_token")
        if not access or not isinstance(access, str):
            return None
        expires_in = data.get("expiresIn", data.get("expires_in"))
        try:
            expires_in = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            expires_in = None
        user_id = data.get("userId", data.get("user_id"))
        return cls(
            access_token=access,
            refresh_token=data.get("refreshToken") or data.get("refresh_token") or None,
            token_type=data.get("tokenType") or data.get("token_type") or "Bearer",
            expires_in=expires_in,
            scope=data.get("scope") or "",
            user_id=str(user_id) if user_id is not None else None,
        )

    def remaining_seconds(self, now: float) -> int | None:
        if self.expires_at is None:
            return None
        return max(0, math.floor(self.expires_at - now))


def decode_token_claims(token: str | None) -> dict[str, Any] | None:
    """Unverified JWT payload for display/debugging. None on anything unparseable."""
    if not token or not isinstance(token, str):
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.debug("Token claims not decodable: %s", e)
        return None
    return claims if isinstance(claims, dict) else None


def is_valid_token_format(token: str | None) -> bool:
    """header.payload.signature with three non-empty parts."""
    if not token or not isinstance(token, str):
        return False
    parts = token.split(".")
    return len(parts) == 3 and all(parts)


class TokenStore:
    """
    Well-known keys (any may be absent):
      <prefix>token_info     full bundle record (JSON); the unit written on save
      <prefix>token          bare access token mirror
      <prefix>refresh_token  bare refresh token mirror
    """

    def __init__(
        self,
        backend: StorageBackend,
        *,
        prefix: str = STORAGE_PREFIX,
        clock: Clock = time.time,
        refresh_buffer_seconds: int = REFRESH_BUFFER_SECONDS,
    ):
        self.backend = backend
        self.clock = clock
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self.token_key = f"{prefix}token"
        self.refresh_key = f"{prefix}refresh_token"
        self.info_key = f"{prefix}token_info"

    # -- writes (monitor and explicit logout only) --

    def save(self, bundle: TokenBundle) -> None:
        """Persist bundle, replacing any previous one. expires_in becomes expires_at = now + expires_in."""
        now = self.clock()
        expires_at = bundle.expires_at
        if bundle.expires_in is not None:
            expires_at = now + bundle.expires_in
        elif expires_at is None:
            # No lifetime from the server: fall back to the JWT exp claim, if any
            exp = (decode_token_claims(bundle.access_token) or {}).get("exp")
            if isinstance(exp, (int, float)):
                expires_at = float(exp)
        stored = replace(bundle, expires_in=None, expires_at=expires_at, issued_at=now)
        record = asdict(stored)
        record["saved_at"] = now
        try:
            self.backend.set(self.info_key, json.dumps(record))
            self.backend.set(self.token_key, stored.access_token)
            if stored.refresh_token:
                self.backend.set(self.refresh_key, stored.refresh_token)
            else:
                self.backend.delete(self.refresh_key)
        except StorageError as e:
            logger.warning("Failed to save tokens: %s", e)
            return
        logger.debug("Saved token bundle (expires_at=%s)", expires_at)

    def clear(self) -> None:
        for key in (self.token_key, self.refresh_key, self.info_key):
            try:
                self.backend.delete(key)
            except StorageError as e:
                logger.warning("Failed to clear %s: %s", key, e)

    # -- reads --

    def _get(self, key: str) -> str | None:
        try:
            return self.backend.get(key)
        except StorageError as e:
            logger.warning("Failed to read %s: %s", key, e)
            return None

    def load(self) -> TokenBundle | None:
        """Current bundle, or None. A bare token without metadata loads as a non-expiring bundle."""
        raw = self._get(self.info_key)
        if raw:
            try:
                record = json.loads(raw)
                if isinstance(record, dict) and record.get("access_token"):
                    return TokenBundle(
                        access_token=record["access_token"],
                        refresh_token=record.get("refresh_token") or self._get(self.refresh_key),
                        token_type=record.get("token_type") or "Bearer",
                        expires_at=record.get("expires_at"),
                        issued_at=record.get("issued_at"),
                        scope=record.get("scope") or "",
                        user_id=record.get("user_id"),
                    )
            except (ValueError, TypeError) as e:
                logger.warning("Ignoring unreadable token record: %s", e)
        access = self._get(self.token_key)
        if not access:
            return None
        return TokenBundle(access_token=access, refresh_token=self._get(self.refresh_key))

    def get_access_token(self) -> str | None:
        bundle = self.load()
        return bundle.access_token if bundle else None

    def get_refresh_token(self) -> str | None:
        bundle = self.load()
        return bundle.refresh_token if bundle else None

    def has_access_token(self) -> bool:
        return bool(self.get_access_token())

    def get_remaining_seconds(self) -> int | None:
        """Whole seconds of validity left; None means no bundle or no known expiry."""
        bundle = self.load()
        if bundle is None:
            return None
        return bundle.remaining_seconds(self.clock())

    def is_expired_or_near_expiry(self, buffer_seconds: float) -> bool:
        """
        True when now >= expires_at - buffer_seconds.
        A bundle without expiry is never expired.
        """
        bundle = self.load()
        if bundle is None or bundle.expires_at is None:
            return False
        return self.clock() >= bundle.expires_at - buffer_seconds

    def is_token_expired(self) -> bool:
        return self.is_expired_or_near_expiry(0)

    def needs_refresh(self) -> bool:
        return self.has_access_token() and self.is_expired_or_near_expiry(self.refresh_buffer_seconds)

    def get_authorization_header(self) -> str | None:
        bundle = self.load()
        if bundle is None:
            return None
        return f"{bundle.token_type or 'Bearer'} {bundle.access_token}"

    # -- display helpers (non-authoritative) --

    def decode_claims(self) -> dict[str, Any] | None:
        return decode_token_claims(self.get_access_token())

    def get_user_id(self) -> str | None:
        claims = self.decode_claims()
        if claims:
            for name in ("userId", "sub", "user_id"):
                if claims.get(name) is not None:
                    return str(claims[name])
        bundle = self.load()
        return bundle.user_id if bundle else None

    def get_session_info(self) -> dict[str, Any]:
        """login_time (iat or save time), expiry_time, time_remaining."""
        bundle = self.load()
        if bundle is None:
            return {"login_time": None, "expiry_time": None, "time_remaining": None}
        claims = decode_token_claims(bundle.access_token) or {}
        iat = claims.get("iat") if isinstance(claims.get("iat"), (int, float)) else bundle.issued_at
        return {
            "login_time": _to_datetime(iat),
            "expiry_time": _to_datetime(bundle.expires_at),
            "time_remaining": bundle.remaining_seconds(self.clock()),
        }


def _to_datetime(ts: float | None) -> datetime | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)
