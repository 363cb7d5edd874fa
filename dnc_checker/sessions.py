"""Stateless, signed session tokens."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet, InvalidToken

SESSION_TTL = timedelta(hours=8)


class SessionError(Exception):
    """Base class for tokens that must be treated as unauthenticated."""


class SessionInvalid(SessionError):
    """Signature check failed or the payload is not a session."""


class SessionExpired(SessionError):
    """The token verified but its expiry has passed."""


@dataclass(frozen=True)
class SessionClaims:
    user_id: int
    issued_at: datetime
    expires_at: datetime


def _build_cipher(secret: str) -> Fernet:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


class SessionIssuer:
    """Mint and verify session tokens signed with the process-wide secret.

    Nothing is stored server-side: a token is valid iff it decrypts under the
    configured secret and its embedded expiry is still in the future.
    Rotating the secret invalidates every outstanding token.
    """

    def __init__(self, secret: str, *, ttl: timedelta = SESSION_TTL) -> None:
        if not secret:
            raise ValueError("A session secret must be provided")
        self._cipher = _build_cipher(secret)
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def issue(self, user_id: int) -> tuple[str, SessionClaims]:
        issued_at = self._now()
        claims = SessionClaims(
            user_id=int(user_id),
            issued_at=issued_at,
            expires_at=issued_at + self._ttl,
        )
        payload = {
            "sub": claims.user_id,
            "iat": int(claims.issued_at.timestamp()),
            # Rounded up so the token never expires before the full TTL has passed.
            "exp": int(math.ceil(claims.expires_at.timestamp())),
        }
        token = self._cipher.encrypt(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return token.decode("ascii"), claims

    def verify(self, token: str) -> SessionClaims:
        try:
            encoded = token.encode("ascii")
            # Reject non-canonical base64 so that no altered character decodes to the same bytes.
            if base64.urlsafe_b64encode(base64.urlsafe_b64decode(encoded)) != encoded:
                raise SessionInvalid("Session token encoding is not canonical")
            raw = self._cipher.decrypt(encoded)
        except (InvalidToken, UnicodeEncodeError, AttributeError, binascii.Error) as exc:
            raise SessionInvalid("Session token signature is invalid") from exc

        try:
            payload = json.loads(raw.decode("utf-8"))
            user_id = int(payload["sub"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (ValueError, KeyError, TypeError) as exc:
            raise SessionInvalid("Session token payload is malformed") from exc

        if self._now() >= expires_at:
            raise SessionExpired(f"Session for user {user_id} expired at {expires_at.isoformat()}")

        return SessionClaims(user_id=user_id, issued_at=issued_at, expires_at=expires_at)

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


__all__ = [
    "SESSION_TTL",
    "SessionClaims",
    "SessionError",
    "SessionExpired",
    "SessionInvalid",
    "SessionIssuer",
]
