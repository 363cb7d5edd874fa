"""Security helpers: password hashing and the session route guard."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from passlib.context import CryptContext

from .errors import UnauthorizedError
from .sessions import SessionClaims, SessionExpired, SessionInvalid, SessionIssuer

logger = logging.getLogger("dnc_checker.security")

DEFAULT_BCRYPT_ROUNDS = 12
SESSION_COOKIE_NAME = "dnc_session"


class MalformedDigestError(ValueError):
    """The stored digest is not a hash this context can verify."""


class PasswordHasher:
    """Salted bcrypt hashing with a fixed, configurable work factor."""

    def __init__(self, *, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
        self._rounds = rounds
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, digest: str) -> bool:
        """Return ``True`` if ``password`` matches ``digest``.

        A mismatch is ``False``; only an unusable digest raises
        :class:`MalformedDigestError`.
        """

        if not isinstance(digest, str) or not digest:
            raise MalformedDigestError("Stored password hash is empty")
        if "\x00" in password:
            # bcrypt refuses NUL bytes; no stored hash was made from such a password.
            return False
        try:
            return self._context.verify(password, digest)
        except (ValueError, TypeError) as exc:
            raise MalformedDigestError("Stored password hash could not be verified") from exc


def extract_session_token(request: Request) -> Optional[str]:
    """Return the session token from the cookie or an ``Authorization: Bearer`` header."""

    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def resolve_session(request: Request, issuer: SessionIssuer) -> Optional[SessionClaims]:
    """Verify the request's session token, returning ``None`` when it is unusable."""

    token = extract_session_token(request)
    if not token:
        return None
    try:
        return issuer.verify(token)
    except SessionExpired as exc:
        logger.info("Rejected expired session on %s: %s", request.url.path, exc)
    except SessionInvalid:
        logger.warning("Rejected session with invalid signature on %s", request.url.path)
    return None


class SessionAuth:
    """Dependency guarding protected JSON operations.

    Runs before the request body is read, so an unauthenticated call never
    reaches validation or the database.
    """

    def __init__(self, issuer: SessionIssuer) -> None:
        self._issuer = issuer

    async def __call__(self, request: Request) -> SessionClaims:
        claims = resolve_session(request, self._issuer)
        if claims is None:
            raise UnauthorizedError()
        request.state.user_id = claims.user_id
        return claims


__all__ = [
    "DEFAULT_BCRYPT_ROUNDS",
    "MalformedDigestError",
    "PasswordHasher",
    "SESSION_COOKIE_NAME",
    "SessionAuth",
    "extract_session_token",
    "resolve_session",
]
