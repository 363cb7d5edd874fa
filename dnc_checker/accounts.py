"""Account workflows: login, registration and password reset requests."""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from .database import CredentialStore
from .errors import AuthenticationFailure, UpstreamError
from .models import Identity
from .security import MalformedDigestError, PasswordHasher
from .validation import normalize_email, validate_registration

logger = logging.getLogger("dnc_checker.accounts")

RESET_CONFIRMATION = (
    "If an account with that email exists, you will receive a password reset link shortly."
)


class Authenticator:
    """Verify a username/password pair against the credential store.

    Every failure raises the same :class:`AuthenticationFailure`; the
    specific reason only appears in the server-side audit log.
    """

    def __init__(self, store: CredentialStore, hasher: PasswordHasher) -> None:
        self._store = store
        self._hasher = hasher

    def authenticate(self, username: Optional[str], password: Optional[str]) -> Identity:
        cleaned = (username or "").strip()
        if not cleaned or not password:
            logger.warning("Login attempt with missing credentials")
            raise AuthenticationFailure("missing credentials")

        try:
            user = self._store.find_by_username(cleaned)
        except UpstreamError:
            logger.exception("Database error during authentication for %s", cleaned)
            raise AuthenticationFailure("store unavailable")

        if user is None:
            logger.warning("Login failed: user not found (%s)", cleaned)
            raise AuthenticationFailure("user not found")

        if not user.is_active:
            logger.warning("Login failed: account inactive (%s)", cleaned)
            raise AuthenticationFailure("account inactive")

        try:
            matches = self._hasher.verify(password, user.password_hash)
        except MalformedDigestError:
            logger.error("Login failed: stored password hash is malformed (%s)", cleaned)
            raise AuthenticationFailure("malformed hash")

        if not matches:
            logger.warning("Login failed: wrong password (%s)", cleaned)
            raise AuthenticationFailure("wrong password")

        logger.info("Login success (%s)", user.username)
        return user.identity()


class RegistrationService:
    def __init__(self, store: CredentialStore, hasher: PasswordHasher) -> None:
        self._store = store
        self._hasher = hasher

    def register(self, username: Optional[str], email: Optional[str], password: Optional[str]) -> int:
        """Create an account and return its id.

        Raises ``ValidationError`` for bad input and ``ConflictError`` when
        the username or email is taken.
        """

        registration = validate_registration(username, email, password)
        password_hash = self._hasher.hash(registration.password)
        user_id = self._store.insert(registration.username, registration.email, password_hash)
        logger.info("User created: %s (id %s)", registration.username, user_id)
        return user_id


class PasswordResetMailer(Protocol):
    """Delivers password reset instructions to an account holder."""

    def send_password_reset(self, identity: Identity) -> None:
        ...


class LoggingPasswordResetMailer:
    """Records reset requests in the log instead of sending email."""

    def send_password_reset(self, identity: Identity) -> None:
        logger.info(
            "Password reset requested for account %s; email delivery is not configured",
            identity.username,
        )


class PasswordResetService:
    """Start a password reset without revealing whether the account exists.

    Store and mailer failures are logged and swallowed so every valid
    request produces the same confirmation.
    """

    def __init__(self, store: CredentialStore, mailer: PasswordResetMailer) -> None:
        self._store = store
        self._mailer = mailer

    def request_reset(self, email: Optional[str]) -> str:
        normalized = normalize_email(email)

        try:
            user = self._store.find_active_by_email(normalized)
        except UpstreamError:
            logger.exception("Database error during password reset lookup")
            return RESET_CONFIRMATION

        if user is None:
            logger.info("Password reset requested for unknown email (suppressed)")
            return RESET_CONFIRMATION

        try:
            self._mailer.send_password_reset(user.identity())
        except Exception:
            logger.exception("Password reset delivery failed for account %s", user.username)

        return RESET_CONFIRMATION


__all__ = [
    "Authenticator",
    "LoggingPasswordResetMailer",
    "PasswordResetMailer",
    "PasswordResetService",
    "RESET_CONFIRMATION",
    "RegistrationService",
]
