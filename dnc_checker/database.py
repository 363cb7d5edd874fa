"""Persistence for user accounts."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol, Sequence

from sqlalchemy import exc, text

from .errors import ConflictError, UpstreamError
from .models import User
from .pool import DATABASE_ERRORS, ConnectionPool

logger = logging.getLogger("dnc_checker.database")

_USER_COLUMNS = "id, username, email, password_hash, is_active, created_at"


class CredentialStore(Protocol):
    """Abstraction over user persistence.

    Implementations enforce username and email uniqueness themselves and
    report a violation of either as :class:`ConflictError`, without saying
    which field collided. Driver failures surface as :class:`UpstreamError`.
    """

    def initialize(self) -> None:
        """Create the schema if it does not exist yet."""

        ...

    def find_by_username(self, username: str) -> Optional[User]:
        """Return the user with exactly this (case-sensitive) username."""

        ...

    def find_active_by_email(self, email: str) -> Optional[User]:
        """Return the active user registered with ``email``."""

        ...

    def insert(self, username: str, email: str, password_hash: str) -> int:
        """Persist a new user and return its id."""

        ...


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLCredentialStore:
    """Credential store backed by the shared connection pool."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def initialize(self) -> None:
        try:
            self._pool.initialize()
        except DATABASE_ERRORS as err:
            raise UpstreamError(detail=f"Failed to initialise the database schema: {err}") from err

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def find_by_username(self, username: str) -> Optional[User]:
        return self._fetch_user(
            f"SELECT {_USER_COLUMNS} FROM users WHERE username = :username",
            {"username": username},
        )

    def find_active_by_email(self, email: str) -> Optional[User]:
        return self._fetch_user(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = :email AND is_active = :active",
            {"email": email.strip().lower(), "active": True},
        )

    def list_users(self) -> list[User]:
        try:
            with self._pool.connection() as conn:
                rows = conn.execute(text(f"SELECT {_USER_COLUMNS} FROM users ORDER BY id")).all()
        except DATABASE_ERRORS as err:
            raise UpstreamError(detail=f"Failed to list users: {err}") from err
        return [self._row_to_user(row) for row in rows]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def insert(self, username: str, email: str, password_hash: str) -> int:
        normalized_email = email.strip().lower()
        try:
            with self._pool.connection() as conn:
                conn.execute(
                    text(
                        "INSERT INTO users (username, email, password_hash) "
                        "VALUES (:username, :email, :password_hash)"
                    ),
                    {"username": username, "email": normalized_email, "password_hash": password_hash},
                )
                user_id = conn.execute(
                    text("SELECT id FROM users WHERE username = :username"),
                    {"username": username},
                ).scalar()
        except exc.IntegrityError as err:
            raise ConflictError(detail=f"Duplicate username or email: {err}") from err
        except DATABASE_ERRORS as err:
            raise UpstreamError(detail=f"Failed to insert user: {err}") from err

        if user_id is None:
            raise UpstreamError(detail="User row missing after insert")
        return int(user_id)

    def set_active(self, user_id: int, is_active: bool) -> bool:
        try:
            with self._pool.connection() as conn:
                result = conn.execute(
                    text("UPDATE users SET is_active = :active WHERE id = :user_id"),
                    {"active": bool(is_active), "user_id": int(user_id)},
                )
                updated = result.rowcount > 0
        except DATABASE_ERRORS as err:
            raise UpstreamError(detail=f"Failed to update user {user_id}: {err}") from err
        return updated

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _fetch_user(self, query: str, params: Mapping[str, Any]) -> Optional[User]:
        try:
            with self._pool.connection() as conn:
                row = conn.execute(text(query), dict(params)).first()
        except DATABASE_ERRORS as err:
            raise UpstreamError(detail=f"User lookup failed: {err}") from err
        if row is None:
            return None
        return self._row_to_user(row)

    def _row_to_user(self, row: Sequence[Any]) -> User:
        user_id, username, email, password_hash, is_active, created_at = row
        return User(
            id=int(user_id),
            username=str(username),
            email=str(email),
            password_hash=str(password_hash),
            is_active=bool(is_active),
            created_at=_parse_timestamp(created_at),
        )


__all__ = ["CredentialStore", "SQLCredentialStore"]
