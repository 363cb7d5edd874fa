"""Bounded database connection pool built on a SQLAlchemy engine.

The pool is constructed once at startup and handed to every component that
needs the database. SQLAlchemy's ``QueuePool`` bounds the number of open
connections and the time a caller waits for one. Pre-ping replaces
connections the server has dropped. Connections left idle longer than the
configured idle timeout are closed on their next checkout.
"""
from __future__ import annotations

import logging
import math
import time
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterator, List, Mapping, Tuple

from sqlalchemy import create_engine, event, exc, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.pool import QueuePool

from .config import DatabaseSettings

logger = logging.getLogger("dnc_checker.pool")

QueryResult = Tuple[List[str], List[Tuple[Any, ...]]]


class PoolClosed(Exception):
    """The pool has been shut down."""


# Everything a caller of the pool has to translate into an upstream failure.
DATABASE_ERRORS: Tuple[type, ...] = (PoolClosed, exc.SQLAlchemyError)

SQLITE_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
        is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
)

POSTGRES_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id SERIAL PRIMARY KEY,
        username VARCHAR(100) NOT NULL UNIQUE,
        email VARCHAR(255) NOT NULL UNIQUE,
        password_hash VARCHAR(255) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        is_active BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE OR REPLACE FUNCTION sp_dnc_lookup(phone_number VARCHAR(20), lookup_date DATE)
    RETURNS TABLE ("PhoneNumber" VARCHAR, "LookupDate" DATE, "Status" TEXT, "CheckedAt" TIMESTAMPTZ, "Notes" TEXT)
    LANGUAGE sql AS $$
        SELECT phone_number, lookup_date, 'STUB - Not Implemented'::TEXT, now(),
               'Replace this stored procedure with real DNC query logic.'::TEXT
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION sp_dnc_history(phone_number VARCHAR(20))
    RETURNS TABLE ("PhoneNumber" VARCHAR, "LookupDate" TIMESTAMPTZ, "Status" TEXT, "Notes" TEXT)
    LANGUAGE sql AS $$
        SELECT phone_number, now(), 'STUB - Not Implemented'::TEXT,
               'Replace this stored procedure with real DNC history query logic.'::TEXT
    $$
    """,
)

PROCEDURE_ARGUMENTS: Dict[str, Tuple[str, ...]] = {
    "sp_dnc_lookup": ("phone_number", "lookup_date"),
    "sp_dnc_history": ("phone_number",),
}

# SQLite has no stored procedures; these statements stand in for them and
# return the same placeholder rows until a real decision service is wired in.
SQLITE_PROCEDURES: Dict[str, str] = {
    "sp_dnc_lookup": """
        SELECT
            :phone_number AS PhoneNumber,
            :lookup_date AS LookupDate,
            'STUB - Not Implemented' AS Status,
            strftime('%Y-%m-%dT%H:%M:%fZ', 'now') AS CheckedAt,
            'Replace this stored procedure with real DNC query logic.' AS Notes
    """,
    "sp_dnc_history": """
        SELECT
            :phone_number AS PhoneNumber,
            strftime('%Y-%m-%dT%H:%M:%fZ', 'now') AS LookupDate,
            'STUB - Not Implemented' AS Status,
            'Replace this stored procedure with real DNC history query logic.' AS Notes
    """,
}


def database_url(settings: DatabaseSettings) -> URL:
    """Return the SQLAlchemy URL for the configured backend."""

    if settings.backend == "postgres":
        return URL.create(
            "postgresql+psycopg2",
            username=settings.user,
            password=settings.password,
            host=settings.host,
            port=settings.port,
            database=settings.name,
        )
    if settings.path is None:
        raise ValueError("SQLite backend requires a database path")
    return URL.create("sqlite", database=str(settings.path))


def _connect_args(settings: DatabaseSettings) -> Dict[str, Any]:
    if settings.backend == "postgres":
        # The request deadline is enforced server-side through statement_timeout.
        return {
            "connect_timeout": max(1, int(math.ceil(settings.connect_timeout))),
            "options": f"-c statement_timeout={int(settings.request_timeout * 1000)}",
        }
    return {"timeout": settings.connect_timeout, "check_same_thread": False}


def build_engine(settings: DatabaseSettings) -> Engine:
    """Create the pooled engine described by ``settings``."""

    if settings.backend == "sqlite" and settings.path is not None:
        settings.path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        database_url(settings),
        poolclass=QueuePool,
        pool_size=settings.max_connections,
        max_overflow=0,
        pool_timeout=settings.connect_timeout,
        pool_pre_ping=True,
        connect_args=_connect_args(settings),
    )


class ConnectionPool:
    """Hand out at most ``max_size`` connections at a time."""

    def __init__(
        self,
        engine: Engine,
        *,
        max_size: int = 10,
        idle_timeout: float = 30.0,
        request_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._max_size = max_size
        self._idle_timeout = idle_timeout
        self._request_timeout = request_timeout
        self._clock = clock
        self._closed = False
        self._install_listeners()

    @classmethod
    def from_settings(cls, settings: DatabaseSettings, **kwargs: Any) -> "ConnectionPool":
        return cls(
            build_engine(settings),
            max_size=settings.max_connections,
            idle_timeout=settings.idle_timeout,
            request_timeout=settings.request_timeout,
            **kwargs,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def backend(self) -> str:
        return "postgres" if self._engine.dialect.name == "postgresql" else self._engine.dialect.name

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def idle_count(self) -> int:
        return self._engine.pool.checkedin()

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Check out a connection for one unit of work.

        The work is committed on a clean exit and rolled back on error.
        """

        if self._closed:
            raise PoolClosed("Connection pool is closed")
        with self._engine.begin() as conn:
            yield conn

    def initialize(self) -> None:
        statements = POSTGRES_SCHEMA if self.backend == "postgres" else SQLITE_SCHEMA
        with self.connection() as conn:
            for statement in statements:
                conn.exec_driver_sql(statement)

    def call_procedure(self, conn: Connection, name: str, arguments: Mapping[str, Any]) -> QueryResult:
        """Run stored procedure ``name`` and return its column names and rows."""

        try:
            expected = PROCEDURE_ARGUMENTS[name]
        except KeyError as err:
            raise ValueError(f"Unknown procedure {name!r}") from err
        params = {key: arguments[key] for key in expected}

        if self.backend == "postgres":
            binds = ", ".join(f":{key}" for key in expected)
            statement = text(f"SELECT * FROM {name}({binds})")
        else:
            statement = text(SQLITE_PROCEDURES[name])
            params = {
                key: value.isoformat() if isinstance(value, (date, datetime)) else value
                for key, value in params.items()
            }

        result = conn.execute(statement, params)
        return list(result.keys()), [tuple(row) for row in result]

    def ping(self) -> bool:
        """Return ``True`` when a round trip to the database succeeds."""

        try:
            with self.connection() as conn:
                conn.execute(text("SELECT 1")).scalar_one()
        except DATABASE_ERRORS:
            logger.exception("Database health check failed")
            return False
        return True

    def close(self) -> None:
        self._closed = True
        self._engine.dispose()

    def _install_listeners(self) -> None:
        clock = self._clock

        @event.listens_for(self._engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            logger.debug("Opened new %s connection", self.backend)
            if self.backend != "sqlite":
                return

            def _abort_when_overdue() -> int:
                deadline = connection_record.info.get("deadline", math.inf)
                return 1 if clock() > deadline else 0

            # A non-zero return interrupts the running statement with OperationalError.
            dbapi_connection.set_progress_handler(_abort_when_overdue, 1000)

        @event.listens_for(self._engine, "checkout")
        def _on_checkout(dbapi_connection, connection_record, connection_proxy):
            idle_since = connection_record.info.pop("idle_since", None)
            if idle_since is not None and clock() - idle_since > self._idle_timeout:
                logger.debug("Closing idle %s connection", self.backend)
                # The pool discards this connection and opens a fresh one.
                raise exc.DisconnectionError("Connection exceeded the idle timeout")
            connection_record.info["deadline"] = clock() + self._request_timeout

        @event.listens_for(self._engine, "checkin")
        def _on_checkin(dbapi_connection, connection_record):
            if dbapi_connection is None:
                return
            connection_record.info.pop("deadline", None)
            connection_record.info["idle_since"] = clock()


__all__ = [
    "ConnectionPool",
    "DATABASE_ERRORS",
    "PROCEDURE_ARGUMENTS",
    "PoolClosed",
    "build_engine",
    "database_url",
]
