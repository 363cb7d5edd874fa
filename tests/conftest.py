from __future__ import annotations

import logging
import sys
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dnc_checker.config import DatabaseSettings, Settings
from dnc_checker.database import SQLCredentialStore
from dnc_checker.logging_config import EXCEPTION_LOGGER
from dnc_checker.models import Identity
from dnc_checker.pool import ConnectionPool
from dnc_checker.security import PasswordHasher

TEST_SECRET = "test-session-secret"
# The minimum cost bcrypt accepts keeps the suite fast.
TEST_ROUNDS = 4


class FakeDecisionService:
    """Records every dispatch and returns canned rows."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None) -> None:
        self.rows = rows if rows is not None else [
            {"PhoneNumber": "5551234567", "Status": "STUB - Not Implemented"}
        ]
        self.lookup_calls: List[Tuple[str, date]] = []
        self.history_calls: List[str] = []
        self.error: Optional[Exception] = None

    @property
    def call_count(self) -> int:
        return len(self.lookup_calls) + len(self.history_calls)

    def lookup(self, phone_digits: str, lookup_date: date) -> List[Dict[str, Any]]:
        self.lookup_calls.append((phone_digits, lookup_date))
        if self.error is not None:
            raise self.error
        return list(self.rows)

    def history(self, phone_digits: str) -> List[Dict[str, Any]]:
        self.history_calls.append(phone_digits)
        if self.error is not None:
            raise self.error
        return list(self.rows)


class RecordingMailer:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.sent: List[Identity] = []
        self.error = error

    def send_password_reset(self, identity: Identity) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(identity)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        session_secret=TEST_SECRET,
        database=DatabaseSettings(backend="sqlite", path=tmp_path / "dnc.sqlite3"),
        secure_cookies=False,
        bcrypt_rounds=TEST_ROUNDS,
    )


@pytest.fixture()
def pool(settings: Settings):
    db_pool = ConnectionPool.from_settings(settings.database)
    yield db_pool
    db_pool.close()


@pytest.fixture()
def store(pool: ConnectionPool) -> SQLCredentialStore:
    credential_store = SQLCredentialStore(pool)
    credential_store.initialize()
    return credential_store


@pytest.fixture()
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=TEST_ROUNDS)


@pytest.fixture()
def decision_service() -> FakeDecisionService:
    return FakeDecisionService()


@pytest.fixture()
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture()
def isolated_logging():
    """Undo configure_logging() after the test: handlers, level and hooks."""

    root = logging.getLogger()
    level = root.level
    excepthook, thread_excepthook = sys.excepthook, threading.excepthook
    yield
    for logger in (root, logging.getLogger(EXCEPTION_LOGGER)):
        for handler in list(logger.handlers):
            if getattr(handler, "_dnc_handler", False):
                logger.removeHandler(handler)
                handler.close()
    root.setLevel(level)
    sys.excepthook, threading.excepthook = excepthook, thread_excepthook
