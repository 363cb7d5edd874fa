"""Configuration management for the DNC checker service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigurationError

SUPPORTED_BACKENDS = ("sqlite", "postgres")


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the SQLite database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "dnc.sqlite3").resolve(strict=False)


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection and pool settings for the configured database provider."""

    backend: str = "sqlite"
    path: Optional[Path] = None
    host: Optional[str] = None
    port: int = 5432
    name: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    max_connections: int = 10
    idle_timeout: float = 30.0
    connect_timeout: float = 15.0
    request_timeout: float = 30.0

    def validate(self) -> None:
        if self.backend not in SUPPORTED_BACKENDS:
            raise ConfigurationError(
                f"Unsupported database backend '{self.backend}'. Expected one of: {', '.join(SUPPORTED_BACKENDS)}"
            )
        if self.backend == "postgres":
            missing = [
                env_name
                for env_name, value in (
                    ("DNC_DB_HOST", self.host),
                    ("DNC_DB_NAME", self.name),
                    ("DNC_DB_USER", self.user),
                    ("DNC_DB_PASSWORD", self.password),
                )
                if not value
            ]
            if missing:
                raise ConfigurationError(
                    f"Missing required database configuration: {', '.join(missing)}"
                )
        if self.max_connections < 1:
            raise ConfigurationError("DNC_DB_MAX_CONNECTIONS must be at least 1")
        for label, value in (
            ("DNC_DB_IDLE_TIMEOUT", self.idle_timeout),
            ("DNC_DB_CONNECT_TIMEOUT", self.connect_timeout),
            ("DNC_DB_REQUEST_TIMEOUT", self.request_timeout),
        ):
            if value <= 0:
                raise ConfigurationError(f"{label} must be greater than zero")


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, loaded once at startup and read-only afterwards."""

    session_secret: str
    database: DatabaseSettings
    log_level: str = "INFO"
    log_dir: Optional[Path] = None
    secure_cookies: bool = True
    bcrypt_rounds: int = 12


def _load_yaml(config_path: Path) -> Dict[str, Any]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
    return raw


def _pick(env: Mapping[str, str], name: str, section: Mapping[str, Any], key: str) -> Optional[str]:
    value = env.get(name)
    if value is not None and value.strip():
        return value.strip()
    raw = section.get(key)
    if raw is None:
        return None
    return str(raw)


def _as_int(label: str, value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"{label} must be an integer, got {value!r}") from exc


def _as_float(label: str, value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{label} must be a number, got {value!r}") from exc


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    *,
    config_path: Optional[Path] = None,
) -> Settings:
    """Build :class:`Settings` from an optional YAML file and the environment.

    Environment variables take precedence over values from the file. The
    file location comes from ``config_path`` or ``DNC_CONFIG``.
    """

    env = os.environ if env is None else env

    file_path = config_path
    if file_path is None and env.get("DNC_CONFIG"):
        file_path = Path(env["DNC_CONFIG"]).expanduser()
    raw: Dict[str, Any] = _load_yaml(file_path) if file_path is not None else {}

    session_section = raw.get("session") or {}
    db_section = raw.get("database") or {}
    log_section = raw.get("logging") or {}

    secret = _pick(env, "DNC_SESSION_SECRET", session_section, "secret")
    if not secret:
        raise ConfigurationError("DNC_SESSION_SECRET must be configured to issue sessions")

    backend = (_pick(env, "DNC_DB_BACKEND", db_section, "backend") or "sqlite").lower()
    database = DatabaseSettings(
        backend=backend,
        path=resolve_database_path(_pick(env, "DNC_DB_PATH", db_section, "path")) if backend == "sqlite" else None,
        host=_pick(env, "DNC_DB_HOST", db_section, "host"),
        port=_as_int("DNC_DB_PORT", _pick(env, "DNC_DB_PORT", db_section, "port"), 5432),
        name=_pick(env, "DNC_DB_NAME", db_section, "name"),
        user=_pick(env, "DNC_DB_USER", db_section, "user"),
        password=_pick(env, "DNC_DB_PASSWORD", db_section, "password"),
        max_connections=_as_int(
            "DNC_DB_MAX_CONNECTIONS", _pick(env, "DNC_DB_MAX_CONNECTIONS", db_section, "max_connections"), 10
        ),
        idle_timeout=_as_float(
            "DNC_DB_IDLE_TIMEOUT", _pick(env, "DNC_DB_IDLE_TIMEOUT", db_section, "idle_timeout"), 30.0
        ),
        connect_timeout=_as_float(
            "DNC_DB_CONNECT_TIMEOUT", _pick(env, "DNC_DB_CONNECT_TIMEOUT", db_section, "connect_timeout"), 15.0
        ),
        request_timeout=_as_float(
            "DNC_DB_REQUEST_TIMEOUT", _pick(env, "DNC_DB_REQUEST_TIMEOUT", db_section, "request_timeout"), 30.0
        ),
    )
    database.validate()

    log_dir_value = _pick(env, "DNC_LOG_DIR", log_section, "directory")
    rounds = _as_int("DNC_BCRYPT_ROUNDS", _pick(env, "DNC_BCRYPT_ROUNDS", session_section, "bcrypt_rounds"), 12)
    if not 4 <= rounds <= 31:
        raise ConfigurationError("DNC_BCRYPT_ROUNDS must be between 4 and 31")

    return Settings(
        session_secret=secret,
        database=database,
        log_level=(_pick(env, "DNC_LOG_LEVEL", log_section, "level") or "INFO").upper(),
        log_dir=Path(log_dir_value).expanduser() if log_dir_value else None,
        secure_cookies=_env_flag(_pick(env, "DNC_SESSION_SECURE", session_section, "secure_cookies"), True),
        bcrypt_rounds=rounds,
    )


__all__ = [
    "DatabaseSettings",
    "Settings",
    "SUPPORTED_BACKENDS",
    "load_settings",
    "resolve_database_path",
]
