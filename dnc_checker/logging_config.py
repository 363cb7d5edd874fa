"""Logging setup with phone-number redaction applied on every sink."""
from __future__ import annotations

import json
import logging
import sys
import threading
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from .models import PhoneNumber, mask_phone

PHONE_FIELDS = frozenset({"phone", "phone_number", "phoneNumber"})

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Uncaught exceptions are logged here; with a log directory they also land in exceptions.log.
EXCEPTION_LOGGER = "dnc_checker.exceptions"

# Attributes present on every LogRecord; anything else arrived through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


def _redact(value: Any) -> Any:
    if isinstance(value, PhoneNumber):
        return value.masked
    return value


def extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the fields that were attached to ``record`` through ``extra``."""

    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class PhoneMaskingFilter(logging.Filter):
    """Mask phone numbers carried by a record before any handler formats it.

    Fields named in :data:`PHONE_FIELDS` are masked whatever their type, and
    every :class:`PhoneNumber` found in the message, its arguments or other
    extra fields is replaced with its masked string.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = _redact(record.msg)
        if isinstance(record.args, dict):
            record.args = {key: _redact(value) for key, value in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(_redact(value) for value in record.args)

        for key, value in extra_fields(record).items():
            if key in PHONE_FIELDS and value is not None:
                setattr(record, key, mask_phone(value))
            else:
                setattr(record, key, _redact(value))
        return True


class ConsoleFormatter(logging.Formatter):
    """Human-readable line followed by any extra fields as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = extra_fields(record)
        if extras:
            line = f"{line} {json.dumps(extras, default=str, sort_keys=True)}"
        return line


class JSONLineFormatter(logging.Formatter):
    """One JSON object per record for the persisted log."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(extra_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _log_uncaught(exc_type, exc_value, exc_traceback) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logging.getLogger(EXCEPTION_LOGGER).critical(
        "Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback)
    )


def _log_uncaught_in_thread(args: threading.ExceptHookArgs) -> None:
    if args.exc_type is SystemExit or args.exc_value is None:
        return
    thread_name = args.thread.name if args.thread is not None else "unknown"
    logging.getLogger(EXCEPTION_LOGGER).critical(
        "Uncaught exception in thread %s",
        thread_name,
        exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
    )


def install_exception_hooks() -> None:
    """Route uncaught exceptions from any thread to the exceptions logger."""

    sys.excepthook = _log_uncaught
    threading.excepthook = _log_uncaught_in_thread


def _rotating_file(path: Path) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(path, when="midnight", backupCount=30, encoding="utf-8")
    handler.setFormatter(JSONLineFormatter())
    return handler


def _remove_own_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, "_dnc_handler", False):
            logger.removeHandler(handler)
            handler.close()


def _install(logger: logging.Logger, handler: logging.Handler) -> None:
    handler.addFilter(PhoneMaskingFilter())
    handler._dnc_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Configure the root logger with a console sink and optional file sinks.

    With ``log_dir`` set, every record also goes to ``app.log`` and uncaught
    exceptions additionally go to ``exceptions.log``. Both rotate daily.
    Handlers installed by an earlier call are replaced, so calling this more
    than once (tests, repeated app factories) does not duplicate output.
    """

    root = logging.getLogger()
    exceptions = logging.getLogger(EXCEPTION_LOGGER)
    _remove_own_handlers(root)
    _remove_own_handlers(exceptions)

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    console = logging.StreamHandler()
    console.setFormatter(ConsoleFormatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    _install(root, console)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        _install(root, _rotating_file(log_dir / "app.log"))
        _install(exceptions, _rotating_file(log_dir / "exceptions.log"))

    install_exception_hooks()


__all__ = [
    "ConsoleFormatter",
    "EXCEPTION_LOGGER",
    "JSONLineFormatter",
    "PHONE_FIELDS",
    "PhoneMaskingFilter",
    "configure_logging",
    "extra_fields",
    "install_exception_hooks",
]
