"""Authenticated Do Not Call registry lookups."""

from __future__ import annotations

from typing import Any

from .config import Settings, load_settings, resolve_database_path
from .errors import ConfigurationError, DNCError


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the combined web + API application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "ConfigurationError",
    "DNCError",
    "Settings",
    "create_app",
    "load_settings",
    "resolve_database_path",
]
