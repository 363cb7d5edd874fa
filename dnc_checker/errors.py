"""Error taxonomy shared by the HTTP surface and the service layer."""
from __future__ import annotations

from typing import Optional


class DNCError(Exception):
    """Base class for failures that are safe to report to a caller.

    ``public_message`` is the only text that ever reaches the client; the
    exception's own ``str()`` may carry more detail for server-side logs.
    """

    status_code = 500
    default_message = "Request failed. Please try again."

    def __init__(self, public_message: Optional[str] = None, *, detail: Optional[str] = None) -> None:
        self.public_message = public_message or self.default_message
        super().__init__(detail or self.public_message)


class ValidationError(DNCError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationFailure(DNCError):
    status_code = 401
    default_message = "Invalid username or password"

    def __init__(self, reason: str = "unspecified") -> None:
        self.reason = reason
        super().__init__(detail=f"Authentication failed: {reason}")


class ConflictError(DNCError):
    status_code = 409
    default_message = "Username or email already exists"


class UnauthorizedError(DNCError):
    status_code = 401
    default_message = "Unauthorized"


class UpstreamError(DNCError):
    status_code = 500
    default_message = "Service temporarily unavailable. Please try again."


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing or invalid."""


__all__ = [
    "AuthenticationFailure",
    "ConfigurationError",
    "ConflictError",
    "DNCError",
    "UnauthorizedError",
    "UpstreamError",
    "ValidationError",
]
