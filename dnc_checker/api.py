"""JSON endpoints for accounts and DNC lookups."""

from __future__ import annotations

import functools
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Type, TypeVar

import anyio
from fastapi import Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from .accounts import Authenticator, PasswordResetService, RegistrationService
from .errors import DNCError, UpstreamError, ValidationError
from .logging_config import EXCEPTION_LOGGER
from .lookup import LookupGateway
from .security import SESSION_COOKIE_NAME, SessionAuth
from .sessions import SessionClaims, SessionIssuer

logger = logging.getLogger("dnc_checker.api")
exception_logger = logging.getLogger(EXCEPTION_LOGGER)

INVALID_BODY = "Invalid request body"
GENERIC_FAILURE = "Request failed. Please try again."

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class _RequestBody(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")


class RegisterRequest(_RequestBody):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(_RequestBody):
    username: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(_RequestBody):
    email: Optional[str] = None


class LookupRequest(_RequestBody):
    phoneNumber: Optional[str] = None
    lookupDate: Optional[str] = None


class HistoryRequest(_RequestBody):
    phoneNumber: Optional[str] = None


def envelope(
    *,
    success: bool,
    data: Any = None,
    error: Optional[str] = None,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """Build the ``{success, data?, error?}`` response every endpoint returns."""

    content: Dict[str, Any] = {"success": success}
    if data is not None:
        content["data"] = jsonable_encoder(data)
    if error is not None:
        content["error"] = error
    return JSONResponse(status_code=status_code, content=content)


def issue_session_cookie(response, token: str, *, max_age: int, secure: bool) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=max_age,
        secure=secure,
        httponly=True,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")


async def _parse_body(request: Request, model: Type[M]) -> M:
    raw = await request.body()
    try:
        payload = json.loads(raw or b"null")
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValidationError(INVALID_BODY) from exc
    if not isinstance(payload, dict):
        raise ValidationError(INVALID_BODY)
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(INVALID_BODY) from exc


async def run_operation(name: str, failure_message: str, func: Callable[..., T], *args: Any) -> T:
    """Run blocking work in a worker thread and translate failures.

    Errors from the taxonomy pass through unchanged, except upstream errors
    which take the operation's public message. Anything else is logged with
    its traceback and reported as an upstream error.
    """

    started = time.perf_counter()
    try:
        result = await anyio.to_thread.run_sync(functools.partial(func, *args))
    except UpstreamError as exc:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.error("%s failed after %dms: %s", name, elapsed_ms, exc, exc_info=exc.__cause__ is not None)
        raise UpstreamError(failure_message, detail=str(exc)) from exc
    except DNCError:
        raise
    except Exception as exc:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.exception("%s: unhandled error after %dms", name, elapsed_ms)
        raise UpstreamError(failure_message, detail=f"{type(exc).__name__} in {name}") from exc

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    logger.info("%s completed (%dms)", name, elapsed_ms)
    return result


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure in the response envelope."""

    @app.exception_handler(DNCError)
    async def handle_dnc_error(request: Request, exc: DNCError) -> JSONResponse:
        return envelope(success=False, error=exc.public_message, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return envelope(success=False, error=INVALID_BODY, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        exception_logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return envelope(
            success=False,
            error=GENERIC_FAILURE,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


def register_api_routes(
    app: FastAPI,
    *,
    authenticator: Authenticator,
    registration: RegistrationService,
    password_reset: PasswordResetService,
    gateway: LookupGateway,
    issuer: SessionIssuer,
    secure_cookies: bool,
    health_check: Callable[[], bool],
) -> None:
    """Expose the JSON API endpoints on the provided FastAPI application."""

    require_session = SessionAuth(issuer)

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        healthy = await anyio.to_thread.run_sync(health_check)
        if not healthy:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unavailable"},
            )
        return JSONResponse(content={"status": "ok"})

    @app.post("/api/register")
    async def register(request: Request) -> JSONResponse:
        body = await _parse_body(request, RegisterRequest)
        await run_operation(
            "POST /api/register",
            "Registration failed. Please try again.",
            registration.register,
            body.username,
            body.email,
            body.password,
        )
        return envelope(success=True, status_code=status.HTTP_201_CREATED)

    @app.post("/api/auth/login")
    async def login(request: Request) -> JSONResponse:
        body = await _parse_body(request, LoginRequest)
        identity = await run_operation(
            "POST /api/auth/login",
            GENERIC_FAILURE,
            authenticator.authenticate,
            body.username,
            body.password,
        )
        token, claims = issuer.issue(identity.id)
        response = envelope(
            success=True,
            data={
                "token": token,
                "expires_at": claims.expires_at,
                "user": identity.as_dict(),
            },
        )
        issue_session_cookie(response, token, max_age=issuer.cookie_max_age, secure=secure_cookies)
        return response

    @app.post("/api/auth/logout")
    async def logout() -> JSONResponse:
        response = envelope(success=True)
        clear_session_cookie(response)
        return response

    @app.post("/api/forgot-password")
    async def forgot_password(request: Request) -> JSONResponse:
        body = await _parse_body(request, ForgotPasswordRequest)
        message = await run_operation(
            "POST /api/forgot-password",
            GENERIC_FAILURE,
            password_reset.request_reset,
            body.email,
        )
        return envelope(success=True, data={"message": message})

    @app.post("/api/dnc-lookup")
    async def dnc_lookup(
        request: Request,
        session: SessionClaims = Depends(require_session),
    ) -> JSONResponse:
        body = await _parse_body(request, LookupRequest)
        rows = await run_operation(
            "POST /api/dnc-lookup",
            "Lookup failed. Please try again.",
            gateway.lookup,
            body.phoneNumber,
            body.lookupDate,
        )
        return envelope(success=True, data=rows)

    @app.post("/api/dnc-history")
    async def dnc_history(
        request: Request,
        session: SessionClaims = Depends(require_session),
    ) -> JSONResponse:
        body = await _parse_body(request, HistoryRequest)
        rows = await run_operation(
            "POST /api/dnc-history",
            "History lookup failed. Please try again.",
            gateway.history,
            body.phoneNumber,
        )
        return envelope(success=True, data=rows)


__all__ = [
    "envelope",
    "register_api_routes",
    "register_exception_handlers",
    "run_operation",
]
