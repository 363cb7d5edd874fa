"""Application factory wiring the DNC checker together."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .accounts import (
    Authenticator,
    LoggingPasswordResetMailer,
    PasswordResetMailer,
    PasswordResetService,
    RegistrationService,
)
from .api import register_api_routes, register_exception_handlers
from .config import Settings, load_settings
from .database import CredentialStore, SQLCredentialStore
from .logging_config import configure_logging
from .lookup import DecisionService, LookupGateway, StoredProcedureDecisionService
from .pool import ConnectionPool
from .security import PasswordHasher
from .sessions import SessionIssuer
from .web import register_ui_routes

logger = logging.getLogger("dnc_checker.service")


def create_app(
    settings: Optional[Settings] = None,
    *,
    pool: Optional[ConnectionPool] = None,
    store: Optional[CredentialStore] = None,
    decision_service: Optional[DecisionService] = None,
    mailer: Optional[PasswordResetMailer] = None,
    initialize_database: bool = True,
    configure_logs: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application.

    Collaborators that are not supplied are built from ``settings``, which in
    turn defaults to :func:`~dnc_checker.config.load_settings`. Configuration
    problems raise :class:`~dnc_checker.errors.ConfigurationError` here,
    before the application accepts any request.
    """

    settings = settings or load_settings()
    if configure_logs:
        configure_logging(settings.log_level, settings.log_dir)

    db_pool = pool or ConnectionPool.from_settings(settings.database)
    credential_store = store or SQLCredentialStore(db_pool)
    if initialize_database:
        credential_store.initialize()

    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    issuer = SessionIssuer(settings.session_secret)
    gateway = LookupGateway(decision_service or StoredProcedureDecisionService(db_pool))

    if not settings.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "DNC checker started (database backend: %s, pool size: %d)",
            db_pool.backend,
            db_pool.max_size,
        )
        try:
            yield
        finally:
            db_pool.close()

    app = FastAPI(
        title="DNC Checker",
        version="0.1.0",
        description="Authenticated Do Not Call registry lookups.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.pool = db_pool
    app.state.store = credential_store
    app.state.session_issuer = issuer

    register_exception_handlers(app)
    register_api_routes(
        app,
        authenticator=Authenticator(credential_store, hasher),
        registration=RegistrationService(credential_store, hasher),
        password_reset=PasswordResetService(credential_store, mailer or LoggingPasswordResetMailer()),
        gateway=gateway,
        issuer=issuer,
        secure_cookies=settings.secure_cookies,
        health_check=db_pool.ping,
    )
    register_ui_routes(
        app,
        authenticator=Authenticator(credential_store, hasher),
        issuer=issuer,
        secure_cookies=settings.secure_cookies,
    )
    return app


__all__ = ["create_app"]
