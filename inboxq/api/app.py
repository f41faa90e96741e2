"""FastAPI server for InboxQ Gmail reader"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from inboxq.api.routes.auth import router as auth_router
from inboxq.api.routes.cache import router as cache_router
from inboxq.api.routes.gmail import router as gmail_router
from inboxq.api.routes.health import router as health_router
from inboxq.config import (
    ALLOWED_ORIGINS,
    API_HOST,
    API_PORT,
    APP_VERSION,
    CACHE_DB_PATH,
    OWNER_HEADER,
    is_development,
)
from inboxq.gmail.client import GmailMailboxFactory
from inboxq.gmail.credentials import CredentialManager
from inboxq.infrastructure.database import init_database, validate_schema
from inboxq.infrastructure.errors import (
    AuthorizationError,
    UpstreamError,
    UpstreamTransient,
)
from inboxq.mailbox.service import MailboxFactory
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter, hash_identifier, log_event
from inboxq.storage.credential_store import CredentialStore, InMemoryCredentialStore
from inboxq.storage.tenancy import TenancyViolationError
from inboxq.storage.tiered_cache import TieredCache, create_email_cache
from inboxq.storage.user_credentials_repository import UserCredentialsRepository

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


def build_credential_store() -> CredentialStore:
    """
    Encrypted SQLite store when INBOXQ_ENCRYPTION_KEY is set

    Raises:
        RuntimeError: No encryption key outside development
    """
    if os.getenv("INBOXQ_ENCRYPTION_KEY"):
        init_database()
        validate_schema()
        return UserCredentialsRepository()

    if not is_development():
        raise RuntimeError(
            "Security misconfiguration: INBOXQ_ENCRYPTION_KEY not set in production. "
            "Refusing to start without encrypted credential storage."
        )
    logger.warning("INBOXQ_ENCRYPTION_KEY not set; credentials are kept in memory only")
    return InMemoryCredentialStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Build the process-wide services once

    Side Effects:
        - Connects the email cache (falls back to memory-only on failure)
        - Initializes the credentials database when encryption is configured
        - Builds the credential manager and Gmail factory unless injected
    """
    state = app.state
    if getattr(state, "email_cache", None) is None:
        state.email_cache = create_email_cache(CACHE_DB_PATH)
    cache_status = state.email_cache.initialize()

    if getattr(state, "credential_manager", None) is None:
        state.credential_manager = CredentialManager(build_credential_store())
    if getattr(state, "mailbox_factory", None) is None:
        state.mailbox_factory = GmailMailboxFactory(state.credential_manager)

    logger.info("InboxQ API started (cache mode: %s)", cache_status.mode)
    log_event("api.started", cache_mode=cache_status.mode, version=APP_VERSION)
    yield

    state.email_cache.store.close()
    logger.info("InboxQ API stopped")


def _error_response(status_code: int, error: Exception, **extra: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(error), **extra})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Sanitized validation errors: field names only, never validation rules."""
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        counter("api.validation_errors")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": "Invalid request format. Please check your request and try again.",
                "error_count": len(exc.errors()),
                "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
            },
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(
        request: Request, exc: AuthorizationError
    ) -> JSONResponse:
        counter("api.reauthorize_required")
        log_event(
            "api.reauthorize_required",
            owner=hash_identifier(exc.owner_id),
            error=type(exc).__name__,
        )
        return _error_response(status.HTTP_401_UNAUTHORIZED, exc, reauthorize=True)

    @app.exception_handler(UpstreamTransient)
    async def upstream_transient_handler(request: Request, exc: UpstreamTransient) -> JSONResponse:
        counter("api.upstream_transient")
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc, retryable=True)

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
        counter("api.upstream_error")
        logger.error("Upstream error on %s: %s", request.url.path, exc)
        return _error_response(status.HTTP_502_BAD_GATEWAY, exc, retryable=False)

    @app.exception_handler(TenancyViolationError)
    async def tenancy_error_handler(request: Request, exc: TenancyViolationError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, exc)


def create_app(
    email_cache: TieredCache | None = None,
    mailbox_factory: MailboxFactory | None = None,
    credential_manager: CredentialManager | None = None,
) -> FastAPI:
    """
    Build the API application

    Services passed in are used as-is; missing ones are built at startup.
    """
    app = FastAPI(title="InboxQ API", version=APP_VERSION, lifespan=lifespan)
    app.state.email_cache = email_cache
    app.state.mailbox_factory = mailbox_factory
    app.state.credential_manager = credential_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", OWNER_HEADER, "X-Request-ID"],
    )

    register_exception_handlers(app)
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(gmail_router)
    app.include_router(cache_router)
    return app


app = create_app()


def main() -> None:
    """Run the API with uvicorn (``inboxq-api`` console script)."""
    uvicorn.run(
        "inboxq.api.app:app",
        host=API_HOST,
        port=API_PORT,
        reload=is_development(),
    )


if __name__ == "__main__":
    main()
