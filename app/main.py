"""keyledger FastAPI application factory + lifespan lifecycle.

create_app() builds an isolated application (tests pass their own Config);
the module-level `app` is what uvicorn imports. Routes live in app/api/
and app/health.py; this module only wires state, middleware and the
error envelope.

Startup sequence:
  1. load_config()                  → app.state.config (unless injected)
  2. create_credential_backends()   → app.state.store + app.state.ledger
  3. create_audit_backend()         → app.state.audit_backend
  4. CredentialLifecycleService     → app.state.service
  5. app.state.ready = True

On shutdown the steps unwind in reverse:
  app.state.ready = False → close audit backend → close ledger → close store
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from app.api.middleware import RequestIdMiddleware
from app.api.dependencies import get_call_context
from app.api.router import LIFECYCLE_ENDPOINTS, router as api_router
from app.audit.factory import create_audit_backend
from app.audit.protocol import AuditBackend
from app.config import Config, load_config
from app.credentials.errors import CredentialError
from app.credentials.factory import create_credential_backends
from app.credentials.service import CredentialLifecycleService
from app.health import router as health_router
from app.utils.logger import configure_logging, get_logger

# ─── Logging ─────────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Root ────────────────────────────────────────────────────────────────────

root_router = APIRouter(tags=["root"])


@root_router.get("/")
async def root() -> dict[str, str]:
    """Service identity plus pointers to the main read endpoints."""
    return {
        "service": "keyledger",
        "tagline": "API credential lifecycle with an append-only audit trail",
        "health": "/health",
        "keys": "/api/keys",
        "audit_log": "/api/audit-log",
    }


# ─── Error rendering ──────────────────────────────────────────────────────────


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
    )


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build backends and the lifecycle service, then tear them down.

    A Config placed on app.state.config by create_app(config=...) wins over
    load_config(); tests use this to run against in-memory backends.
    """
    logger.info("keyledger starting up...")

    # ── Step 1: Config ──────────────────────────────────────────────────────
    # A bad file raises SystemExit here, before ready is ever set.
    config: Optional[Config] = getattr(app.state, "config", None)
    if config is None:
        config = load_config()
        app.state.config = config

    # ── Step 2: Credential store + rotation ledger ────────────────────────────
    # RuntimeError on schema version mismatch propagates and refuses startup.
    store, ledger = await create_credential_backends(config)
    app.state.store = store
    app.state.ledger = ledger

    # ── Step 3: Audit backend ─────────────────────────────────────────────────
    try:
        audit_backend: AuditBackend = await create_audit_backend(config)
    except BaseException:
        await ledger.close()
        await store.close()
        raise
    app.state.audit_backend = audit_backend

    # ── Step 4: Lifecycle service ─────────────────────────────────────────────
    if not config.credentials.key_pepper:
        logger.warning(
            "KEYLEDGER_KEY_PEPPER is not set — verification hashes are unkeyed. "
            "Set it before issuing production credentials; changing it later "
            "invalidates every issued key."
        )
    app.state.service = CredentialLifecycleService(
        store,
        ledger,
        audit_backend,
        key_pepper=config.credentials.key_pepper,
        secret_hash_rounds=config.credentials.secret_hash_rounds,
        soft_delete=config.credentials.soft_delete,
        list_limit=config.credentials.list_limit,
    )

    # ── Step 5: Mark as ready ─────────────────────────────────────────────────
    app.state.ready = True
    logger.info(
        "keyledger ready",
        store_backend=config.store.backend,
        audit_backend=config.audit.backend,
        soft_delete=config.credentials.soft_delete,
    )

    yield

    # ── Shutdown ────────────────────────────────────────────────────────────
    logger.info("keyledger shutting down...")
    app.state.ready = False

    await audit_backend.close()
    await ledger.close()
    await store.close()

    logger.info("keyledger shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Build a keyledger application with its own state and lifespan.

    Args:
        config: Pre-built configuration. None → load_config() at startup.

    Returns:
        Configured FastAPI application with lifespan, routers, and handlers.
    """
    # Interactive docs advertise the unauthenticated key routes; DEBUG only.
    docs_enabled = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="keyledger",
        description="Issue, validate, rotate and revoke API credentials with an audit trail",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )

    # Until the lifespan flips it, /health and /api/* answer 503.
    application.state.ready = False
    application.state.config = config

    application.add_middleware(RequestIdMiddleware)

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(api_router, prefix="/api")

    # Every error leaves as {"success": false, "message": ...}.
    @application.exception_handler(CredentialError)
    async def credential_error_handler(
        request: Request, exc: CredentialError
    ) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "Credential request failed",
            code=exc.code,
            status_code=exc.status_code,
            path=str(request.url.path),
        )
        return _failure(exc.status_code, exc.message)

    @application.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        logger.info("Malformed request", path=str(request.url.path), errors=len(errors))
        detail = f"{location}: {message}" if location else message

        endpoint = LIFECYCLE_ENDPOINTS.get(request.url.path)
        service: Optional[CredentialLifecycleService] = getattr(request.app.state, "service", None)
        if endpoint is not None and service is not None and request.app.state.ready:
            await service.reject(endpoint, detail, await get_call_context(request))
        return _failure(400, detail)

    @application.exception_handler(HTTPException)
    async def http_error_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return _failure(exc.status_code, str(exc.detail))

    @application.exception_handler(Exception)
    async def internal_error_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return _failure(500, "Internal server error")

    return application


# ─── uvicorn target ──────────────────────────────────────────────────────────

app = create_app()
