"""ASGI application for the CRM dialer.

Run with ``crm-dialer serve`` or ``uvicorn crm_dialer.main:app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crm_dialer import __version__
from crm_dialer.api import (
    admin,
    appointments,
    auth,
    batch,
    calls,
    contacts,
    dashboard,
    health,
    integrations,
    webhooks,
)
from crm_dialer.api.errors import REQUEST_ID_HEADER, RequestIdMiddleware, register_error_handlers
from crm_dialer.api.rate_limits import limiter
from crm_dialer.config import Settings, get_settings, require_valid_settings
from crm_dialer.core.logging import get_logger, setup_logging
from crm_dialer.db.session import close_db, init_db
from crm_dialer.dependencies import shutdown_dependencies

log = get_logger(__name__)

API_PREFIX = "/api/v1"

# Local frontends allowed while debugging when no origins are configured
DEV_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]

ROUTERS = [
    (auth.router, "Auth"),
    (contacts.router, "Contacts"),
    (calls.router, "Calls"),
    (appointments.router, "Appointments"),
    (batch.router, "Power Dial"),
    (webhooks.router, "Webhooks"),
    (dashboard.router, "Dashboard"),
    (admin.router, "Admin"),
    (integrations.router, "Integrations"),
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = require_valid_settings()
    setup_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        environment=settings.environment,
    )
    log.info(
        "CRM dialer starting",
        version=__version__,
        environment=settings.environment,
        vapi_configured=settings.vapi.is_configured,
        google_configured=settings.google.is_configured,
    )
    await init_db()

    try:
        yield
    finally:
        # Stop the power dialer before the engine goes away
        await shutdown_dependencies()
        await close_db()
        log.info("CRM dialer stopped")


def _allowed_origins(settings: Settings) -> list[str]:
    if settings.cors_origins:
        return settings.cors_origins
    return DEV_ORIGINS if settings.debug else []


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="CRM Dialer",
        description="Lead management with AI outbound calling and appointment booking",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.limiter = limiter
    register_error_handlers(app)

    app.add_middleware(RequestIdMiddleware)
    # Wildcard origins cannot be combined with credentials
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )

    app.include_router(health.router, tags=["Health"])
    for router, tag in ROUTERS:
        app.include_router(router, prefix=API_PREFIX, tags=[tag])
    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "crm_dialer.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
