"""Health, readiness and liveness probes (mounted at the root, no auth)."""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text

from crm_dialer import __version__
from crm_dialer.api.rate_limits import RateLimits, limiter
from crm_dialer.config import get_settings
from crm_dialer.core.retry import CircuitState, get_circuit_breaker_status
from crm_dialer.db.session import get_db_context
from crm_dialer.dependencies import peek_batch_dialer

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str
    checks: dict[str, Any]


@router.get("/health")
@limiter.limit(RateLimits.HEALTH)
async def health_check(request: Request) -> HealthResponse:
    """Component status.

    ``unhealthy`` when the database does not answer, ``degraded`` while an
    upstream circuit (e.g. Vapi) is open.
    """
    settings = get_settings()
    database = await _ping_database()
    circuits = get_circuit_breaker_status()

    dialer = peek_batch_dialer()
    checks: dict[str, Any] = {
        "database": database,
        "vapi": "configured" if settings.vapi.is_configured else "not_configured",
        "google": "configured" if settings.google.is_configured else "not_configured",
        "circuits": circuits,
        "batch": dialer.status.value if dialer else "idle",
    }

    if database != "ok":
        status = "unhealthy"
    elif any(c["state"] == CircuitState.OPEN.value for c in circuits.values()):
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        environment=settings.environment,
        checks=checks,
    )


@router.get("/ready")
async def readiness_check() -> JSONResponse:
    """200 once the database answers, 503 before."""
    database = await _ping_database()
    ready = database == "ok"
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "database": database},
    )


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}


async def _ping_database() -> str:
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        return f"error: {e}"
    return "ok"
