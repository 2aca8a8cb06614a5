"""Dashboard metrics and cost report endpoints."""

from typing import Any

from fastapi import APIRouter, Request

from crm_dialer.api.auth import AdminUser, CurrentUser, owner_scope
from crm_dialer.api.rate_limits import RateLimits, limiter
from crm_dialer.dependencies import DatabaseDep
from crm_dialer.services.reporting import cost_report, dashboard_metrics


router = APIRouter()


@router.get("/dashboard")
@limiter.limit(RateLimits.REPORT)
async def get_dashboard(
    request: Request,
    db: DatabaseDep,
    user: CurrentUser,
) -> dict[str, Any]:
    """Calls, bookings, conversion and cost for the caller's contacts.

    Admins see totals across all users.
    """
    metrics = await dashboard_metrics(db, owner_id=owner_scope(user))
    return metrics.to_dict()


@router.get("/reports/cost")
@limiter.limit(RateLimits.REPORT)
async def get_cost_report(
    request: Request,
    db: DatabaseDep,
    user: AdminUser,
) -> dict[str, Any]:
    """Spend breakdown with the share lost to voicemail (admin only)."""
    report = await cost_report(db)
    return report.to_dict()
