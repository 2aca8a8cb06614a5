"""Power Dial (batch outbound calling) endpoints.

One batch session runs per process. Progress is polled via GET /batch.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from crm_dialer.api.auth import CurrentUser, owner_scope
from crm_dialer.api.rate_limits import RateLimits, limiter
from crm_dialer.dependencies import BatchDialerDep, DatabaseDep, SettingsDep
from crm_dialer.domain import Campaign, LeadStatus
from crm_dialer.services.dialing import start_batch


router = APIRouter()


class BatchStartRequest(BaseModel):
    """Start a batch session.

    Without ``contact_ids`` or ``status_filter`` every Not Called contact
    is dialled.
    """

    contact_ids: list[UUID] | None = None
    status_filter: LeadStatus | None = None
    concurrency: int | None = Field(default=None, ge=1)
    campaign: Campaign = Campaign.RESIDENTIAL


@router.post("/batch", status_code=201)
@limiter.limit(RateLimits.BATCH)
async def start_batch_session(
    request: Request,
    data: BatchStartRequest,
    db: DatabaseDep,
    dialer: BatchDialerDep,
    settings: SettingsDep,
    user: CurrentUser,
) -> dict[str, Any]:
    """Queue contacts and start dialling.

    Returns 409 if a session is already running or the concurrency
    exceeds the configured maximum.
    """
    progress = await start_batch(
        db,
        dialer,
        settings,
        contact_ids=data.contact_ids,
        status_filter=data.status_filter.value if data.status_filter else None,
        concurrency=data.concurrency,
        campaign=data.campaign,
        owner_id=owner_scope(user),
    )
    return progress.to_dict()


@router.get("/batch")
@limiter.limit(RateLimits.READ)
async def get_batch_progress(
    request: Request,
    dialer: BatchDialerDep,
    user: CurrentUser,
) -> dict[str, Any]:
    """Current session status, counters and active calls."""
    return dialer.progress().to_dict()


@router.post("/batch/pause")
@limiter.limit(RateLimits.BATCH)
async def pause_batch(
    request: Request,
    dialer: BatchDialerDep,
    user: CurrentUser,
) -> dict[str, Any]:
    return dialer.pause().to_dict()


@router.post("/batch/resume")
@limiter.limit(RateLimits.BATCH)
async def resume_batch(
    request: Request,
    dialer: BatchDialerDep,
    user: CurrentUser,
) -> dict[str, Any]:
    return dialer.resume().to_dict()


@router.post("/batch/abort")
@limiter.limit(RateLimits.BATCH)
async def abort_batch(
    request: Request,
    dialer: BatchDialerDep,
    user: CurrentUser,
) -> dict[str, Any]:
    """Drop pending contacts and stop tracking active calls."""
    progress = await dialer.abort()
    return progress.to_dict()
