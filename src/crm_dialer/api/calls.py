"""Outbound call and call log endpoints."""

from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.api.auth import AdminUser, AuthenticatedUser, CurrentUser, owner_scope
from crm_dialer.api.pagination import (
    DEFAULT_PAGE,
    DEFAULT_PAGE_SIZE,
    PageParam,
    PageSizeParam,
    PaginationMeta,
    calculate_offset,
)
from crm_dialer.api.rate_limits import RateLimits, limiter
from crm_dialer.core.exceptions import ForbiddenError
from crm_dialer.db.models.core import CallLogModel
from crm_dialer.db.repositories.calls import CallLogRepository
from crm_dialer.db.repositories.contacts import ContactRepository
from crm_dialer.db.repositories.profiles import ProfileRepository
from crm_dialer.dependencies import DatabaseDep, SettingsDep, TranscriptionDep, VapiDep
from crm_dialer.domain import Campaign
from crm_dialer.services.dialing import dial_contact
from crm_dialer.services.transcripts import transcribe_call_log


router = APIRouter()


# ============================================================================
# Pydantic Schemas
# ============================================================================


class DialRequest(BaseModel):
    """Single outbound call request."""

    contact_id: UUID
    # Defaults to the caller's assigned campaign
    campaign: Campaign | None = None


class DialResponse(BaseModel):
    contact_id: UUID
    vapi_call_id: str
    status: str | None = None


class CallLog(BaseModel):
    """Call log schema for API responses."""

    id: UUID
    contact_id: UUID
    vapi_call_id: str | None = None
    duration: int
    outcome: str
    sentiment: str
    transcript: str | None = None
    recording_url: str | None = None
    cost: float
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, model: CallLogModel) -> "CallLog":
        return cls.model_validate(model)


class CallLogListResponse(BaseModel):
    calls: list[CallLog]
    pagination: PaginationMeta


# ============================================================================
# Dependencies
# ============================================================================


async def get_call_log_repository(db: DatabaseDep) -> CallLogRepository:
    """Get call log repository instance."""
    return CallLogRepository(db)


CallLogRepoDep = Annotated[CallLogRepository, Depends(get_call_log_repository)]


async def _campaign_for(session: AsyncSession, user: AuthenticatedUser, requested: Campaign | None) -> Campaign:
    if requested is not None:
        return requested
    try:
        profile = await ProfileRepository(session).get(user.id)
    except ValueError:
        profile = None
    return Campaign.parse(profile.assigned_campaign if profile else None)


async def _ensure_call_visible(session: AsyncSession, call_log: CallLogModel, user: AuthenticatedUser) -> None:
    owner_id = owner_scope(user)
    if owner_id is None:
        return
    contact = await ContactRepository(session).get(call_log.contact_id)
    if contact is None or contact.user_id != owner_id:
        raise ForbiddenError("Call belongs to another user")


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/calls", response_model=DialResponse, status_code=201)
@limiter.limit(RateLimits.OUTBOUND_CALL)
async def place_call(
    request: Request,
    data: DialRequest,
    db: DatabaseDep,
    vapi: VapiDep,
    settings: SettingsDep,
    user: CurrentUser,
) -> DialResponse:
    """Call one contact now.

    Rejected with 409 when the number is on the do-not-call list or the
    current time is outside the calling window.
    """
    campaign = await _campaign_for(db, user, data.campaign)
    result = await dial_contact(
        db,
        vapi,
        settings,
        data.contact_id,
        campaign=campaign,
        owner_id=owner_scope(user),
    )
    return DialResponse(**result.to_dict())


@router.get("/calls", response_model=CallLogListResponse)
@limiter.limit(RateLimits.READ)
async def list_call_logs(
    request: Request,
    repo: CallLogRepoDep,
    user: CurrentUser,
    contact_id: UUID | None = None,
    page: PageParam = DEFAULT_PAGE,
    page_size: PageSizeParam = DEFAULT_PAGE_SIZE,
) -> CallLogListResponse:
    """List call logs, newest first, optionally for one contact."""
    owner_id = owner_scope(user)
    logs = await repo.list_logs(
        contact_id=contact_id,
        owner_id=owner_id,
        skip=calculate_offset(page, page_size),
        limit=page_size,
    )
    total = await repo.count_logs(contact_id=contact_id, owner_id=owner_id)

    return CallLogListResponse(
        calls=[CallLog.from_model(c) for c in logs],
        pagination=PaginationMeta.from_params(page, page_size, total),
    )


@router.get("/calls/{call_log_id}", response_model=CallLog)
@limiter.limit(RateLimits.READ)
async def get_call_log(
    request: Request,
    call_log_id: UUID,
    repo: CallLogRepoDep,
    db: DatabaseDep,
    user: CurrentUser,
) -> CallLog:
    """Get a call log by ID."""
    call_log = await repo.get_or_raise(call_log_id)
    await _ensure_call_visible(db, call_log, user)
    return CallLog.from_model(call_log)


@router.post("/calls/{call_log_id}/transcribe")
@limiter.limit(RateLimits.SENSITIVE)
async def transcribe_call(
    request: Request,
    call_log_id: UUID,
    db: DatabaseDep,
    client: TranscriptionDep,
    user: AdminUser,
    summary: bool = False,
) -> dict[str, Any]:
    """Re-transcribe a call from its recording (admin only).

    With ``summary=true`` the call is also summarised and its sentiment
    updated.
    """
    return await transcribe_call_log(db, client, str(call_log_id), summarize=summary)
