"""Admin endpoints: user roles, campaign assignment and campaign settings."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from crm_dialer.api.auth import AdminUser
from crm_dialer.api.rate_limits import RateLimits, limiter
from crm_dialer.campaigns import get_campaign_config, update_campaign_config
from crm_dialer.core.logging import get_logger
from crm_dialer.db.repositories.profiles import ProfileRepository
from crm_dialer.dependencies import DatabaseDep
from crm_dialer.domain import Campaign, Role, Tone
from crm_dialer.services.compliance import parse_hhmm

log = get_logger(__name__)

router = APIRouter()


class ProfileUpdate(BaseModel):
    role: Role | None = None
    assigned_campaign: Campaign | None = None


class CampaignConfigUpdate(BaseModel):
    """Partial campaign configuration update (HH:MM calling hours)."""

    name: str | None = None
    is_active: bool | None = None
    calling_hours_start: str | None = None
    calling_hours_end: str | None = None
    tone: Tone | None = None
    voicemail_message: str | None = None


@router.get("/admin/profiles")
@limiter.limit(RateLimits.READ)
async def list_profiles(
    request: Request,
    db: DatabaseDep,
    admin: AdminUser,
) -> list[dict[str, Any]]:
    """All profiles with role, campaign and calendar connection state."""
    profiles = await ProfileRepository(db).get_multi(limit=1000)
    return [p.to_dict() for p in profiles]


@router.patch("/admin/profiles/{profile_id}")
@limiter.limit(RateLimits.SENSITIVE)
async def update_profile(
    request: Request,
    profile_id: UUID,
    data: ProfileUpdate,
    db: DatabaseDep,
    admin: AdminUser,
) -> dict[str, Any]:
    """Change a user's role or assigned campaign."""
    profile = await ProfileRepository(db).get_or_raise(profile_id)

    if data.role is not None:
        profile.role = data.role.value
    if data.assigned_campaign is not None:
        profile.assigned_campaign = data.assigned_campaign.value
    await db.flush()

    log.info(
        "Profile updated",
        profile_id=str(profile.id),
        role=profile.role,
        campaign=profile.assigned_campaign,
        by=admin.id,
    )
    return profile.to_dict()


@router.get("/admin/campaigns/{campaign}/config")
@limiter.limit(RateLimits.READ)
async def get_campaign_settings(
    request: Request,
    campaign: Campaign,
    db: DatabaseDep,
    admin: AdminUser,
) -> dict[str, Any]:
    config = await get_campaign_config(db, campaign)
    return config.to_dict()


@router.put("/admin/campaigns/{campaign}/config")
@limiter.limit(RateLimits.SENSITIVE)
async def put_campaign_settings(
    request: Request,
    campaign: Campaign,
    data: CampaignConfigUpdate,
    db: DatabaseDep,
    admin: AdminUser,
) -> dict[str, Any]:
    """Update a campaign's hours, tone or voicemail script.

    Calling hours are validated as HH:MM; invalid values return 400.
    """
    changes = data.model_dump(exclude_unset=True)
    for key in ("calling_hours_start", "calling_hours_end"):
        if changes.get(key) is not None:
            parse_hhmm(changes[key])
    if changes.get("tone") is not None:
        changes["tone"] = Tone(changes["tone"]).value

    config = await update_campaign_config(db, campaign, changes)
    return config.to_dict()
