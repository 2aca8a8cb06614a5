"""Profile and campaign configuration repositories."""
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.db.models.auth import CampaignConfigModel, ProfileModel
from crm_dialer.db.repositories.base import BaseRepository


class ProfileRepository(BaseRepository[ProfileModel]):
    """Repository for dashboard user profiles."""

    def __init__(self, session: AsyncSession):
        super().__init__(ProfileModel, session)

    async def find_by_email(self, email: str) -> ProfileModel | None:
        """Find a profile by email (case-insensitive)."""
        stmt = select(self._model).where(
            func.lower(self._model.email) == email.strip().lower()
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def find_calendar_owner(self, campaign: str) -> ProfileModel | None:
        """Find the profile whose calendar receives bookings for a campaign.

        First profile assigned to the campaign that has a Google refresh token.
        """
        stmt = (
            select(self._model)
            .where(
                self._model.assigned_campaign == campaign,
                self._model.google_refresh_token.is_not(None),
            )
            .order_by(self._model.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()


class CampaignConfigRepository(BaseRepository[CampaignConfigModel]):
    """Repository for per-campaign configuration."""

    def __init__(self, session: AsyncSession):
        super().__init__(CampaignConfigModel, session)

    async def get_for_campaign(self, campaign: str) -> CampaignConfigModel | None:
        """Get the stored configuration for a campaign."""
        return await self.find_one(campaign=campaign)
