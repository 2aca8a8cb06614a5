"""Call log and appointment repositories."""
from __future__ import annotations

from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.db.models.core import AppointmentModel, CallLogModel
from crm_dialer.db.models.crm import ContactModel
from crm_dialer.db.repositories.base import BaseRepository


class CallLogRepository(BaseRepository[CallLogModel]):
    """Repository for call log records."""

    def __init__(self, session: AsyncSession):
        super().__init__(CallLogModel, session)

    async def list_logs(
        self,
        *,
        contact_id: UUID | None = None,
        owner_id: UUID | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Sequence[CallLogModel]:
        """List call logs, newest first.

        Args:
            contact_id: Restrict to one contact
            owner_id: Restrict to contacts owned by this profile
        """
        stmt = select(self._model)
        if owner_id is not None:
            stmt = stmt.join(ContactModel, ContactModel.id == self._model.contact_id).where(
                ContactModel.user_id == owner_id
            )
        if contact_id is not None:
            stmt = stmt.where(self._model.contact_id == contact_id)
        stmt = stmt.order_by(self._model.created_at.desc()).offset(skip).limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_logs(
        self,
        *,
        contact_id: UUID | None = None,
        owner_id: UUID | None = None,
    ) -> int:
        """Count call logs with the same filters as ``list_logs``."""
        stmt = select(func.count()).select_from(self._model)
        if owner_id is not None:
            stmt = stmt.join(ContactModel, ContactModel.id == self._model.contact_id).where(
                ContactModel.user_id == owner_id
            )
        if contact_id is not None:
            stmt = stmt.where(self._model.contact_id == contact_id)
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def exists_by_recording_url(self, recording_url: str) -> bool:
        """Check whether a call with this recording has already been logged."""
        stmt = (
            select(func.count())
            .select_from(self._model)
            .where(self._model.recording_url == recording_url)
        )
        result = await self._session.execute(stmt)
        return (result.scalar() or 0) > 0

    async def all_for_report(self, limit: int = 10000) -> Sequence[CallLogModel]:
        """Fetch call logs for cost reporting."""
        stmt = select(self._model).order_by(self._model.created_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def total_cost(self, owner_id: UUID | None = None) -> float:
        """Sum of recorded call cost."""
        stmt = select(func.coalesce(func.sum(self._model.cost), 0.0))
        if owner_id is not None:
            stmt = stmt.join(ContactModel, ContactModel.id == self._model.contact_id).where(
                ContactModel.user_id == owner_id
            )
        result = await self._session.execute(stmt)
        return float(result.scalar() or 0.0)

    async def created_since(
        self,
        since: datetime,
        owner_id: UUID | None = None,
    ) -> Sequence[datetime]:
        """Creation timestamps of calls since a point in time (for daily charts)."""
        stmt = select(self._model.created_at).where(self._model.created_at >= since)
        if owner_id is not None:
            stmt = stmt.join(ContactModel, ContactModel.id == self._model.contact_id).where(
                ContactModel.user_id == owner_id
            )
        result = await self._session.execute(stmt)
        return result.scalars().all()


class AppointmentRepository(BaseRepository[AppointmentModel]):
    """Repository for appointments."""

    def __init__(self, session: AsyncSession):
        super().__init__(AppointmentModel, session)

    async def list_with_contacts(
        self,
        *,
        upcoming_after: datetime | None = None,
        status: str | None = None,
        owner_id: UUID | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[tuple[AppointmentModel, ContactModel]]:
        """List appointments joined with their contact, soonest first."""
        stmt = select(self._model, ContactModel).join(
            ContactModel, ContactModel.id == self._model.contact_id
        )
        if upcoming_after is not None:
            stmt = stmt.where(self._model.scheduled_at >= upcoming_after)
        if status:
            stmt = stmt.where(self._model.status == status)
        if owner_id is not None:
            stmt = stmt.where(ContactModel.user_id == owner_id)
        stmt = stmt.order_by(self._model.scheduled_at).offset(skip).limit(limit)

        result = await self._session.execute(stmt)
        return [(appointment, contact) for appointment, contact in result.all()]

    async def count_filtered(
        self,
        *,
        upcoming_after: datetime | None = None,
        status: str | None = None,
        owner_id: UUID | None = None,
    ) -> int:
        """Count appointments with the same filters as ``list_with_contacts``."""
        stmt = select(func.count()).select_from(self._model).join(
            ContactModel, ContactModel.id == self._model.contact_id
        )
        if upcoming_after is not None:
            stmt = stmt.where(self._model.scheduled_at >= upcoming_after)
        if status:
            stmt = stmt.where(self._model.status == status)
        if owner_id is not None:
            stmt = stmt.where(ContactModel.user_id == owner_id)
        result = await self._session.execute(stmt)
        return result.scalar() or 0
