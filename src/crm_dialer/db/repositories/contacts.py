"""Contact Repository.

Specialized repository for lead management: search, phone matching
and pipeline status aggregates.
"""
from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.core.phone import last_four, normalize_phone
from crm_dialer.db.models.core import AppointmentModel, CallLogModel
from crm_dialer.db.models.crm import ContactModel
from crm_dialer.db.repositories.base import BaseRepository

LIKE_ESCAPE = "\\"


def contains_pattern(text: str) -> str:
    """LIKE pattern matching ``text`` literally anywhere in a column."""
    for char in (LIKE_ESCAPE, "%", "_"):
        text = text.replace(char, LIKE_ESCAPE + char)
    return f"%{text}%"


class ContactRepository(BaseRepository[ContactModel]):
    """Repository for contact database operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(ContactModel, session)

    # ========================================================================
    # Search Operations
    # ========================================================================

    def _scoped(
        self,
        stmt: Select,
        *,
        query: str | None = None,
        status: str | None = None,
        owner_id: UUID | None = None,
    ) -> Select:
        if query:
            pattern = contains_pattern(query.strip().lower())
            stmt = stmt.where(
                or_(
                    func.lower(self._model.first_name).like(pattern, escape=LIKE_ESCAPE),
                    func.lower(self._model.last_name).like(pattern, escape=LIKE_ESCAPE),
                    self._model.phone_number.like(contains_pattern(query.strip()), escape=LIKE_ESCAPE),
                )
            )
        if status:
            stmt = stmt.where(self._model.status == status)
        if owner_id is not None:
            stmt = stmt.where(self._model.user_id == owner_id)
        return stmt

    async def search(
        self,
        *,
        query: str | None = None,
        status: str | None = None,
        owner_id: UUID | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Sequence[ContactModel]:
        """Search contacts by name or phone substring, newest first.

        Args:
            query: Case-insensitive match on first/last name or phone substring
            status: Optional lead status filter
            owner_id: Restrict to contacts owned by this profile
            skip: Pagination offset
            limit: Maximum results
        """
        stmt = self._scoped(
            select(self._model),
            query=query,
            status=status,
            owner_id=owner_id,
        )
        stmt = stmt.order_by(self._model.created_at.desc()).offset(skip).limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_filtered(
        self,
        *,
        query: str | None = None,
        status: str | None = None,
        owner_id: UUID | None = None,
    ) -> int:
        """Count contacts matching the same filters as ``search``."""
        stmt = self._scoped(
            select(func.count()).select_from(self._model),
            query=query,
            status=status,
            owner_id=owner_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def find_by_phone(self, phone: str | None) -> ContactModel | None:
        """Resolve a contact from a phone number in any format.

        Candidates are pre-filtered in SQL on the last four digits, then
        matched exactly on the normalised last ten digits.

        Args:
            phone: Incoming number (e.g. E.164 from Vapi)

        Returns:
            First exactly matching contact, or None
        """
        normalized = normalize_phone(phone)
        if not normalized:
            return None

        stmt = (
            select(self._model)
            .where(self._model.phone_number.like(f"%{last_four(normalized)}%"))
            .order_by(self._model.created_at)
        )
        result = await self._session.execute(stmt)
        for candidate in result.scalars():
            if normalize_phone(candidate.phone_number) == normalized:
                return candidate
        return None

    async def list_for_dialing(
        self,
        *,
        contact_ids: list[UUID] | None = None,
        status: str | None = None,
        owner_id: UUID | None = None,
        limit: int = 500,
    ) -> Sequence[ContactModel]:
        """Select contacts for a batch session, oldest first.

        When ``contact_ids`` is given the order of the IDs is preserved.
        """
        stmt = select(self._model)
        if contact_ids:
            stmt = stmt.where(self._model.id.in_(contact_ids))
        stmt = self._scoped(stmt, status=status, owner_id=owner_id)
        stmt = stmt.order_by(self._model.created_at).limit(limit)

        result = await self._session.execute(stmt)
        contacts = list(result.scalars().all())

        if contact_ids:
            position = {cid: i for i, cid in enumerate(contact_ids)}
            contacts.sort(key=lambda c: position.get(c.id, len(position)))
        return contacts

    # ========================================================================
    # Analytics
    # ========================================================================

    async def count_by_status(self, owner_id: UUID | None = None) -> dict[str, int]:
        """Count contacts per lead status."""
        stmt = select(self._model.status, func.count()).group_by(self._model.status)
        if owner_id is not None:
            stmt = stmt.where(self._model.user_id == owner_id)
        result = await self._session.execute(stmt)
        return {status: count for status, count in result.all()}

    # ========================================================================
    # Deletion
    # ========================================================================

    async def delete_with_history(self, contact_id: UUID) -> bool:
        """Delete a contact together with its call logs and appointments."""
        contact = await self.get(contact_id)
        if contact is None:
            return False

        await self._session.execute(delete(CallLogModel).where(CallLogModel.contact_id == contact.id))
        await self._session.execute(delete(AppointmentModel).where(AppointmentModel.contact_id == contact.id))
        await self._session.delete(contact)
        await self._session.flush()
        return True
