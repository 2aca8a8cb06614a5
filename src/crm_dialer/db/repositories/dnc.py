"""Do-not-call list repository."""
from __future__ import annotations

from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.core.phone import normalize_phone
from crm_dialer.db.models.crm import DoNotCallModel
from crm_dialer.db.repositories.base import BaseRepository


class DoNotCallRepository(BaseRepository[DoNotCallModel]):
    """Repository for the do-not-call list.

    All numbers are stored and compared in normalised (last ten digits) form.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(DoNotCallModel, session)

    async def is_blocked(self, phone: str | None) -> bool:
        """Check whether a number is on the list."""
        normalized = normalize_phone(phone)
        if not normalized:
            return False
        return await self.find_one(phone_number=normalized) is not None

    async def add(self, phone: str, reason: str | None = None) -> DoNotCallModel | None:
        """Add a number to the list (idempotent).

        Returns:
            The existing or new entry, or None if the number has no digits
        """
        normalized = normalize_phone(phone)
        if not normalized:
            return None

        existing = await self.find_one(phone_number=normalized)
        if existing is not None:
            return existing

        return await self.create(DoNotCallModel(phone_number=normalized, reason=reason))

    async def remove(self, phone: str) -> bool:
        """Remove a number from the list."""
        entry = await self.find_one(phone_number=normalize_phone(phone))
        if entry is None:
            return False
        return await self.delete(entry.id)

    async def blocked_numbers(self) -> set[str]:
        """All blocked numbers, for bulk filtering during imports."""
        result = await self._session.execute(select(self._model.phone_number))
        return set(result.scalars().all())

    async def list_entries(self, *, skip: int = 0, limit: int = 100) -> Sequence[DoNotCallModel]:
        """List entries, newest first."""
        return await self.get_multi(skip=skip, limit=limit)
