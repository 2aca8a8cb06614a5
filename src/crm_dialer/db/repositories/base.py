"""Generic async repository.

Repositories flush but never commit; the request (``get_db``) or the
``get_db_context`` block owns the transaction.
"""
from __future__ import annotations

from typing import Any, Generic, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.core.exceptions import RecordNotFoundError
from crm_dialer.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """CRUD for one model.

    Usage:
        class ProfileRepository(BaseRepository[ProfileModel]):
            def __init__(self, session: AsyncSession):
                super().__init__(ProfileModel, session)
    """

    def __init__(self, model: type[ModelT], session: AsyncSession):
        self._model = model
        self._session = session

    @property
    def label(self) -> str:
        """Model name for error messages ("Contact", "CallLog", ...)."""
        return self._model.__name__.removesuffix("Model")

    def _filtered(self, stmt: Select, filters: dict[str, Any]) -> Select:
        for field, value in filters.items():
            column = getattr(self._model, field, None)
            if column is None:
                raise AttributeError(f"{self.label} has no column {field!r}")
            stmt = stmt.where(column == value)
        return stmt

    async def get(self, id: UUID | str) -> ModelT | None:
        """Record by primary key; None when missing or ``id`` is not a UUID."""
        try:
            key = id if isinstance(id, UUID) else UUID(str(id))
        except ValueError:
            return None
        return await self._session.get(self._model, key)

    async def get_or_raise(self, id: UUID | str) -> ModelT:
        """Record by primary key.

        Raises:
            RecordNotFoundError: If there is no such record
        """
        obj = await self.get(id)
        if obj is None:
            raise RecordNotFoundError(f"{self.label} {id} not found", details={"id": str(id)})
        return obj

    async def get_multi(self, *, skip: int = 0, limit: int = 100) -> Sequence[ModelT]:
        """Newest first when the model has ``created_at``."""
        stmt = select(self._model)
        if hasattr(self._model, "created_at"):
            stmt = stmt.order_by(self._model.created_at.desc())
        result = await self._session.execute(stmt.offset(skip).limit(limit))
        return result.scalars().all()

    async def create(self, obj: ModelT) -> ModelT:
        self._session.add(obj)
        await self._session.flush()
        await self._session.refresh(obj)
        return obj

    async def create_multi(self, objs: list[ModelT]) -> list[ModelT]:
        """Insert in one flush, keeping the given order."""
        if not objs:
            return []
        self._session.add_all(objs)
        await self._session.flush()
        for obj in objs:
            await self._session.refresh(obj)
        return objs

    async def delete(self, id: UUID | str) -> bool:
        """Delete by primary key; False when there was nothing to delete."""
        obj = await self.get(id)
        if obj is None:
            return False
        await self._session.delete(obj)
        await self._session.flush()
        return True

    async def count(self, **filters: Any) -> int:
        stmt = self._filtered(select(func.count()).select_from(self._model), filters)
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def find_one(self, **filters: Any) -> ModelT | None:
        """First record matching column equality filters."""
        stmt = self._filtered(select(self._model), filters).limit(1)
        result = await self._session.execute(stmt)
        return result.scalars().first()
