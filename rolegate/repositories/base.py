"""
Base repository for the RBAC tables.

Filters are plain field=value keyword arguments; every repository works on
the caller's AsyncSession and only flushes, leaving commit to the caller.
"""

from typing import TypeVar, Generic, Type, Any
from uuid import UUID
from sqlalchemy import Select, select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from rolegate.models.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """
    Async CRUD over one model.

    Usage:
        class RoleRepository(BaseRepository[Role]):
            model = Role

        roles = RoleRepository(db)
        editor = await roles.get_one(name="Editor")
    """

    model: Type[ModelT]

    def __init__(self, db: AsyncSession):
        self.db = db

    def _base_query(self) -> Select:
        """Override to add default ordering."""
        return select(self.model)

    def _filtered(self, stmt: Any, filters: dict[str, Any], skip_none: bool = False) -> Any:
        for name, value in filters.items():
            if skip_none and value is None:
                continue
            stmt = stmt.where(getattr(self.model, name) == value)
        return stmt

    async def get_by_id(self, id: UUID | str) -> ModelT | None:
        if isinstance(id, str):
            id = UUID(id)
        result = await self.db.execute(self._base_query().where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_one(self, **filters: Any) -> ModelT | None:
        result = await self.db.execute(self._filtered(self._base_query(), filters))
        return result.scalar_one_or_none()

    async def count(self, **filters: Any) -> int:
        stmt = self._filtered(select(func.count()).select_from(self.model), filters)
        return await self.db.scalar(stmt) or 0

    async def exists(self, **filters: Any) -> bool:
        return await self.count(**filters) > 0

    async def all(self, **filters: Any) -> list[ModelT]:
        """Every row matching the filters; None-valued filters are ignored."""
        result = await self.db.execute(self._filtered(self._base_query(), filters, skip_none=True))
        return list(result.scalars().all())

    async def create(self, **data: Any) -> ModelT:
        entity = self.model(**data)
        self.db.add(entity)
        await self.db.flush()
        await self.db.refresh(entity)
        return entity

    async def update(self, id: UUID, **data: Any) -> ModelT | None:
        """Set attributes on an existing row; unknown names are ignored."""
        entity = await self.get_by_id(id)
        if entity is None:
            return None

        for name, value in data.items():
            if hasattr(entity, name):
                setattr(entity, name, value)

        await self.db.flush()
        await self.db.refresh(entity)
        return entity

    async def delete(self, id: UUID) -> bool:
        """Delete through the ORM so relationship cascades run."""
        entity = await self.get_by_id(id)
        if entity is None:
            return False
        await self.db.delete(entity)
        await self.db.flush()
        return True

    async def delete_many(self, **filters: Any) -> int:
        """Bulk delete; returns the number of rows removed."""
        result = await self.db.execute(self._filtered(delete(self.model), filters))
        return result.rowcount
