"""
Shared repository plumbing.

Each repository wraps one AsyncSession and commits its own writes, so a
returned call means the change is durable.
"""
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

T = TypeVar("T", bound=DeclarativeBase)


class BaseRepository(Generic[T]):
    """
    Primary-key access for one model.

    Subclasses set ``model``.
    """

    model: Type[T]

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, id: Any) -> Optional[T]:
        """Row with primary key ``id``, or None."""
        result = await self.db.execute(
            select(self.model).where(self.model.id == id)
        )
        return result.scalar_one_or_none()

    async def get_all(self, order_by: Optional[Any] = None) -> List[T]:
        """
        Every row of the table.

        Args:
            order_by: Column to sort on; defaults to ``created_at`` then ``id``
                      when the model has a creation timestamp

        Returns:
            Rows in the requested order
        """
        stmt = select(self.model)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        elif hasattr(self.model, "created_at"):
            stmt = stmt.order_by(self.model.created_at, self.model.id)
        else:
            stmt = stmt.order_by(self.model.id)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create(self, entity: T) -> T:
        """Insert a new row and reload server-generated columns."""
        self.db.add(entity)
        await self.db.commit()
        await self.db.refresh(entity)
        return entity

    async def upsert(self, entity: T) -> T:
        """
        Insert the row or overwrite the one with the same primary key.

        Args:
            entity: Detached instance carrying the complete row state

        Returns:
            The session-bound instance
        """
        merged = await self.db.merge(entity)
        await self.db.commit()
        return merged

    async def delete_by_id(self, id: Any) -> bool:
        """
        Delete the row with primary key ``id``.

        Returns:
            False when there was no such row
        """
        row = await self.get_by_id(id)
        if row is None:
            return False
        await self.db.delete(row)
        await self.db.commit()
        return True
