"""Generic async repository over one SQLAlchemy model.

Repositories never commit; the store that owns the session decides the
transaction boundary.

Usage:
    from letzpocket.repositories.base import BaseRepository
    from letzpocket.models.usage_log import ApiUsageLog

    class UsageLogRepository(BaseRepository[ApiUsageLog]):
        pass

    async with session_factory() as session:
        await UsageLogRepository(session).create(ApiUsageLog(...))
        await session.commit()
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from letzpocket.models.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Insert, count and query helpers shared by the table repositories.

    Attributes:
        session: Session supplied by the calling store
        model_class: Model resolved from the generic parameter
    """

    model_class: type[T]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        for base in cls.__orig_bases__:  # type: ignore[attr-defined]
            if hasattr(base, "__args__"):
                cls.model_class = base.__args__[0]
                break

    def _select(self) -> Select[tuple[T]]:
        return select(self.model_class)

    async def _one_or_none(self, stmt: Select[tuple[T]]) -> T | None:
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _all(self, stmt: Select[tuple[T]]) -> list[T]:
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(self.model_class)
        )
        return result.scalar_one()

    async def create(self, entity: T) -> T:
        """Insert a row and load its server-generated columns.

        Args:
            entity: Unsaved model instance

        Returns:
            The same instance, flushed and refreshed
        """
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity
