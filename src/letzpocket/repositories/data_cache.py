"""DataCacheRepository for PropertyData cache entries."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select

from letzpocket.models.data_cache import PropertyDataCache
from letzpocket.repositories.base import BaseRepository


class DataCacheRepository(BaseRepository[PropertyDataCache]):
    """Repository for cached provider responses."""

    async def get_live(
        self,
        postcode: str,
        data_type: str,
        now: datetime,
    ) -> PropertyDataCache | None:
        """Newest entry for (postcode, data_type) that has not expired.

        Args:
            postcode: Normalized postcode
            data_type: DataType value
            now: Reference time for expiry

        Returns:
            The live entry, or None
        """
        return await self._one_or_none(
            self._select()
            .where(PropertyDataCache.postcode == postcode)
            .where(PropertyDataCache.data_type == data_type)
            .where(PropertyDataCache.expires_at > now)
            .order_by(PropertyDataCache.cached_at.desc())
            .limit(1)
        )

    async def get_latest(
        self,
        postcode: str,
        data_type: str,
    ) -> PropertyDataCache | None:
        """Newest entry for (postcode, data_type), expired or not."""
        return await self._one_or_none(
            self._select()
            .where(PropertyDataCache.postcode == postcode)
            .where(PropertyDataCache.data_type == data_type)
            .order_by(PropertyDataCache.cached_at.desc())
            .limit(1)
        )

    async def delete_for_property(self, property_id: UUID) -> int:
        """Delete every entry cached for a property.

        Returns:
            Number of rows removed
        """
        result = await self.session.execute(
            delete(PropertyDataCache).where(
                PropertyDataCache.property_id == property_id
            )
        )
        return result.rowcount or 0

    async def total_credits(self) -> int:
        """Sum of credits spent on every cached response."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(PropertyDataCache.api_cost_credits), 0))
        )
        return int(result.scalar_one())
