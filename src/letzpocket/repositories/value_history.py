"""ValueHistoryRepository for valuation history rows."""

from letzpocket.models.value_history import PropertyValueHistory
from letzpocket.repositories.base import BaseRepository


class ValueHistoryRepository(BaseRepository[PropertyValueHistory]):
    """Repository for the append-only valuation history."""

    async def list_for_postcode(
        self,
        postcode: str,
        *,
        limit: int = 100,
    ) -> list[PropertyValueHistory]:
        """Valuations for a postcode, newest first."""
        return await self._all(
            self._select()
            .where(PropertyValueHistory.postcode == postcode)
            .order_by(PropertyValueHistory.valuation_date.desc())
            .limit(limit)
        )
