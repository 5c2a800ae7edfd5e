"""UsageLogRepository for the API usage audit trail."""

from sqlalchemy import func, select

from letzpocket.models.usage_log import ApiUsageLog
from letzpocket.repositories.base import BaseRepository


class UsageLogRepository(BaseRepository[ApiUsageLog]):
    """Repository for usage-log rows."""

    async def count_by_status(self) -> dict[str, int]:
        """Row counts keyed by response status."""
        result = await self.session.execute(
            select(ApiUsageLog.response_status, func.count()).group_by(
                ApiUsageLog.response_status
            )
        )
        return {status: count for status, count in result.all()}

    async def recent(self, limit: int = 20) -> list[ApiUsageLog]:
        """Most recent rows, newest first."""
        return await self._all(
            self._select()
            .order_by(ApiUsageLog.created_at.desc())
            .limit(limit)
        )
