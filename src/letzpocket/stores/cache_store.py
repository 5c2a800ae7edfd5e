"""CacheStore - persisted side of the response cache.

Owns the session factory for the cache, value-history and usage-log tables.
Every method runs in its own short unit of work and commits before
returning, so callers never hold a session across a provider call.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from letzpocket.models.data_cache import PropertyDataCache
from letzpocket.models.usage_log import ApiUsageLog
from letzpocket.models.value_history import PropertyValueHistory
from letzpocket.repositories.data_cache import DataCacheRepository
from letzpocket.repositories.usage_log import UsageLogRepository
from letzpocket.repositories.value_history import ValueHistoryRepository


class CacheStore:
    """Database access for cache entries, valuation history and usage logs."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # -------------------------------------------------------------------------
    # Cache entries
    # -------------------------------------------------------------------------

    async def get_live(
        self,
        postcode: str,
        data_type: str,
        now: datetime,
    ) -> PropertyDataCache | None:
        """Newest unexpired entry for (postcode, data_type)."""
        async with self._unit_of_work() as session:
            return await DataCacheRepository(session).get_live(
                postcode, data_type, now
            )

    async def get_latest(
        self,
        postcode: str,
        data_type: str,
    ) -> PropertyDataCache | None:
        """Newest entry for (postcode, data_type) regardless of expiry."""
        async with self._unit_of_work() as session:
            return await DataCacheRepository(session).get_latest(postcode, data_type)

    async def save_entry(
        self,
        *,
        postcode: str,
        data_type: str,
        payload: dict[str, Any],
        cached_at: datetime,
        expires_at: datetime,
        cost: int,
        property_id: UUID | None = None,
    ) -> PropertyDataCache:
        """Insert a new cache entry."""
        async with self._unit_of_work() as session:
            return await DataCacheRepository(session).create(
                PropertyDataCache(
                    property_id=property_id,
                    postcode=postcode,
                    data_type=data_type,
                    api_response=payload,
                    cached_at=cached_at,
                    expires_at=expires_at,
                    api_cost_credits=cost,
                )
            )

    async def delete_for_property(self, property_id: UUID) -> int:
        """Delete every entry of a property; returns the row count."""
        async with self._unit_of_work() as session:
            return await DataCacheRepository(session).delete_for_property(property_id)

    async def count_entries(self) -> int:
        async with self._unit_of_work() as session:
            return await DataCacheRepository(session).count()

    async def total_credits(self) -> int:
        async with self._unit_of_work() as session:
            return await DataCacheRepository(session).total_credits()

    # -------------------------------------------------------------------------
    # Valuation history
    # -------------------------------------------------------------------------

    async def record_valuation(
        self,
        *,
        postcode: str,
        valuation_date: datetime,
        rental_value: float,
        lower: float,
        upper: float,
        property_id: UUID | None = None,
    ) -> PropertyValueHistory:
        """Append a valuation observation."""
        async with self._unit_of_work() as session:
            return await ValueHistoryRepository(session).create(
                PropertyValueHistory(
                    property_id=property_id,
                    postcode=postcode,
                    valuation_date=valuation_date,
                    rental_value=rental_value,
                    confidence_interval_lower=lower,
                    confidence_interval_upper=upper,
                )
            )

    async def value_history(
        self,
        postcode: str,
        *,
        limit: int = 100,
    ) -> list[PropertyValueHistory]:
        async with self._unit_of_work() as session:
            return await ValueHistoryRepository(session).list_for_postcode(
                postcode, limit=limit
            )

    # -------------------------------------------------------------------------
    # Usage log
    # -------------------------------------------------------------------------

    async def log_usage(
        self,
        *,
        endpoint: str,
        status: str,
        credits_used: int = 0,
        request_params: dict[str, Any] | None = None,
        user_id: str | None = None,
    ) -> ApiUsageLog:
        """Append a usage-log row."""
        async with self._unit_of_work() as session:
            return await UsageLogRepository(session).create(
                ApiUsageLog(
                    user_id=user_id,
                    endpoint=endpoint,
                    credits_used=credits_used,
                    request_params=request_params,
                    response_status=status,
                )
            )

    async def usage_counts(self) -> dict[str, int]:
        """Usage-log row counts keyed by status."""
        async with self._unit_of_work() as session:
            return await UsageLogRepository(session).count_by_status()

    async def recent_usage(self, limit: int = 20) -> list[ApiUsageLog]:
        async with self._unit_of_work() as session:
            return await UsageLogRepository(session).recent(limit)
