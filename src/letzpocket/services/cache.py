"""ResponseCacheManager - database-backed cache for PropertyData responses.

Serves provider data from the cache store when it is fresh enough, fetches
it otherwise, and falls back to an expired entry when the provider fails.

Strategies (days):
    valuation     30 cached, refreshed after 7
    rents         30 cached, refreshed after 7
    sold_prices   90 cached, refreshed after 14
    growth        90 cached, refreshed after 30
    demographics  90 cached, refreshed after 30

An entry younger than its force-refresh threshold is a hit. An entry that
is live but older than the threshold is refetched; if that fetch fails the
entry is still served as stale data.

Note: Cached values are canonical DTO dicts, never raw provider JSON.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from letzpocket.core.exceptions import (
    ConfigurationError,
    ProviderError,
    ProviderTimeoutError,
)
from letzpocket.core.timeutils import as_utc, utcnow
from letzpocket.models.usage_log import UsageStatus
from letzpocket.services.propertydata import (
    PAYLOAD_TYPES,
    DataType,
    Payload,
    ValuationData,
)
from letzpocket.stores.cache_store import CacheStore

logger = structlog.get_logger(__name__)

FetchFn = Callable[[], Awaitable[Payload]]


@dataclass(frozen=True)
class CacheStrategy:
    """How long one data type is cached and when it is refreshed early."""

    cache_duration_days: int
    force_refresh_threshold_days: int | None = None
    credit_cost: int = 1

    def __post_init__(self) -> None:
        if self.cache_duration_days <= 0:
            raise ConfigurationError("Cache duration must be positive")
        threshold = self.force_refresh_threshold_days
        if threshold is not None and not 0 <= threshold < self.cache_duration_days:
            raise ConfigurationError(
                "Force-refresh threshold must be shorter than the cache duration",
                details={
                    "cache_duration_days": self.cache_duration_days,
                    "force_refresh_threshold_days": threshold,
                },
            )

    @property
    def duration(self) -> timedelta:
        return timedelta(days=self.cache_duration_days)

    @property
    def refresh_after(self) -> timedelta | None:
        if self.force_refresh_threshold_days is None:
            return None
        return timedelta(days=self.force_refresh_threshold_days)


CACHE_STRATEGIES: dict[DataType, CacheStrategy] = {
    DataType.VALUATION: CacheStrategy(30, 7),
    DataType.RENTS: CacheStrategy(30, 7),
    DataType.SOLD_PRICES: CacheStrategy(90, 14),
    DataType.GROWTH: CacheStrategy(90, 30),
    DataType.DEMOGRAPHICS: CacheStrategy(90, 30),
}


def validate_strategies(strategies: Mapping[DataType, CacheStrategy]) -> None:
    """Every data type must have exactly one strategy."""
    missing = [dt.value for dt in DataType if dt not in strategies]
    if missing:
        raise ConfigurationError(
            "Missing cache strategies", details={"data_types": missing}
        )


@dataclass
class CacheStats:
    """Cache statistics for dashboards."""

    total_cached_entries: int
    cache_hit_rate: float
    total_api_calls: int
    credits_used: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_cached_entries": self.total_cached_entries,
            "cache_hit_rate": self.cache_hit_rate,
            "total_api_calls": self.total_api_calls,
            "credits_used": self.credits_used,
        }


@dataclass
class CacheCounters:
    """In-process counters since startup."""

    hits: int = 0
    misses: int = 0
    stale_served: int = 0
    provider_calls: int = 0
    provider_errors: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class ResponseCacheManager:
    """Cache-or-fetch for PropertyData responses.

    Usage:
        ```python
        manager = ResponseCacheManager(CacheStore(session_factory))
        rents = await manager.get_cached_data(
            DataType.RENTS, "SW1A1AA", lambda: client.fetch_rents("SW1A 1AA")
        )
        ```
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        strategies: Mapping[DataType, CacheStrategy] | None = None,
        fetch_timeout: float | None = 10.0,
    ) -> None:
        """Initialize the cache manager.

        Args:
            store: Persisted cache, history and usage log
            strategies: Strategy table override
            fetch_timeout: Seconds before a fetch counts as failed (None = no bound)
        """
        self.store = store
        self.strategies = dict(
            strategies if strategies is not None else CACHE_STRATEGIES
        )
        validate_strategies(self.strategies)
        self.fetch_timeout = fetch_timeout
        self.counters = CacheCounters()

    def strategy_for(self, data_type: DataType | str) -> CacheStrategy:
        """Strategy for a data type.

        Raises:
            ConfigurationError: Unknown data type
        """
        try:
            return self.strategies[DataType(data_type)]
        except (KeyError, ValueError) as e:
            raise ConfigurationError(
                f"No cache strategy for data type: {data_type}",
                details={"data_type": str(data_type)},
            ) from e

    async def lookup(self, data_type: DataType | str, postcode: str) -> Payload | None:
        """Cached payload that would be served without a fetch, if any."""
        strategy = self.strategy_for(data_type)
        dt = DataType(data_type)
        now = utcnow()
        entry = await self.store.get_live(postcode, dt.value, now)
        if entry is None:
            return None
        refresh_after = strategy.refresh_after
        if refresh_after is not None and now - as_utc(entry.cached_at) > refresh_after:
            return None
        return self._decode(dt, entry.api_response)

    async def get_cached_data(
        self,
        data_type: DataType | str,
        postcode: str,
        fetch_fn: FetchFn,
        *,
        property_id: UUID | None = None,
        before_fetch: Callable[[], Awaitable[None]] | None = None,
    ) -> Payload:
        """Return cached data for (postcode, data_type), fetching when needed.

        Args:
            data_type: Which analytics category
            postcode: Normalized postcode used as the cache key
            fetch_fn: Zero-argument coroutine factory performing the live call
            property_id: Owning property, stored on new entries
            before_fetch: Called once before a live fetch, e.g. to charge credits

        Returns:
            The typed payload

        Raises:
            ConfigurationError: Unknown data type
            InsufficientCreditsError: Raised by before_fetch
            ProviderError: Fetch failed and no entry exists at all
        """
        strategy = self.strategy_for(data_type)
        dt = DataType(data_type)

        cached = await self.lookup(dt, postcode)
        if cached is not None:
            self.counters.hits += 1
            logger.debug("cache_hit", postcode=postcode, data_type=dt.value)
            return cached

        self.counters.misses += 1
        logger.debug("cache_miss", postcode=postcode, data_type=dt.value)

        if before_fetch is not None:
            await before_fetch()

        try:
            payload = await self._fetch(dt, postcode, fetch_fn)
        except ProviderError as e:
            stale = await self.store.get_latest(postcode, dt.value)
            if stale is None:
                raise
            self.counters.stale_served += 1
            logger.warning(
                "stale_cache_served",
                postcode=postcode,
                data_type=dt.value,
                cached_at=as_utc(stale.cached_at).isoformat(),
                error=e.message,
            )
            return self._decode(dt, stale.api_response)

        await self._store_fresh(dt, postcode, payload, strategy, property_id)
        return payload

    async def get_cache_stats(self) -> CacheStats:
        """Totals over the persisted cache plus the in-process hit rate."""
        usage = await self.store.usage_counts()
        return CacheStats(
            total_cached_entries=await self.store.count_entries(),
            cache_hit_rate=self.counters.hit_rate,
            total_api_calls=sum(
                usage.get(status, 0) for status in UsageStatus.provider_statuses()
            ),
            credits_used=await self.store.total_credits(),
        )

    async def invalidate_property(self, property_id: UUID) -> int:
        """Delete every cache entry of a property."""
        count = await self.store.delete_for_property(property_id)
        logger.info("cache_invalidated", property_id=str(property_id), count=count)
        return count

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    async def _fetch(self, dt: DataType, postcode: str, fetch_fn: FetchFn) -> Payload:
        """Run one live fetch and record it in the usage log."""
        self.counters.provider_calls += 1
        try:
            if self.fetch_timeout is None:
                payload = await fetch_fn()
            else:
                payload = await asyncio.wait_for(fetch_fn(), self.fetch_timeout)
        except TimeoutError as e:
            self.counters.provider_errors += 1
            await self._log_usage(dt, postcode, UsageStatus.ERROR)
            raise ProviderTimeoutError(details={"endpoint": dt.endpoint}) from e
        except ProviderError:
            self.counters.provider_errors += 1
            await self._log_usage(dt, postcode, UsageStatus.ERROR)
            raise

        await self._log_usage(dt, postcode, UsageStatus.SUCCESS)
        return payload

    async def _store_fresh(
        self,
        dt: DataType,
        postcode: str,
        payload: Payload,
        strategy: CacheStrategy,
        property_id: UUID | None,
    ) -> None:
        now = utcnow()
        try:
            await self.store.save_entry(
                postcode=postcode,
                data_type=dt.value,
                payload=payload.to_dict(),
                cached_at=now,
                expires_at=now + strategy.duration,
                cost=strategy.credit_cost,
                property_id=property_id,
            )
            if isinstance(payload, ValuationData):
                await self.store.record_valuation(
                    postcode=postcode,
                    valuation_date=now,
                    rental_value=payload.rental_value,
                    lower=payload.confidence_interval.lower,
                    upper=payload.confidence_interval.upper,
                    property_id=property_id,
                )
        except SQLAlchemyError as e:
            logger.warning(
                "cache_set_failed",
                postcode=postcode,
                data_type=dt.value,
                error=str(e),
            )

    async def _log_usage(
        self, dt: DataType, postcode: str, status: UsageStatus
    ) -> None:
        try:
            await self.store.log_usage(
                endpoint=dt.endpoint,
                status=status.value,
                credits_used=self.strategies[dt].credit_cost,
                request_params={"postcode": postcode, "data_type": dt.value},
            )
        except SQLAlchemyError as e:
            logger.warning("usage_log_failed", endpoint=dt.endpoint, error=str(e))

    @staticmethod
    def _decode(dt: DataType, data: dict[str, Any]) -> Payload:
        return PAYLOAD_TYPES[dt].from_dict(data)
