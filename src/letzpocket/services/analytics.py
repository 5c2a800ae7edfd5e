"""PropertyDataService - cached, quota-aware access to PropertyData.

This is the entry point used by the API layer. It normalizes postcodes,
routes every lookup through the ResponseCacheManager, charges credits for
live fetches when a user is given, and assembles full analytics for one
postcode or a batch of properties.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import structlog

from letzpocket.core.exceptions import BatchGroupError, ValidationError
from letzpocket.core.logging import log_context
from letzpocket.services.cache import FetchFn, ResponseCacheManager
from letzpocket.services.propertydata import (
    AnalyticsError,
    DataType,
    DemographicsData,
    GrowthData,
    Payload,
    PropertyAnalytics,
    PropertyDataClient,
    PropertyDetails,
    RentalMarketData,
    SoldPricesData,
    ValuationData,
    normalize_postcode,
)
from letzpocket.services.quota import BATCH_ENDPOINT, QuotaManager

logger = structlog.get_logger(__name__)

# PropertyAnalytics attribute filled by each data type
_ANALYTICS_FIELDS: dict[DataType, str] = {
    DataType.VALUATION: "valuation",
    DataType.RENTS: "rental_market",
    DataType.SOLD_PRICES: "sold_prices",
    DataType.GROWTH: "growth",
    DataType.DEMOGRAPHICS: "demographics",
}

BATCH_ERROR_TYPE = "batch_error"


@dataclass
class BatchProperty:
    """One property in a batch request."""

    postcode: str
    details: PropertyDetails | None = None
    property_id: UUID | None = None


class PropertyDataService:
    """Cached PropertyData lookups with optional credit charging.

    Usage:
        ```python
        service = PropertyDataService(client, cache_manager, quota_manager)
        analytics = await service.get_property_analytics("SW1A 1AA")
        ```
    """

    def __init__(
        self,
        client: PropertyDataClient,
        cache_manager: ResponseCacheManager,
        quota_manager: QuotaManager | None = None,
        *,
        batch_concurrency: int = 4,
    ) -> None:
        """Initialize the service.

        Args:
            client: PropertyData HTTP client
            cache_manager: Cache-or-fetch layer
            quota_manager: Charges credits when a user id is supplied
            batch_concurrency: Postcode groups analysed at once in a batch
        """
        self.client = client
        self.cache_manager = cache_manager
        self.quota_manager = quota_manager
        self.batch_concurrency = max(1, batch_concurrency)

    # -------------------------------------------------------------------------
    # Single data types
    # -------------------------------------------------------------------------

    async def get_property_valuation(
        self,
        postcode: str,
        details: PropertyDetails | None = None,
        *,
        user_id: str | None = None,
        property_id: UUID | None = None,
    ) -> ValuationData:
        """Rental valuation for a property."""
        return await self._get(
            DataType.VALUATION,
            postcode,
            lambda: self.client.fetch_valuation(postcode.strip(), details),
            user_id=user_id,
            property_id=property_id,
        )

    async def get_area_rents(
        self,
        postcode: str,
        *,
        user_id: str | None = None,
        property_id: UUID | None = None,
    ) -> RentalMarketData:
        return await self._get(
            DataType.RENTS,
            postcode,
            lambda: self.client.fetch_rents(postcode.strip()),
            user_id=user_id,
            property_id=property_id,
        )

    async def get_sold_prices(
        self,
        postcode: str,
        *,
        user_id: str | None = None,
        property_id: UUID | None = None,
    ) -> SoldPricesData:
        return await self._get(
            DataType.SOLD_PRICES,
            postcode,
            lambda: self.client.fetch_sold_prices(postcode.strip()),
            user_id=user_id,
            property_id=property_id,
        )

    async def get_growth_data(
        self,
        postcode: str,
        *,
        user_id: str | None = None,
        property_id: UUID | None = None,
    ) -> GrowthData:
        return await self._get(
            DataType.GROWTH,
            postcode,
            lambda: self.client.fetch_growth(postcode.strip()),
            user_id=user_id,
            property_id=property_id,
        )

    async def get_demographics(
        self,
        postcode: str,
        *,
        user_id: str | None = None,
        property_id: UUID | None = None,
    ) -> DemographicsData:
        return await self._get(
            DataType.DEMOGRAPHICS,
            postcode,
            lambda: self.client.fetch_demographics(postcode.strip()),
            user_id=user_id,
            property_id=property_id,
        )

    async def get_data(
        self,
        data_type: DataType,
        postcode: str,
        details: PropertyDetails | None = None,
        *,
        user_id: str | None = None,
        property_id: UUID | None = None,
    ) -> Payload:
        """Dispatch to the getter for ``data_type``."""
        if data_type is DataType.VALUATION:
            return await self.get_property_valuation(
                postcode, details, user_id=user_id, property_id=property_id
            )
        getters = {
            DataType.RENTS: self.get_area_rents,
            DataType.SOLD_PRICES: self.get_sold_prices,
            DataType.GROWTH: self.get_growth_data,
            DataType.DEMOGRAPHICS: self.get_demographics,
        }
        return await getters[data_type](
            postcode, user_id=user_id, property_id=property_id
        )

    # -------------------------------------------------------------------------
    # Aggregation
    # -------------------------------------------------------------------------

    async def get_property_analytics(
        self,
        postcode: str,
        details: PropertyDetails | None = None,
        *,
        user_id: str | None = None,
        property_id: UUID | None = None,
    ) -> PropertyAnalytics:
        """All five data types for a postcode, fetched concurrently.

        A failed data type leaves its field as None and adds an entry to
        ``errors``; the call itself never fails because of one.
        """
        data_types = list(_ANALYTICS_FIELDS)
        results = await asyncio.gather(
            *(
                self.get_data(
                    dt, postcode, details, user_id=user_id, property_id=property_id
                )
                for dt in data_types
            ),
            return_exceptions=True,
        )

        analytics = PropertyAnalytics(postcode=postcode.strip())
        for dt, result in zip(data_types, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                analytics.errors.append(
                    AnalyticsError(type=dt.value, error=_error_message(result))
                )
                logger.warning(
                    "analytics_fetch_failed",
                    postcode=analytics.postcode,
                    data_type=dt.value,
                    error=_error_message(result),
                )
                continue
            setattr(analytics, _ANALYTICS_FIELDS[dt], result)

        return analytics

    async def batch_property_analytics(
        self,
        properties: Sequence[BatchProperty],
        *,
        user_id: str | None = None,
    ) -> list[PropertyAnalytics]:
        """Analytics for many properties, fetching each postcode once.

        Properties are grouped by trimmed postcode and each group is
        analysed with its first member's details. Results are returned in
        input order. If a whole group fails unexpectedly, each of its
        members gets an empty result with a ``batch_error`` entry.
        """
        if not properties:
            return []

        if (
            user_id is not None
            and self.quota_manager is not None
            and self.client.is_configured
        ):
            await self.quota_manager.deduct_credits(
                user_id,
                1,
                BATCH_ENDPOINT,
                {"properties": len(properties)},
            )

        groups: dict[str, list[int]] = {}
        for index, prop in enumerate(properties):
            groups.setdefault(prop.postcode.strip(), []).append(index)

        logger.info(
            "batch_started",
            properties=len(properties),
            postcodes=len(groups),
        )

        semaphore = asyncio.Semaphore(self.batch_concurrency)

        async def run_group(postcode: str, indices: list[int]) -> PropertyAnalytics:
            first = properties[indices[0]]
            async with semaphore:
                try:
                    return await self.get_property_analytics(
                        postcode,
                        first.details,
                        user_id=user_id,
                        property_id=first.property_id,
                    )
                except Exception as e:
                    raise BatchGroupError(postcode, e) from e

        postcodes = list(groups)
        with log_context(batch_user_id=user_id, batch_size=len(properties)):
            outcomes = await asyncio.gather(
                *(run_group(pc, groups[pc]) for pc in postcodes),
                return_exceptions=True,
            )

        results: list[PropertyAnalytics | None] = [None] * len(properties)
        for postcode, outcome in zip(postcodes, outcomes, strict=True):
            if isinstance(outcome, BaseException) and not isinstance(
                outcome, Exception
            ):
                raise outcome
            for index in groups[postcode]:
                if isinstance(outcome, Exception):
                    results[index] = PropertyAnalytics(
                        postcode=postcode,
                        errors=[
                            AnalyticsError(
                                type=BATCH_ERROR_TYPE, error=_error_message(outcome)
                            )
                        ],
                    )
                else:
                    results[index] = outcome

        failed = sum(1 for o in outcomes if isinstance(o, Exception))
        logger.info("batch_completed", postcodes=len(groups), failed_groups=failed)
        return [r for r in results if r is not None]

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    async def _get(
        self,
        data_type: DataType,
        postcode: str,
        fetch_fn: FetchFn,
        *,
        user_id: str | None,
        property_id: UUID | None,
    ) -> Any:
        if not postcode or not postcode.strip():
            raise ValidationError("Postcode is required", field="postcode")

        before_fetch: Callable[[], Awaitable[None]] | None = None
        # Without an API key a live fetch fails before reaching PropertyData.
        if (
            user_id is not None
            and self.quota_manager is not None
            and self.client.is_configured
        ):
            quota_manager = self.quota_manager
            cost = self.cache_manager.strategy_for(data_type).credit_cost

            async def charge() -> None:
                await quota_manager.deduct_credits(
                    user_id,
                    cost,
                    data_type.value,
                    {"postcode": postcode.strip()},
                )

            before_fetch = charge

        return await self.cache_manager.get_cached_data(
            data_type,
            normalize_postcode(postcode),
            fetch_fn,
            property_id=property_id,
            before_fetch=before_fetch,
        )


def _error_message(error: BaseException) -> str:
    message = getattr(error, "message", None) or str(error)
    return message or type(error).__name__
