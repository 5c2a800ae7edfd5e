"""Tests for PropertyDataService: single lookups, aggregation and batches."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from letzpocket.core.exceptions import (
    ConfigurationError,
    InsufficientCreditsError,
    ProviderError,
    ValidationError,
)
from letzpocket.services.analytics import (
    BATCH_ERROR_TYPE,
    BatchProperty,
    PropertyDataService,
)
from letzpocket.services.cache import ResponseCacheManager
from letzpocket.services.propertydata import (
    PropertyAnalytics,
    PropertyDetails,
    RentalMarketData,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_store() -> MagicMock:
    """CacheStore that never has anything cached."""
    store = MagicMock()
    store.get_live = AsyncMock(return_value=None)
    store.get_latest = AsyncMock(return_value=None)
    store.save_entry = AsyncMock()
    store.record_valuation = AsyncMock()
    store.log_usage = AsyncMock()
    return store


@pytest.fixture
def mock_quota() -> MagicMock:
    quota = MagicMock()
    quota.deduct_credits = AsyncMock()
    return quota


@pytest.fixture
def service(mock_client: MagicMock, mock_store: MagicMock) -> PropertyDataService:
    return PropertyDataService(mock_client, ResponseCacheManager(mock_store))


@pytest.fixture
def charging_service(
    mock_client: MagicMock, mock_store: MagicMock, mock_quota: MagicMock
) -> PropertyDataService:
    return PropertyDataService(
        mock_client, ResponseCacheManager(mock_store), mock_quota
    )


# =============================================================================
# Single Data Type Tests
# =============================================================================


class TestSingleLookups:
    @pytest.mark.asyncio
    async def test_cache_key_is_normalized_and_provider_gets_trimmed_postcode(
        self,
        service: PropertyDataService,
        mock_client: MagicMock,
        mock_store: MagicMock,
        sample_rents: RentalMarketData,
    ) -> None:
        result = await service.get_area_rents("  sw1a 1aa ")

        assert result == sample_rents
        mock_client.fetch_rents.assert_awaited_once_with("sw1a 1aa")
        assert mock_store.get_live.await_args.args[0] == "SW1A1AA"

    @pytest.mark.asyncio
    async def test_valuation_passes_details(
        self, service: PropertyDataService, mock_client: MagicMock
    ) -> None:
        details = PropertyDetails(property_type="flat", bedrooms=2)

        await service.get_property_valuation("SW1A 1AA", details)

        mock_client.fetch_valuation.assert_awaited_once_with("SW1A 1AA", details)

    @pytest.mark.asyncio
    async def test_blank_postcode_rejected(self, service: PropertyDataService) -> None:
        with pytest.raises(ValidationError):
            await service.get_growth_data("   ")

    @pytest.mark.asyncio
    async def test_live_fetch_charges_user(
        self, charging_service: PropertyDataService, mock_quota: MagicMock
    ) -> None:
        await charging_service.get_sold_prices("E1 6AN", user_id="user-1")

        mock_quota.deduct_credits.assert_awaited_once_with(
            "user-1", 1, "sold_prices", {"postcode": "E1 6AN"}
        )

    @pytest.mark.asyncio
    async def test_no_user_no_charge(
        self, charging_service: PropertyDataService, mock_quota: MagicMock
    ) -> None:
        await charging_service.get_demographics("E1 6AN")

        mock_quota.deduct_credits.assert_not_called()

    @pytest.mark.asyncio
    async def test_insufficient_credits_blocks_fetch(
        self,
        charging_service: PropertyDataService,
        mock_quota: MagicMock,
        mock_client: MagicMock,
    ) -> None:
        mock_quota.deduct_credits.side_effect = InsufficientCreditsError(
            required=1, available=0, user_id="user-1"
        )

        with pytest.raises(InsufficientCreditsError):
            await charging_service.get_area_rents("E1 6AN", user_id="user-1")

        mock_client.fetch_rents.assert_not_called()

    @pytest.mark.asyncio
    async def test_unconfigured_client_charges_nothing(
        self,
        charging_service: PropertyDataService,
        mock_quota: MagicMock,
        mock_client: MagicMock,
    ) -> None:
        mock_client.is_configured = False
        mock_client.fetch_rents.side_effect = ConfigurationError(
            "PropertyData API key not configured"
        )

        with pytest.raises(ConfigurationError):
            await charging_service.get_area_rents("E1 6AN", user_id="user-1")

        mock_quota.deduct_credits.assert_not_called()


# =============================================================================
# Aggregation Tests
# =============================================================================


class TestPropertyAnalytics:
    @pytest.mark.asyncio
    async def test_all_data_types_succeed(
        self, service: PropertyDataService, sample_rents: RentalMarketData
    ) -> None:
        analytics = await service.get_property_analytics("SW1A 1AA")

        assert analytics.postcode == "SW1A 1AA"
        assert analytics.valuation is not None
        assert analytics.rental_market == sample_rents
        assert analytics.sold_prices is not None
        assert analytics.growth is not None
        assert analytics.demographics is not None
        assert analytics.errors == []

    @pytest.mark.asyncio
    async def test_one_failure_is_isolated(
        self, service: PropertyDataService, mock_client: MagicMock
    ) -> None:
        error = ProviderError("PropertyData API error: 500")
        mock_client.fetch_rents.side_effect = error

        analytics = await service.get_property_analytics("SW1A 1AA")

        assert analytics.rental_market is None
        assert analytics.valuation is not None
        assert [e.type for e in analytics.errors] == ["rents"]
        assert analytics.errors[0].error == "PropertyData API error: 500"

    @pytest.mark.asyncio
    async def test_total_failure_still_returns_result(
        self, service: PropertyDataService, mock_client: MagicMock
    ) -> None:
        failure = ProviderError("PropertyData API error: 503")
        for name in (
            "fetch_valuation",
            "fetch_rents",
            "fetch_sold_prices",
            "fetch_growth",
            "fetch_demographics",
        ):
            getattr(mock_client, name).side_effect = failure

        analytics = await service.get_property_analytics("ZZ9 9ZZ")

        assert isinstance(analytics, PropertyAnalytics)
        assert analytics.valuation is None
        assert analytics.rental_market is None
        assert analytics.sold_prices is None
        assert analytics.growth is None
        assert analytics.demographics is None
        assert sorted(e.type for e in analytics.errors) == [
            "demographics",
            "growth",
            "rents",
            "sold_prices",
            "valuation",
        ]


# =============================================================================
# Batch Tests
# =============================================================================


class TestBatchPropertyAnalytics:
    @pytest.mark.asyncio
    async def test_groups_by_postcode_and_keeps_order(
        self, service: PropertyDataService, mock_client: MagicMock
    ) -> None:
        flat = PropertyDetails(property_type="flat", bedrooms=2)
        house = PropertyDetails(property_type="house", bedrooms=4)
        properties = [
            BatchProperty("SW1A 1AA", flat),
            BatchProperty("E1 6AN"),
            BatchProperty(" SW1A 1AA ", house),
        ]

        results = await service.batch_property_analytics(properties)

        assert [r.postcode for r in results] == ["SW1A 1AA", "E1 6AN", "SW1A 1AA"]
        assert mock_client.fetch_valuation.await_count == 2
        mock_client.fetch_valuation.assert_any_await("SW1A 1AA", flat)
        assert all(not r.errors for r in results)

    @pytest.mark.asyncio
    async def test_empty_batch(
        self, charging_service: PropertyDataService, mock_quota: MagicMock
    ) -> None:
        assert await charging_service.batch_property_analytics([], user_id="u") == []
        mock_quota.deduct_credits.assert_not_called()

    @pytest.mark.asyncio
    async def test_group_failure_marks_every_member(
        self, service: PropertyDataService
    ) -> None:
        original = service.get_property_analytics

        async def flaky(postcode: str, *args, **kwargs) -> PropertyAnalytics:
            if postcode == "E1 6AN":
                raise RuntimeError("worker crashed")
            return await original(postcode, *args, **kwargs)

        service.get_property_analytics = flaky  # type: ignore[method-assign]
        properties = [
            BatchProperty("E1 6AN"),
            BatchProperty("SW1A 1AA"),
            BatchProperty("E1 6AN"),
        ]

        results = await service.batch_property_analytics(properties)

        for index in (0, 2):
            failed = results[index]
            assert failed.postcode == "E1 6AN"
            assert failed.valuation is None
            assert [e.type for e in failed.errors] == [BATCH_ERROR_TYPE]
            assert failed.errors[0].error == "worker crashed"
        assert results[1].errors == []
        assert results[1].valuation is not None

    @pytest.mark.asyncio
    async def test_batch_charges_one_credit_up_front(
        self, charging_service: PropertyDataService, mock_quota: MagicMock
    ) -> None:
        await charging_service.batch_property_analytics(
            [BatchProperty("E1 6AN")], user_id="user-1"
        )

        first = mock_quota.deduct_credits.await_args_list[0]
        assert first.args[:3] == ("user-1", 1, "batch")
        # one batch charge plus five live fetches
        assert mock_quota.deduct_credits.await_count == 6

    @pytest.mark.asyncio
    async def test_batch_not_charged_without_api_key(
        self,
        charging_service: PropertyDataService,
        mock_quota: MagicMock,
        mock_client: MagicMock,
    ) -> None:
        mock_client.is_configured = False

        await charging_service.batch_property_analytics(
            [BatchProperty("E1 6AN")], user_id="user-1"
        )

        mock_quota.deduct_credits.assert_not_called()
