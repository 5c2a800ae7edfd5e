"""Cache-or-fetch end to end against SQLite."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from letzpocket.config import Settings
from letzpocket.core.exceptions import ConfigurationError, ProviderError
from letzpocket.core.timeutils import utcnow
from letzpocket.services.analytics import PropertyDataService
from letzpocket.services.cache import ResponseCacheManager
from letzpocket.services.propertydata import (
    DataType,
    PropertyDataClient,
    RentalMarketData,
)
from letzpocket.services.quota import QuotaManager
from letzpocket.stores import CacheStore, QuotaStore


@pytest.fixture
def cache_manager(cache_store: CacheStore) -> ResponseCacheManager:
    return ResponseCacheManager(cache_store)


@pytest.mark.asyncio
async def test_second_lookup_is_served_from_cache(
    cache_manager: ResponseCacheManager,
    cache_store: CacheStore,
    sample_rents: RentalMarketData,
) -> None:
    fetch = AsyncMock(return_value=sample_rents)

    first = await cache_manager.get_cached_data(DataType.RENTS, "SW1A1AA", fetch)
    second = await cache_manager.get_cached_data(DataType.RENTS, "SW1A1AA", fetch)

    assert first == second == sample_rents
    fetch.assert_awaited_once()
    assert await cache_store.count_entries() == 1
    stats = await cache_manager.get_cache_stats()
    assert stats.cache_hit_rate == 0.5
    assert stats.total_api_calls == 1


@pytest.mark.asyncio
async def test_expired_entry_served_when_provider_down(
    cache_manager: ResponseCacheManager,
    cache_store: CacheStore,
    sample_rents: RentalMarketData,
) -> None:
    now = utcnow()
    await cache_store.save_entry(
        postcode="SW1A1AA",
        data_type="rents",
        payload=sample_rents.to_dict(),
        cached_at=now - timedelta(days=60),
        expires_at=now - timedelta(days=30),
        cost=1,
    )
    fetch = AsyncMock(side_effect=ProviderError("PropertyData API error: 503"))

    result = await cache_manager.get_cached_data(DataType.RENTS, "SW1A1AA", fetch)

    assert result == sample_rents
    assert await cache_store.usage_counts() == {"error": 1}


@pytest.mark.asyncio
async def test_valuation_history_grows_per_fetch(
    cache_manager: ResponseCacheManager,
    cache_store: CacheStore,
    mock_client: MagicMock,
) -> None:
    service = PropertyDataService(mock_client, cache_manager)

    await service.get_property_valuation("SW1A 1AA")

    history = await cache_store.value_history("SW1A1AA")
    assert len(history) == 1
    assert history[0].rental_value == 2150.0


@pytest.mark.asyncio
async def test_cached_analytics_cost_nothing(
    cache_manager: ResponseCacheManager,
    quota_store: QuotaStore,
    mock_client: MagicMock,
) -> None:
    quota_manager = QuotaManager(quota_store)
    service = PropertyDataService(mock_client, cache_manager, quota_manager)

    first = await service.get_property_analytics("SW1A 1AA", user_id="user-1")
    after_first = await quota_manager.get_user_quota("user-1")
    second = await service.get_property_analytics("SW1A 1AA", user_id="user-1")
    after_second = await quota_manager.get_user_quota("user-1")

    assert first.errors == [] and second.errors == []
    assert after_first.remaining_credits == 5
    assert after_second.remaining_credits == 5
    assert mock_client.fetch_rents.await_count == 1


@pytest.mark.asyncio
async def test_missing_api_key_leaves_balance_untouched(
    cache_manager: ResponseCacheManager,
    quota_store: QuotaStore,
    test_settings: Settings,
) -> None:
    client = PropertyDataClient(
        test_settings.model_copy(update={"propertydata_api_key": SecretStr("")})
    )
    quota_manager = QuotaManager(quota_store)
    service = PropertyDataService(client, cache_manager, quota_manager)
    before = await quota_manager.get_user_quota("user-1")

    with pytest.raises(ConfigurationError):
        await service.get_area_rents("SW1A 1AA", user_id="user-1")
    analytics = await service.get_property_analytics("SW1A 1AA", user_id="user-1")

    quota_manager.forget("user-1")
    after = await quota_manager.get_user_quota("user-1")
    assert before.remaining_credits == after.remaining_credits == 10
    assert len(analytics.errors) == 5
