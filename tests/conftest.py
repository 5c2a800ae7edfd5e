"""Pytest configuration and fixtures for LetzPocket tests.

This module provides reusable fixtures for:
- Settings overrides
- File-backed SQLite session factory and stores
- Sample PropertyData payloads
- Async test client with mocked services
"""

from collections.abc import AsyncGenerator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from letzpocket.config import Settings
from letzpocket.core.database import build_engine, build_session_factory, create_tables
from letzpocket.services.propertydata import (
    ConfidenceInterval,
    DemographicsData,
    GrowthData,
    RentalMarketData,
    SoldPricesData,
    ValuationData,
)
from letzpocket.stores import CacheStore, QuotaStore

# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test-specific settings."""
    return Settings(
        app_env="development",  # type: ignore[arg-type]
        debug=False,
        log_level="DEBUG",  # type: ignore[arg-type]
        log_format="console",  # type: ignore[arg-type]
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'letzpocket-test.db'}",
        database_auto_create=True,
        propertydata_api_key="test-propertydata-key",  # type: ignore[arg-type]
        propertydata_base_url="https://api.propertydata.test",
        quota_reset_enabled=False,
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def session_factory(
    test_settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a fresh SQLite file with all tables created."""
    engine = build_engine(test_settings)
    await create_tables(engine)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def cache_store(session_factory: async_sessionmaker[AsyncSession]) -> CacheStore:
    return CacheStore(session_factory)


@pytest.fixture
def quota_store(session_factory: async_sessionmaker[AsyncSession]) -> QuotaStore:
    return QuotaStore(session_factory)


# =============================================================================
# Sample Payloads
# =============================================================================


@pytest.fixture
def sample_valuation() -> ValuationData:
    return ValuationData(
        rental_value=2150.0,
        confidence_interval=ConfidenceInterval(lower=1950.0, upper=2350.0),
        property_type="flat",
        postcode="SW1A 1AA",
        radius=0.5,
    )


@pytest.fixture
def sample_rents() -> RentalMarketData:
    return RentalMarketData(
        average_rent=1875.0,
        confidence_interval=ConfidenceInterval(lower=1700.0, upper=2050.0),
        sample_size=42,
        postcode="SW1A 1AA",
        sample_from_town_center=True,
    )


@pytest.fixture
def sample_sold_prices() -> SoldPricesData:
    return SoldPricesData(
        average_price=685000.0,
        confidence_interval=ConfidenceInterval(lower=610000.0, upper=760000.0),
        sample_size=18,
        postcode="SW1A 1AA",
    )


@pytest.fixture
def sample_growth() -> GrowthData:
    return GrowthData(
        yearly_growth=[2.1, 3.4, -0.8, 4.2, 1.9],
        five_year_growth=11.2,
        postcode="SW1A 1AA",
    )


@pytest.fixture
def sample_demographics() -> DemographicsData:
    return DemographicsData(
        population=12840,
        average_age=38.5,
        household_income=52000.0,
        employment_rate=0.76,
    )


@pytest.fixture
def mock_client(
    sample_valuation: ValuationData,
    sample_rents: RentalMarketData,
    sample_sold_prices: SoldPricesData,
    sample_growth: GrowthData,
    sample_demographics: DemographicsData,
) -> MagicMock:
    """PropertyDataClient whose fetches all succeed."""
    client = MagicMock()
    client.is_configured = True
    client.fetch_valuation = AsyncMock(return_value=sample_valuation)
    client.fetch_rents = AsyncMock(return_value=sample_rents)
    client.fetch_sold_prices = AsyncMock(return_value=sample_sold_prices)
    client.fetch_growth = AsyncMock(return_value=sample_growth)
    client.fetch_demographics = AsyncMock(return_value=sample_demographics)
    client.close = AsyncMock()
    return client


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app(test_settings: Settings) -> FastAPI:
    """Create a test FastAPI application with test settings.

    The lifespan does not run under ASGITransport; tests install mocked
    services with ``app.dependency_overrides``.
    """
    from letzpocket.main import create_app

    return create_app(settings=test_settings)


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing.

    Usage:
        async def test_endpoint(async_client: AsyncClient):
            response = await async_client.get("/health/live")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
