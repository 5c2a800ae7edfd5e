"""PropertyData API client.

Async access to the PropertyData valuation API (https://propertydata.co.uk/api).
Every endpoint is a GET keyed by postcode and authenticated with an API key
query parameter. Responses are converted to canonical DTOs so that the
cache and aggregation layers never handle raw provider JSON.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx
import structlog

from letzpocket.config import Settings, get_settings
from letzpocket.core.exceptions import (
    ConfigurationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)

logger = structlog.get_logger(__name__)


class DataType(str, Enum):
    """Analytics categories fetched from PropertyData."""

    VALUATION = "valuation"
    RENTS = "rents"
    SOLD_PRICES = "sold_prices"
    GROWTH = "growth"
    DEMOGRAPHICS = "demographics"

    @property
    def endpoint(self) -> str:
        """Provider path for this data type."""
        return _ENDPOINTS[self]


_ENDPOINTS: dict[DataType, str] = {
    DataType.VALUATION: "/valuation-rent",
    DataType.RENTS: "/rents",
    DataType.SOLD_PRICES: "/sold-prices",
    DataType.GROWTH: "/growth",
    DataType.DEMOGRAPHICS: "/demographics",
}


def normalize_postcode(postcode: str) -> str:
    """Cache-key form of a UK postcode: uppercase, no whitespace."""
    return "".join(postcode.split()).upper()


# -----------------------------------------------------------------------------
# DTOs (Canonical Internal Models - Anti-Corruption Layer)
# -----------------------------------------------------------------------------


def _number(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _integer(value: Any, default: int = 0) -> int:
    return int(_number(value, default))


@dataclass
class ConfidenceInterval:
    """Lower/upper bounds around an estimate."""

    lower: float
    upper: float

    def to_dict(self) -> dict[str, float]:
        return {"lower": self.lower, "upper": self.upper}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ConfidenceInterval":
        data = data or {}
        return cls(lower=_number(data.get("lower")), upper=_number(data.get("upper")))


@dataclass
class ValuationData:
    """Rental valuation for one property."""

    rental_value: float
    confidence_interval: ConfidenceInterval
    property_type: str
    postcode: str
    radius: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict for caching."""
        return {
            "rental_value": self.rental_value,
            "confidence_interval": self.confidence_interval.to_dict(),
            "property_type": self.property_type,
            "postcode": self.postcode,
            "radius": self.radius,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ValuationData":
        """Create from a cached dict or a provider payload."""
        radius = data.get("radius")
        return cls(
            rental_value=_number(data.get("rental_value")),
            confidence_interval=ConfidenceInterval.from_dict(
                data.get("confidence_interval")
            ),
            property_type=str(data.get("property_type") or ""),
            postcode=str(data.get("postcode") or ""),
            radius=_number(radius) if radius is not None else None,
        )


@dataclass
class RentalMarketData:
    """Average asking rents for an area."""

    average_rent: float
    confidence_interval: ConfidenceInterval
    sample_size: int
    postcode: str
    sample_from_town_center: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "average_rent": self.average_rent,
            "confidence_interval": self.confidence_interval.to_dict(),
            "sample_size": self.sample_size,
            "postcode": self.postcode,
            "sample_from_town_center": self.sample_from_town_center,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RentalMarketData":
        return cls(
            average_rent=_number(data.get("average_rent")),
            confidence_interval=ConfidenceInterval.from_dict(
                data.get("confidence_interval")
            ),
            sample_size=_integer(data.get("sample_size")),
            postcode=str(data.get("postcode") or ""),
            sample_from_town_center=data.get("sample_from_town_center"),
        )


@dataclass
class SoldPricesData:
    """Average achieved sale prices for an area."""

    average_price: float
    confidence_interval: ConfidenceInterval
    sample_size: int
    postcode: str
    sample_from_town_center: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "average_price": self.average_price,
            "confidence_interval": self.confidence_interval.to_dict(),
            "sample_size": self.sample_size,
            "postcode": self.postcode,
            "sample_from_town_center": self.sample_from_town_center,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SoldPricesData":
        return cls(
            average_price=_number(data.get("average_price")),
            confidence_interval=ConfidenceInterval.from_dict(
                data.get("confidence_interval")
            ),
            sample_size=_integer(data.get("sample_size")),
            postcode=str(data.get("postcode") or ""),
            sample_from_town_center=data.get("sample_from_town_center"),
        )


@dataclass
class GrowthData:
    """Capital growth history for an area."""

    yearly_growth: list[float]
    five_year_growth: float
    postcode: str
    sample_from_town_center: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "yearly_growth": list(self.yearly_growth),
            "five_year_growth": self.five_year_growth,
            "postcode": self.postcode,
            "sample_from_town_center": self.sample_from_town_center,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GrowthData":
        return cls(
            yearly_growth=[_number(v) for v in data.get("yearly_growth") or []],
            five_year_growth=_number(data.get("five_year_growth")),
            postcode=str(data.get("postcode") or ""),
            sample_from_town_center=data.get("sample_from_town_center"),
        )


@dataclass
class DemographicsData:
    """Population and income profile for an area."""

    population: int
    average_age: float
    household_income: float
    employment_rate: float
    sample_from_town_center: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "population": self.population,
            "average_age": self.average_age,
            "household_income": self.household_income,
            "employment_rate": self.employment_rate,
            "sample_from_town_center": self.sample_from_town_center,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DemographicsData":
        return cls(
            population=_integer(data.get("population")),
            average_age=_number(data.get("average_age")),
            household_income=_number(data.get("household_income")),
            employment_rate=_number(data.get("employment_rate")),
            sample_from_town_center=data.get("sample_from_town_center"),
        )


Payload = (
    ValuationData | RentalMarketData | SoldPricesData | GrowthData | DemographicsData
)

PAYLOAD_TYPES: dict[DataType, type] = {
    DataType.VALUATION: ValuationData,
    DataType.RENTS: RentalMarketData,
    DataType.SOLD_PRICES: SoldPricesData,
    DataType.GROWTH: GrowthData,
    DataType.DEMOGRAPHICS: DemographicsData,
}


@dataclass
class PropertyDetails:
    """Optional attributes that sharpen a valuation."""

    property_type: str | None = None
    bedrooms: int | None = None
    construction_date: str | None = None
    finish_quality: str | None = None
    outdoor_space: str | None = None

    def to_params(self) -> dict[str, str]:
        """Query parameters for the set fields only."""
        params: dict[str, str] = {}
        if self.property_type:
            params["property_type"] = self.property_type
        if self.bedrooms:
            params["bedrooms"] = str(self.bedrooms)
        if self.construction_date:
            params["construction_date"] = self.construction_date
        if self.finish_quality:
            params["finish_quality"] = self.finish_quality
        if self.outdoor_space:
            params["outdoor_space"] = self.outdoor_space
        return params

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PropertyDetails":
        data = data or {}
        bedrooms = data.get("bedrooms")
        return cls(
            property_type=data.get("property_type"),
            bedrooms=int(bedrooms) if bedrooms not in (None, "") else None,
            construction_date=data.get("construction_date"),
            finish_quality=data.get("finish_quality"),
            outdoor_space=data.get("outdoor_space"),
        )


@dataclass
class AnalyticsError:
    """One failed data type inside a PropertyAnalytics result."""

    type: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "error": self.error}


@dataclass
class PropertyAnalytics:
    """Everything known about a postcode, assembled per request.

    Fields are None for data types that failed; each failure has a
    matching entry in ``errors``.
    """

    postcode: str
    valuation: ValuationData | None = None
    rental_market: RentalMarketData | None = None
    sold_prices: SoldPricesData | None = None
    growth: GrowthData | None = None
    demographics: DemographicsData | None = None
    errors: list[AnalyticsError] = field(default_factory=list)
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "postcode": self.postcode,
            "last_updated": self.last_updated.isoformat(),
            "valuation": self.valuation.to_dict() if self.valuation else None,
            "rental_market": (
                self.rental_market.to_dict() if self.rental_market else None
            ),
            "sold_prices": self.sold_prices.to_dict() if self.sold_prices else None,
            "growth": self.growth.to_dict() if self.growth else None,
            "demographics": self.demographics.to_dict() if self.demographics else None,
            "errors": [e.to_dict() for e in self.errors],
        }


# -----------------------------------------------------------------------------
# PropertyData Client
# -----------------------------------------------------------------------------


class PropertyDataClient:
    """Async client for the PropertyData API.

    Uses httpx for async HTTP requests. Knows nothing about caching or
    quotas: it performs exactly one provider call per method.

    Usage:
        ```python
        client = PropertyDataClient()
        rents = await client.fetch_rents("SW1A 1AA")
        await client.close()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Settings override (defaults to the cached settings)
            transport: Optional httpx transport, for tests
        """
        self._settings = settings or get_settings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        """True when an API key is available."""
        return self._settings.propertydata_configured

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._settings.propertydata_base_url,
                timeout=self._settings.propertydata_timeout,
                headers={
                    "Accept": "application/json",
                    "User-Agent": self._settings.propertydata_user_agent,
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch_valuation(
        self,
        postcode: str,
        details: PropertyDetails | None = None,
    ) -> ValuationData:
        """Rental valuation for a property at ``postcode``."""
        params = {"postcode": postcode.strip()}
        if details is not None:
            params.update(details.to_params())
        data = await self._request(DataType.VALUATION, params)
        return ValuationData.from_dict(data)

    async def fetch_rents(self, postcode: str) -> RentalMarketData:
        """Current rental market statistics for an area."""
        data = await self._request(DataType.RENTS, {"postcode": postcode.strip()})
        return RentalMarketData.from_dict(data)

    async def fetch_sold_prices(self, postcode: str) -> SoldPricesData:
        """Historical sold prices for an area."""
        data = await self._request(DataType.SOLD_PRICES, {"postcode": postcode.strip()})
        return SoldPricesData.from_dict(data)

    async def fetch_growth(self, postcode: str) -> GrowthData:
        """Five-year capital growth for an area."""
        data = await self._request(DataType.GROWTH, {"postcode": postcode.strip()})
        return GrowthData.from_dict(data)

    async def fetch_demographics(self, postcode: str) -> DemographicsData:
        """Demographic profile for an area."""
        data = await self._request(
            DataType.DEMOGRAPHICS, {"postcode": postcode.strip()}
        )
        return DemographicsData.from_dict(data)

    # -------------------------------------------------------------------------
    # Private Methods - API Fetching
    # -------------------------------------------------------------------------

    async def _request(
        self,
        data_type: DataType,
        params: dict[str, str],
    ) -> dict[str, Any]:
        """Perform one GET and return the unwrapped JSON body.

        Raises:
            ConfigurationError: No API key configured
            ProviderTimeoutError: The request exceeded the timeout
            ProviderError: Non-2xx status, transport error or bad body
        """
        if not self.is_configured:
            raise ConfigurationError("PropertyData API key not configured")

        client = await self._get_client()
        query = {
            **params,
            "key": self._settings.propertydata_api_key.get_secret_value(),
        }

        try:
            response = await client.get(data_type.endpoint, params=query)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error(
                "propertydata_timeout",
                endpoint=data_type.endpoint,
                postcode=params.get("postcode"),
            )
            raise ProviderTimeoutError() from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(
                "propertydata_request_failed",
                endpoint=data_type.endpoint,
                status_code=status_code,
                postcode=params.get("postcode"),
            )
            if status_code == 429:
                raise ProviderRateLimitError(
                    details={"endpoint": data_type.endpoint}
                ) from e
            raise ProviderError(
                f"PropertyData API error: {status_code}",
                details={"endpoint": data_type.endpoint, "status_code": status_code},
            ) from e
        except httpx.RequestError as e:
            logger.error(
                "propertydata_request_error",
                endpoint=data_type.endpoint,
                error=str(e),
            )
            raise ProviderError(f"Request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(
                "Invalid JSON from PropertyData",
                details={"endpoint": data_type.endpoint},
            ) from e

        return self._unwrap(body, data_type)

    @staticmethod
    def _unwrap(body: Any, data_type: DataType) -> dict[str, Any]:
        """Strip the provider envelope and reject error bodies."""
        if not isinstance(body, dict):
            raise ProviderError(
                "Unexpected PropertyData response shape",
                details={"endpoint": data_type.endpoint},
            )
        if body.get("status") == "error":
            reason = body.get("message") or body.get("code") or "unknown"
            raise ProviderError(
                f"PropertyData API error: {reason}",
                details={"endpoint": data_type.endpoint},
            )
        data = body.get("data")
        if isinstance(data, dict):
            return {"postcode": body.get("postcode", ""), **data}
        return body
