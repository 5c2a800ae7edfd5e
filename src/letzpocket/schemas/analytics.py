"""Property analytics API schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from letzpocket.schemas.common import BaseSchema
from letzpocket.services.analytics import BatchProperty
from letzpocket.services.propertydata import PropertyAnalytics, PropertyDetails

# =============================================================================
# Payloads
# =============================================================================


class ConfidenceIntervalSchema(BaseModel):
    lower: float
    upper: float


class ValuationSchema(BaseModel):
    rental_value: float
    confidence_interval: ConfidenceIntervalSchema
    property_type: str
    postcode: str
    radius: float | None = None


class RentalMarketSchema(BaseModel):
    average_rent: float
    confidence_interval: ConfidenceIntervalSchema
    sample_size: int
    postcode: str
    sample_from_town_center: bool | None = None


class SoldPricesSchema(BaseModel):
    average_price: float
    confidence_interval: ConfidenceIntervalSchema
    sample_size: int
    postcode: str
    sample_from_town_center: bool | None = None


class GrowthSchema(BaseModel):
    yearly_growth: list[float]
    five_year_growth: float
    postcode: str
    sample_from_town_center: bool | None = None


class DemographicsSchema(BaseModel):
    population: int
    average_age: float
    household_income: float
    employment_rate: float
    sample_from_town_center: bool | None = None


class AnalyticsErrorSchema(BaseModel):
    type: str = Field(..., description="Data type that failed, or batch_error")
    error: str = Field(..., description="Failure message")


class PropertyAnalyticsResponse(BaseModel):
    """Full analytics for one postcode.

    Fields are null for data types that failed; see ``errors``.
    """

    postcode: str
    last_updated: datetime
    valuation: ValuationSchema | None = None
    rental_market: RentalMarketSchema | None = None
    sold_prices: SoldPricesSchema | None = None
    growth: GrowthSchema | None = None
    demographics: DemographicsSchema | None = None
    errors: list[AnalyticsErrorSchema] = Field(default_factory=list)

    @classmethod
    def from_analytics(
        cls, analytics: PropertyAnalytics
    ) -> "PropertyAnalyticsResponse":
        return cls.model_validate(analytics.to_dict())


# =============================================================================
# Requests
# =============================================================================


class PropertyDetailsSchema(BaseSchema):
    """Optional details that sharpen a valuation."""

    property_type: str | None = Field(
        None,
        max_length=64,
        json_schema_extra={"example": "flat"},
    )
    bedrooms: int | None = Field(None, ge=0, le=50)
    construction_date: str | None = Field(None, max_length=32)
    finish_quality: str | None = Field(None, max_length=32)
    outdoor_space: str | None = Field(None, max_length=32)

    def to_details(self) -> PropertyDetails:
        return PropertyDetails(**self.model_dump())


class BatchPropertyItem(BaseSchema):
    postcode: str = Field(
        ...,
        min_length=2,
        max_length=16,
        json_schema_extra={"example": "SW1A 1AA"},
    )
    details: PropertyDetailsSchema | None = None
    property_id: UUID | None = None

    def to_batch_property(self) -> BatchProperty:
        return BatchProperty(
            postcode=self.postcode,
            details=self.details.to_details() if self.details else None,
            property_id=self.property_id,
        )


class BatchAnalyticsRequest(BaseSchema):
    properties: list[BatchPropertyItem] = Field(..., max_length=100)
    user_id: str | None = Field(None, max_length=128)


class BatchAnalyticsResponse(BaseModel):
    results: list[PropertyAnalyticsResponse]


class DataTypeResponse(BaseModel):
    """Single data type lookup."""

    postcode: str
    data_type: str
    data: dict[str, Any]


class CacheInvalidationResponse(BaseModel):
    property_id: UUID
    deleted_entries: int
