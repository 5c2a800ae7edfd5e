"""Property analytics endpoints.

Full analytics for a postcode, batches of properties, single data types
and cache invalidation for a property.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from letzpocket.core.exceptions import InvalidDataTypeError
from letzpocket.core.logging import get_logger
from letzpocket.dependencies import CacheManagerDep, PropertyDataServiceDep
from letzpocket.schemas.analytics import (
    BatchAnalyticsRequest,
    BatchAnalyticsResponse,
    CacheInvalidationResponse,
    DataTypeResponse,
    PropertyAnalyticsResponse,
    PropertyDetailsSchema,
)
from letzpocket.schemas.common import ErrorResponse
from letzpocket.services.propertydata import DataType

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/batch",
    response_model=BatchAnalyticsResponse,
    status_code=status.HTTP_200_OK,
    summary="Analytics for many properties",
    description="Each distinct postcode is fetched once; results follow input order.",
    responses={
        402: {"model": ErrorResponse, "description": "Insufficient credits"},
    },
)
async def batch_analytics(
    request: BatchAnalyticsRequest,
    service: PropertyDataServiceDep,
) -> BatchAnalyticsResponse:
    logger.info(
        "batch_analytics_request",
        properties=len(request.properties),
        user_id=request.user_id,
    )
    results = await service.batch_property_analytics(
        [item.to_batch_property() for item in request.properties],
        user_id=request.user_id,
    )
    return BatchAnalyticsResponse(
        results=[PropertyAnalyticsResponse.from_analytics(r) for r in results]
    )


@router.delete(
    "/properties/{property_id}/cache",
    response_model=CacheInvalidationResponse,
    status_code=status.HTTP_200_OK,
    summary="Invalidate a property's cache",
)
async def invalidate_property_cache(
    property_id: UUID,
    cache_manager: CacheManagerDep,
) -> CacheInvalidationResponse:
    deleted = await cache_manager.invalidate_property(property_id)
    return CacheInvalidationResponse(property_id=property_id, deleted_entries=deleted)


@router.get(
    "/{postcode}",
    response_model=PropertyAnalyticsResponse,
    status_code=status.HTTP_200_OK,
    summary="Full analytics for a postcode",
    description=(
        "Valuation, rents, sold prices, growth and demographics. "
        "Failed data types are null and listed in errors."
    ),
)
async def get_property_analytics(
    postcode: str,
    service: PropertyDataServiceDep,
    details: Annotated[PropertyDetailsSchema, Depends()],
    user_id: Annotated[str | None, Query(max_length=128)] = None,
    property_id: Annotated[UUID | None, Query()] = None,
) -> PropertyAnalyticsResponse:
    logger.info("property_analytics_request", postcode=postcode, user_id=user_id)
    analytics = await service.get_property_analytics(
        postcode,
        details.to_details(),
        user_id=user_id,
        property_id=property_id,
    )
    return PropertyAnalyticsResponse.from_analytics(analytics)


@router.get(
    "/{postcode}/{data_type}",
    response_model=DataTypeResponse,
    status_code=status.HTTP_200_OK,
    summary="One data type for a postcode",
    responses={
        400: {"model": ErrorResponse, "description": "Unknown data type"},
        402: {"model": ErrorResponse, "description": "Insufficient credits"},
        502: {"model": ErrorResponse, "description": "Provider error, no cache"},
    },
)
async def get_data_type(
    postcode: str,
    data_type: str,
    service: PropertyDataServiceDep,
    details: Annotated[PropertyDetailsSchema, Depends()],
    user_id: Annotated[str | None, Query(max_length=128)] = None,
    property_id: Annotated[UUID | None, Query()] = None,
) -> DataTypeResponse:
    try:
        dt = DataType(data_type)
    except ValueError as e:
        raise InvalidDataTypeError(data_type) from e

    payload = await service.get_data(
        dt,
        postcode,
        details.to_details(),
        user_id=user_id,
        property_id=property_id,
    )
    return DataTypeResponse(
        postcode=postcode.strip(),
        data_type=dt.value,
        data=payload.to_dict(),
    )
