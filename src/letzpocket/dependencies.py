"""FastAPI dependency injection container.

Services are built once in the application lifespan and stored on
``app.state``. These functions expose them to routes through Depends(),
and can be replaced with ``app.dependency_overrides`` in tests.
"""

from typing import Annotated

from fastapi import Depends, Request

from letzpocket.services.admin import PropertyDataAdmin
from letzpocket.services.analytics import PropertyDataService
from letzpocket.services.cache import ResponseCacheManager
from letzpocket.services.quota import QuotaManager


# ========================================
# Service Dependencies
# ========================================
def get_property_data_service(request: Request) -> PropertyDataService:
    return request.app.state.property_data_service


def get_cache_manager(request: Request) -> ResponseCacheManager:
    return request.app.state.cache_manager


def get_quota_manager(request: Request) -> QuotaManager:
    return request.app.state.quota_manager


def get_admin(request: Request) -> PropertyDataAdmin:
    return request.app.state.admin


PropertyDataServiceDep = Annotated[
    PropertyDataService, Depends(get_property_data_service)
]
CacheManagerDep = Annotated[ResponseCacheManager, Depends(get_cache_manager)]
QuotaManagerDep = Annotated[QuotaManager, Depends(get_quota_manager)]
AdminDep = Annotated[PropertyDataAdmin, Depends(get_admin)]
