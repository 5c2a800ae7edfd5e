"""Services package for LetzPocket.

This module exports service classes for business logic.
"""

from letzpocket.services.admin import BulkUpdateResult, PlanUpdate, PropertyDataAdmin
from letzpocket.services.analytics import BatchProperty, PropertyDataService
from letzpocket.services.cache import (
    CACHE_STRATEGIES,
    CacheStats,
    CacheStrategy,
    ResponseCacheManager,
)
from letzpocket.services.propertydata import (
    DataType,
    PropertyAnalytics,
    PropertyDataClient,
    PropertyDetails,
    normalize_postcode,
)
from letzpocket.services.quota import (
    QUOTA_PLANS,
    QuotaManager,
    QuotaPlan,
    QuotaUsage,
    get_plan,
)
from letzpocket.services.scheduler import QuotaResetScheduler

__all__ = [
    # Admin
    "BulkUpdateResult",
    "PlanUpdate",
    "PropertyDataAdmin",
    # Analytics
    "BatchProperty",
    "PropertyDataService",
    # Cache
    "CACHE_STRATEGIES",
    "CacheStats",
    "CacheStrategy",
    "ResponseCacheManager",
    # PropertyData
    "DataType",
    "PropertyAnalytics",
    "PropertyDataClient",
    "PropertyDetails",
    "normalize_postcode",
    # Quota
    "QUOTA_PLANS",
    "QuotaManager",
    "QuotaPlan",
    "QuotaUsage",
    "get_plan",
    # Scheduling
    "QuotaResetScheduler",
]
