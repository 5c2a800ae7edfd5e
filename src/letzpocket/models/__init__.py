"""Models package for LetzPocket.

This module exports the Base class and all model classes.
"""

from letzpocket.models.base import (
    Base,
    CreatedAtMixin,
    PropertyKeyMixin,
    UpdatedAtMixin,
    UUIDPrimaryKeyMixin,
)
from letzpocket.models.data_cache import PropertyDataCache
from letzpocket.models.quota import BREAKDOWN_COLUMNS, UserApiQuota
from letzpocket.models.usage_log import ApiUsageLog, UsageStatus
from letzpocket.models.value_history import PropertyValueHistory

__all__ = [
    # Base and Mixins
    "Base",
    "UUIDPrimaryKeyMixin",
    "CreatedAtMixin",
    "UpdatedAtMixin",
    "PropertyKeyMixin",
    # PropertyData cache
    "PropertyDataCache",
    "PropertyValueHistory",
    "ApiUsageLog",
    "UsageStatus",
    # Quota
    "UserApiQuota",
    "BREAKDOWN_COLUMNS",
]
