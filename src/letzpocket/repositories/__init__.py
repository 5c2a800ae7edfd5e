"""Repository pattern package for LetzPocket.

This module exports base repository classes and concrete repositories.
"""

from letzpocket.repositories.base import BaseRepository
from letzpocket.repositories.data_cache import DataCacheRepository
from letzpocket.repositories.quota import QuotaRepository
from letzpocket.repositories.usage_log import UsageLogRepository
from letzpocket.repositories.value_history import ValueHistoryRepository

__all__ = [
    # Base
    "BaseRepository",
    # PropertyData cache
    "DataCacheRepository",
    "ValueHistoryRepository",
    "UsageLogRepository",
    # Quota
    "QuotaRepository",
]
