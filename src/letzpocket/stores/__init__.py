"""Stores wrap repositories in short, committed units of work."""

from letzpocket.stores.cache_store import CacheStore
from letzpocket.stores.quota_store import QuotaStore

__all__ = [
    "CacheStore",
    "QuotaStore",
]
