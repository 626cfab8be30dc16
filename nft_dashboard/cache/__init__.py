"""
Caching and period-filtering layer.

Raw datasets live in the PersistentStore, refreshes are single-flighted by the
RefreshCoordinator, and the UnifiedCacheFacade projects them onto 24h/7d/30d/all
windows.
"""
from nft_dashboard.cache.errors import (
    CacheError,
    InvalidCacheKeyError,
    StorageReadError,
    StorageWriteError,
    UpstreamFetchError,
)
from nft_dashboard.cache.memory_store import MemoryCacheEntry, MemoryStore
from nft_dashboard.cache.period_filter import FailOpenCounter, FilterOptions, PeriodFilter
from nft_dashboard.cache.persistent_store import CACHE_VERSION, CacheEntry, PersistentStore, extract_record_count
from nft_dashboard.cache.refresh_coordinator import EXPIRED_CACHE_FLAG, RefreshCoordinator
from nft_dashboard.cache.unified_cache import UnifiedCacheFacade

__all__ = [
    "CACHE_VERSION",
    "CacheEntry",
    "CacheError",
    "EXPIRED_CACHE_FLAG",
    "FailOpenCounter",
    "FilterOptions",
    "InvalidCacheKeyError",
    "MemoryCacheEntry",
    "MemoryStore",
    "PeriodFilter",
    "PersistentStore",
    "RefreshCoordinator",
    "StorageReadError",
    "StorageWriteError",
    "UnifiedCacheFacade",
    "UpstreamFetchError",
    "extract_record_count",
]
