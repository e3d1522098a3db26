"""Cache module - Loading cache and entry lifecycle.

This module provides the loading cache interface and entry management.
"""

from loadcache_core.cache.entry import (
    CacheEntry,
    EntryMetadata,
    RemovalCause,
    TimerRole,
)
from loadcache_core.cache.cache import (
    AsyncLoadingCache,
    CacheStats,
    LoadingCache,
    LoadingCacheConfig,
)
from loadcache_core.cache.decorator import loading_cache

__all__ = [
    "CacheEntry",
    "EntryMetadata",
    "RemovalCause",
    "TimerRole",
    "LoadingCache",
    "AsyncLoadingCache",
    "LoadingCacheConfig",
    "CacheStats",
    "loading_cache",
]
