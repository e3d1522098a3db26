"""LoadCache - Loading Cache with Expiry and Refresh.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

An in-process loading cache with:
- Loader invoked on a miss, result stored and returned
- Expiry after access and after write
- Recurring background refresh after write
- Removal notifications with a removal cause
- Sync (thread-safe) and asyncio flavors
- Pluggable timer schedulers (thread, event loop, manual clock)

Architecture:
    ┌─────────────────────────────────────────────────────────────────┐
    │                        LoadCache System                         │
    ├─────────────────────────────────────────────────────────────────┤
    │  ┌──────────────┐  ┌──────────────┐  ┌──────────────┐          │
    │  │ LoadingCache │  │    Entry     │  │   Removal    │  CACHE   │
    │  │ get/set/del  │  │ value/timers │  │   listener   │  LAYER   │
    │  └──────┬───────┘  └──────┬───────┘  └──────┬───────┘          │
    │         │                 │                 │                   │
    │  ┌──────┴─────────────────┴─────────────────┴──────┐           │
    │  │                  Timer Roles                     │           │
    │  │   ┌──────────────┐ ┌──────────────┐ ┌─────────┐ │  TIMER    │
    │  │   │ access expiry│ │ write expiry │ │ refresh │ │  LAYER    │
    │  │   └──────────────┘ └──────────────┘ └─────────┘ │           │
    │  └──────────────────────┬──────────────────────────┘           │
    │                         │                                       │
    │  ┌──────────────────────┴──────────────────────────┐           │
    │  │                  Schedulers                      │           │
    │  │   ┌──────────┐  ┌──────────┐  ┌──────────┐      │ SCHEDULER │
    │  │   │  Thread  │  │ asyncio  │  │  Manual  │      │  LAYER    │
    │  │   └──────────┘  └──────────┘  └──────────┘      │           │
    │  └──────────────────────────────────────────────────┘           │
    └─────────────────────────────────────────────────────────────────┘

Example Usage:
    from loadcache_core import LoadingCache, RemovalCause

    # Loader-backed cache with write expiry
    cache = LoadingCache(
        lambda key: fetch_from_database(key),
        expire_after_write=300,
        on_remove=lambda key, value, cause: print(key, cause.name),
    )
    user = cache.get("user:1")
    cache.set("user:1", {"name": "John"})  # notifies REPLACED

    # asyncio flavor with background refresh
    from loadcache_core import AsyncLoadingCache

    prices = AsyncLoadingCache(fetch_price, refresh_after_write=30)
    price = await prices.get("BTC")

    # Decorator
    @loading_cache(expire_after_access=60)
    def profiles(user_id: str):
        return fetch_profile(user_id)
"""

__version__ = "1.0.0"
__author__ = "BlackRoad OS"

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
from loadcache_core.timer.scheduler import (
    AsyncioScheduler,
    ManualScheduler,
    Scheduler,
    ThreadingScheduler,
    TimerHandle,
)

__all__ = [
    # Cache
    "LoadingCache",
    "AsyncLoadingCache",
    "LoadingCacheConfig",
    "CacheStats",
    "CacheEntry",
    "EntryMetadata",
    "RemovalCause",
    "TimerRole",
    "loading_cache",
    # Timers
    "Scheduler",
    "ThreadingScheduler",
    "AsyncioScheduler",
    "ManualScheduler",
    "TimerHandle",
]
