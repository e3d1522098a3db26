"""LoadCache Decorators - Loading Cache Decorators.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, Hashable, Optional

from loadcache_core.cache.cache import AsyncLoadingCache, LoadingCache, RemovalListener
from loadcache_core.timer.scheduler import Scheduler

logger = logging.getLogger(__name__)


def loading_cache(
    func: Optional[Callable[[Hashable], Any]] = None,
    *,
    expire_after_access: Optional[float] = None,
    expire_after_write: Optional[float] = None,
    refresh_after_write: Optional[float] = None,
    on_remove: Optional[RemovalListener] = None,
    single_flight: bool = False,
    scheduler: Optional[Scheduler] = None,
) -> Any:
    """Decorator turning a loader function into a loading cache.

    Coroutine functions produce an AsyncLoadingCache, anything else a
    LoadingCache. The cache is named after the function.

    Args:
        func: Loader function, when used without arguments
        expire_after_access: Access expiry in seconds
        expire_after_write: Write expiry in seconds
        refresh_after_write: Refresh interval in seconds
        on_remove: Removal listener
        single_flight: Coalesce concurrent loads of one key
        scheduler: Timer scheduler shared with other caches

    Returns:
        The cache, or a decorator producing it

    Example:
        @loading_cache(expire_after_write=300)
        def users(user_id: int) -> User:
            return db.get_user(user_id)

        user = users.get(42)
    """
    options: Dict[str, Any] = {
        "expire_after_access": expire_after_access,
        "expire_after_write": expire_after_write,
        "refresh_after_write": refresh_after_write,
        "on_remove": on_remove,
        "single_flight": single_flight,
    }

    def decorator(loader: Callable[[Hashable], Any]) -> LoadingCache:
        cache_class = AsyncLoadingCache if inspect.iscoroutinefunction(loader) else LoadingCache
        cache = cache_class(
            loader,
            scheduler=scheduler,
            name=getattr(loader, "__qualname__", "cache"),
            **options,
        )
        cache.__wrapped__ = loader
        cache.__doc__ = loader.__doc__
        logger.debug(f"Created {cache_class.__name__} for {cache.config.name}")
        return cache

    if func is not None:
        return decorator(func)
    return decorator


__all__ = ["loading_cache"]
