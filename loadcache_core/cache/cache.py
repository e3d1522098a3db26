"""LoadCache Cache - Loading Cache Implementation.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    Hashable,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)

from loadcache_core.cache.entry import CacheEntry, EntryMetadata, RemovalCause, TimerRole
from loadcache_core.timer.scheduler import (
    AsyncioScheduler,
    Scheduler,
    ThreadingScheduler,
    TimerHandle,
)

logger = logging.getLogger(__name__)

Loader = Callable[[Hashable], Any]
RemovalListener = Callable[[Hashable, Any, RemovalCause], None]
Notification = Tuple[Hashable, Any, RemovalCause]


@dataclass
class LoadingCacheConfig:
    """Loading cache configuration.

    Durations are in seconds; None disables the timer role.

    Attributes:
        loader: Produces the value for a missing key
        expire_after_access: Expire entries idle for this long
        expire_after_write: Expire entries this long after their last write
        refresh_after_write: Reload entries every interval after a write
        on_remove: Called as (key, value, cause) on every removal but clear()
        single_flight: Coalesce concurrent loads of the same key
        name: Cache name, used for logging
    """

    loader: Loader
    expire_after_access: Optional[float] = None
    expire_after_write: Optional[float] = None
    refresh_after_write: Optional[float] = None
    on_remove: Optional[RemovalListener] = None
    single_flight: bool = False
    name: str = "cache"

    def __post_init__(self):
        if not callable(self.loader):
            raise TypeError(f"loader must be callable, got {type(self.loader).__name__}")
        if self.on_remove is not None and not callable(self.on_remove):
            raise TypeError(f"on_remove must be callable, got {type(self.on_remove).__name__}")

        for option in ("expire_after_access", "expire_after_write", "refresh_after_write"):
            duration = getattr(self, option)
            if duration is not None and duration <= 0:
                raise ValueError(f"{option} must be positive, got {duration}")


@dataclass
class CacheStats:
    """Cache statistics.

    Attributes:
        hits: Reads answered from the table
        misses: Reads that had to load
        loads: Successful loader calls on a miss
        load_failures: Loader calls on a miss that raised
        refreshes: Successful background reloads
        refresh_failures: Background reloads that raised
        sets: Explicit set operations
        deletes: Explicit deletes that removed an entry
        expirations: Entries removed by an expiry timer
        replacements: Live values overwritten by a write
        entry_count: Current entry count
        started_at: When the cache was created
    """

    hits: int = 0
    misses: int = 0
    loads: int = 0
    load_failures: int = 0
    refreshes: int = 0
    refresh_failures: int = 0
    sets: int = 0
    deletes: int = 0
    expirations: int = 0
    replacements: int = 0
    entry_count: int = 0
    started_at: Optional[datetime] = None

    @property
    def hit_rate(self) -> float:
        """Calculate hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def reset(self) -> None:
        """Reset counters."""
        self.hits = 0
        self.misses = 0
        self.loads = 0
        self.load_failures = 0
        self.refreshes = 0
        self.refresh_failures = 0
        self.sets = 0
        self.deletes = 0
        self.expirations = 0
        self.replacements = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "loads": self.loads,
            "load_failures": self.load_failures,
            "refreshes": self.refreshes,
            "refresh_failures": self.refresh_failures,
            "sets": self.sets,
            "deletes": self.deletes,
            "expirations": self.expirations,
            "replacements": self.replacements,
            "entry_count": self.entry_count,
            "hit_rate": self.hit_rate,
        }


def _discard_awaitable(result: Any) -> None:
    if asyncio.iscoroutine(result):
        result.close()


class LoadingCache:
    """Key-value cache that loads missing values on demand.

    Features:
    - Loader invoked on a miss; its result is stored and returned
    - Expiry after access and after write
    - Recurring background refresh after write
    - Removal listener with a removal cause
    - Thread-safe operations; callbacks run outside the lock

    The loader may return a plain value or a concurrent.futures.Future.
    Use AsyncLoadingCache for loaders returning awaitables.

    Example:
        cache = LoadingCache(
            fetch_user,
            expire_after_write=300,
            on_remove=lambda key, value, cause: print(key, cause),
        )
        user = cache.get("user:1")
        cache.set("user:2", user_data)
    """

    def __init__(
        self,
        config: Union[LoadingCacheConfig, Loader],
        scheduler: Optional[Scheduler] = None,
        **options: Any,
    ):
        """Initialize cache.

        Args:
            config: Cache configuration, or a bare loader function
            scheduler: Timer scheduler; a private one is created if omitted
            **options: LoadingCacheConfig fields, only with a bare loader
        """
        if isinstance(config, LoadingCacheConfig):
            if options:
                raise TypeError("Options cannot be combined with a LoadingCacheConfig")
        else:
            config = LoadingCacheConfig(loader=config, **options)

        self.config = config
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler if scheduler is not None else self._default_scheduler()

        self._entries: Dict[Hashable, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stats = CacheStats(started_at=datetime.now())
        self._inflight: Dict[Hashable, Any] = {}

    def _default_scheduler(self) -> Scheduler:
        return ThreadingScheduler(name=self.config.name)

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def get(self, key: Hashable) -> Any:
        """Get the value for key, loading it on a miss.

        Args:
            key: Cache key

        Returns:
            Cached or freshly loaded value

        Raises:
            Exception: Whatever the loader raised; nothing is cached
        """
        found, value = self._get_if_live(key)
        if found:
            return value

        if self.config.single_flight:
            return self._load_coalesced(key)
        return self._load(key)

    def get_if_present(self, key: Hashable, default: Any = None) -> Any:
        """Get the value for key without loading.

        A hit counts as an access.

        Args:
            key: Cache key
            default: Returned when the key is absent

        Returns:
            Cached value or default
        """
        found, value = self._get_if_live(key)
        return value if found else default

    def set(self, key: Hashable, value: Any) -> None:
        """Store value under key and rearm its timers.

        A live value it overwrites is reported with cause REPLACED.

        Args:
            key: Cache key
            value: Value to cache
        """
        with self._lock:
            notifications = self._write(key, value)
            self._stats.sets += 1
        self._notify(notifications)

    def delete(self, key: Hashable) -> bool:
        """Delete key from cache.

        Args:
            key: Cache key

        Returns:
            True if a live entry was removed
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False

            if entry.is_expired(self._scheduler.now()):
                notification = self._remove(key, RemovalCause.EXPIRED)
                self._stats.expirations += 1
                removed = False
            else:
                notification = self._remove(key, RemovalCause.EXPLICIT_DELETE)
                self._stats.deletes += 1
                removed = True

        self._notify([notification])
        return removed

    def has(self, key: Hashable) -> bool:
        """Check if key has a live entry. Does not count as an access.

        Args:
            key: Cache key

        Returns:
            True if present and not past an expiry deadline
        """
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._scheduler.now())

    def clear(self) -> int:
        """Remove all entries without notifying the removal listener.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            for entry in self._entries.values():
                entry.cancel_timers()
            self._entries.clear()
            self._stats.entry_count = 0

        logger.debug(f"Cache {self.config.name} cleared {count} entries")
        return count

    def size(self) -> int:
        """Get live entry count."""
        return len(self._live_entries())

    def keys(self) -> List[Hashable]:
        """Snapshot of live keys."""
        return [entry.key for entry in self._live_entries()]

    def values(self) -> List[Any]:
        """Snapshot of live values."""
        return [entry.value for entry in self._live_entries()]

    def items(self) -> List[Tuple[Hashable, Any]]:
        """Snapshot of live (key, value) pairs."""
        return [(entry.key, entry.value) for entry in self._live_entries()]

    def for_each(self, step: Callable[[Hashable, Any], None]) -> None:
        """Call step(key, value) for every live entry."""
        for key, value in self.items():
            step(key, value)

    def refresh(self, key: Hashable) -> bool:
        """Reload a present key in place, outside its refresh schedule.

        Failures are logged and leave the entry untouched.

        Args:
            key: Cache key

        Returns:
            True if a reload was started
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._scheduler.now()):
                return False
            version = entry.metadata.version

        self._reload(key, entry, version)
        return True

    def get_entry(self, key: Hashable) -> Optional[CacheEntry]:
        """Get the raw entry, including its armed timers.

        Args:
            key: Cache key

        Returns:
            CacheEntry or None
        """
        with self._lock:
            return self._entries.get(key)

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        with self._lock:
            self._stats.entry_count = len(self._entries)
            return self._stats

    def reset_stats(self) -> None:
        """Reset statistics."""
        with self._lock:
            self._stats.reset()

    def close(self) -> None:
        """Cancel every timer and stop a privately owned scheduler."""
        with self._lock:
            for entry in self._entries.values():
                entry.cancel_timers()

        if self._owns_scheduler:
            self._scheduler.close()

    # Loading

    def _load(self, key: Hashable) -> Any:
        try:
            value = self._resolve(self.config.loader(key))
        except Exception:
            self._record_load_failure(key)
            raise

        self._install_loaded(key, value)
        return value

    def _load_coalesced(self, key: Hashable) -> Any:
        with self._lock:
            # Double-check: a leader may have installed since the miss
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(self._scheduler.now()):
                return entry.value

            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future

        if not leader:
            return future.result()

        try:
            value = self._load(key)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(value)
            return value
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def _resolve(self, result: Any) -> Any:
        if isinstance(result, Future):
            return result.result()
        if inspect.isawaitable(result):
            _discard_awaitable(result)
            raise TypeError(
                "Loader returned an awaitable; use AsyncLoadingCache for async loaders"
            )
        return result

    def _install_loaded(self, key: Hashable, value: Any) -> None:
        with self._lock:
            notifications = self._write(key, value)
            self._stats.loads += 1
        logger.debug(f"Cache {self.config.name} loaded {key!r}")
        self._notify(notifications)

    def _record_load_failure(self, key: Hashable) -> None:
        with self._lock:
            self._stats.load_failures += 1
        logger.debug(f"Cache {self.config.name} failed to load {key!r}")

    # Refresh

    def _reload(self, key: Hashable, entry: CacheEntry, version: int) -> None:
        try:
            result = self.config.loader(key)
        except Exception as e:
            self._refresh_failed(key, e)
            return

        if isinstance(result, Future):
            result.add_done_callback(
                lambda future: self._complete_future_refresh(key, entry, version, future)
            )
            return

        if inspect.isawaitable(result):
            _discard_awaitable(result)
            self._refresh_failed(
                key, TypeError("Loader returned an awaitable outside an event loop")
            )
            return

        self._complete_refresh(key, entry, version, result)

    def _complete_future_refresh(
        self,
        key: Hashable,
        entry: CacheEntry,
        version: int,
        future: Future,
    ) -> None:
        if future.cancelled():
            self._refresh_failed(key, RuntimeError("Refresh load was cancelled"))
            return

        error = future.exception()
        if error is not None:
            self._refresh_failed(key, error)
            return

        self._complete_refresh(key, entry, version, future.result())

    def _complete_refresh(
        self,
        key: Hashable,
        entry: CacheEntry,
        version: int,
        value: Any,
    ) -> None:
        with self._lock:
            if self._entries.get(key) is not entry or entry.metadata.version != version:
                logger.debug(
                    f"Cache {self.config.name} discarded refresh of {key!r}: entry changed"
                )
                return

            notifications = self._write(key, value)
            self._stats.refreshes += 1

        logger.debug(f"Cache {self.config.name} refreshed {key!r}")
        self._notify(notifications)

    def _refresh_failed(self, key: Hashable, error: BaseException) -> None:
        with self._lock:
            self._stats.refresh_failures += 1
        logger.warning(
            f"Cache {self.config.name} refresh of {key!r} failed: {error}",
            exc_info=error,
        )

    # Table and timers

    def _get_if_live(self, key: Hashable) -> Tuple[bool, Any]:
        notifications: List[Optional[Notification]] = []
        with self._lock:
            now = self._scheduler.now()
            entry = self._entries.get(key)

            if entry is not None and entry.is_expired(now):
                notifications.append(self._remove(key, RemovalCause.EXPIRED))
                self._stats.expirations += 1
                entry = None

            if entry is None:
                self._stats.misses += 1
            else:
                self._stats.hits += 1
                entry.metadata.touch(now)
                if self.config.expire_after_access is not None:
                    self._arm(entry, TimerRole.ACCESS_EXPIRY, self.config.expire_after_access)
            value = entry.value if entry is not None else None

        self._notify(notifications)
        return entry is not None, value

    # _write, _remove and _arm expect the caller to hold the lock

    def _write(self, key: Hashable, value: Any) -> List[Optional[Notification]]:
        now = self._scheduler.now()
        notifications: List[Optional[Notification]] = []
        entry = self._entries.get(key)

        if entry is not None and entry.is_expired(now):
            notifications.append(self._remove(key, RemovalCause.EXPIRED))
            self._stats.expirations += 1
            entry = None

        if entry is None:
            entry = CacheEntry(
                key=key,
                value=value,
                metadata=EntryMetadata(written_at=now, accessed_at=now),
            )
            self._entries[key] = entry
        else:
            old_value = entry.value
            entry.value = value
            entry.metadata.update(now)
            self._stats.replacements += 1
            notifications.append((key, old_value, RemovalCause.REPLACED))

        config = self.config
        if config.expire_after_write is not None:
            self._arm(entry, TimerRole.WRITE_EXPIRY, config.expire_after_write)
        if config.expire_after_access is not None:
            self._arm(entry, TimerRole.ACCESS_EXPIRY, config.expire_after_access)
        if config.refresh_after_write is not None:
            self._arm(entry, TimerRole.REFRESH, config.refresh_after_write)

        return notifications

    def _remove(self, key: Hashable, cause: RemovalCause) -> Optional[Notification]:
        entry = self._entries.pop(key, None)
        if entry is None:
            return None

        entry.cancel_timers()
        return (key, entry.value, cause)

    def _arm(self, entry: CacheEntry, role: TimerRole, duration: float) -> None:
        def fire() -> None:
            self._on_timer(entry, role, handle)

        if role is TimerRole.REFRESH:
            handle = self._scheduler.call_repeating(duration, fire)
        else:
            handle = self._scheduler.call_later(duration, fire)
        entry.arm(role, handle)

    def _on_timer(self, entry: CacheEntry, role: TimerRole, handle: TimerHandle) -> None:
        with self._lock:
            # Stale timers are ignored: superseded, cancelled or entry removed
            if self._entries.get(entry.key) is not entry or not entry.owns(role, handle):
                return

            if role is TimerRole.REFRESH:
                version = entry.metadata.version
                notification = None
            else:
                notification = self._remove(entry.key, RemovalCause.EXPIRED)
                self._stats.expirations += 1

        if role is TimerRole.REFRESH:
            self._reload(entry.key, entry, version)
        else:
            logger.debug(f"Cache {self.config.name} expired {entry.key!r} ({role.value})")
            self._notify([notification])

    def _live_entries(self) -> List[CacheEntry]:
        with self._lock:
            now = self._scheduler.now()
            return [entry for entry in self._entries.values() if not entry.is_expired(now)]

    def _notify(self, notifications: Iterable[Optional[Notification]]) -> None:
        listener = self.config.on_remove
        for notification in notifications:
            if notification is None or listener is None:
                continue
            listener(*notification)

    def __contains__(self, key: Hashable) -> bool:
        """Check if key in cache."""
        return self.has(key)

    def __len__(self) -> int:
        """Get live entry count."""
        return self.size()

    def __iter__(self) -> Iterator[Hashable]:
        """Iterate over a snapshot of keys."""
        return iter(self.keys())

    def __setitem__(self, key: Hashable, value: Any) -> None:
        """Set item by key."""
        self.set(key, value)

    def __delitem__(self, key: Hashable) -> None:
        """Delete item by key."""
        if not self.delete(key):
            raise KeyError(key)

    def __enter__(self) -> "LoadingCache":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.config.name!r}, entries={len(self._entries)})"


class AsyncLoadingCache(LoadingCache):
    """Loading cache for asyncio applications.

    get() is a coroutine and the loader may return a plain value, an
    awaitable or a concurrent.futures.Future. By default timers run on the
    event loop, so the cache must be used from within a running loop.

    Example:
        cache = AsyncLoadingCache(fetch_user_async, refresh_after_write=60)
        user = await cache.get("user:1")
    """

    def __init__(
        self,
        config: Union[LoadingCacheConfig, Loader],
        scheduler: Optional[Scheduler] = None,
        **options: Any,
    ):
        super().__init__(config, scheduler, **options)
        self._refresh_tasks: Set[asyncio.Task] = set()

    def _default_scheduler(self) -> Scheduler:
        return AsyncioScheduler()

    async def get(self, key: Hashable) -> Any:
        """Get the value for key, awaiting the loader on a miss.

        Args:
            key: Cache key

        Returns:
            Cached or freshly loaded value
        """
        found, value = self._get_if_live(key)
        if found:
            return value

        if self.config.single_flight:
            return await self._load_coalesced_async(key)
        return await self._load_async(key)

    async def _load_async(self, key: Hashable) -> Any:
        try:
            value = await self._resolve_async(self.config.loader(key))
        except Exception:
            self._record_load_failure(key)
            raise

        self._install_loaded(key, value)
        return value

    async def _load_coalesced_async(self, key: Hashable) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(self._scheduler.now()):
                return entry.value

            task = self._inflight.get(key)
            if task is None:
                task = asyncio.ensure_future(self._load_async(key))
                self._inflight[key] = task
                task.add_done_callback(lambda done: self._forget_inflight(key, done))

        # Shielded so one cancelled waiter does not cancel the others' load
        return await asyncio.shield(task)

    def _forget_inflight(self, key: Hashable, task: asyncio.Future) -> None:
        with self._lock:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    @staticmethod
    async def _resolve_async(result: Any) -> Any:
        if isinstance(result, Future):
            return await asyncio.wrap_future(result)
        if inspect.isawaitable(result):
            return await result
        return result

    def _reload(self, key: Hashable, entry: CacheEntry, version: int) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            super()._reload(key, entry, version)
            return

        task = loop.create_task(self._reload_async(key, entry, version))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _reload_async(self, key: Hashable, entry: CacheEntry, version: int) -> None:
        try:
            value = await self._resolve_async(self.config.loader(key))
        except Exception as e:
            self._refresh_failed(key, e)
            return

        self._complete_refresh(key, entry, version, value)

    def close(self) -> None:
        """Cancel every timer and pending refresh."""
        for task in list(self._refresh_tasks):
            task.cancel()
        super().close()


__all__ = [
    "LoadingCache",
    "AsyncLoadingCache",
    "LoadingCacheConfig",
    "CacheStats",
    "Loader",
    "RemovalListener",
]
