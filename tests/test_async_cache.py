"""Tests for AsyncLoadingCache class.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

import asyncio
import logging

import pytest

from loadcache_core.cache.cache import AsyncLoadingCache
from loadcache_core.cache.entry import RemovalCause
from loadcache_core.timer.scheduler import ManualScheduler


async def value_of(key):
    return f"value-of-{key}"


async def flush():
    """Let pending tasks run to completion."""
    for _ in range(5):
        await asyncio.sleep(0)


def run(coro):
    return asyncio.run(coro)


class TestAsyncLoading:
    """Tests for awaiting loads."""

    def test_loads_missing_key(self):
        """Test coroutine loader result is returned."""
        async def scenario():
            cache = AsyncLoadingCache(value_of, scheduler=ManualScheduler())
            return await cache.get("foo")

        assert run(scenario()) == "value-of-foo"

    def test_sync_loader_accepted(self):
        """Test plain return values are treated as resolved."""
        async def scenario():
            cache = AsyncLoadingCache(lambda key: key.upper(), scheduler=ManualScheduler())
            return await cache.get("foo")

        assert run(scenario()) == "FOO"

    def test_loader_called_once(self):
        """Test second get is a hit."""
        calls = []

        async def loader(key):
            calls.append(key)
            return key

        async def scenario():
            cache = AsyncLoadingCache(loader, scheduler=ManualScheduler())
            await cache.get("foo")
            await cache.get("foo")

        run(scenario())
        assert calls == ["foo"]

    def test_propagates_thrown_error(self):
        """Test a synchronously raising loader fails the await."""
        def loader(key):
            raise ValueError(f'can not load "{key}"')

        async def scenario():
            cache = AsyncLoadingCache(loader, scheduler=ManualScheduler())
            with pytest.raises(ValueError, match='can not load "foo"'):
                await cache.get("foo")
            return cache.has("foo")

        assert run(scenario()) is False

    def test_propagates_rejected_error(self):
        """Test a failing coroutine fails the await."""
        async def loader(key):
            raise ValueError(f'can not load "{key}"')

        async def scenario():
            cache = AsyncLoadingCache(loader, scheduler=ManualScheduler())
            with pytest.raises(ValueError, match='can not load "foo"'):
                await cache.get("foo")
            return cache.size()

        assert run(scenario()) == 0

    def test_set_during_load_is_replaced(self):
        """Test a load finishing after set overwrites it with REPLACED."""
        removals = []

        async def scenario():
            gate = asyncio.Event()

            async def loader(key):
                await gate.wait()
                return "loaded"

            cache = AsyncLoadingCache(
                loader,
                scheduler=ManualScheduler(),
                on_remove=lambda key, value, cause: removals.append((key, value, cause)),
            )
            task = asyncio.ensure_future(cache.get("foo"))
            await flush()

            cache.set("foo", "manual")
            gate.set()
            return await task, cache.get_if_present("foo")

        assert run(scenario()) == ("loaded", "loaded")
        assert removals == [("foo", "manual", RemovalCause.REPLACED)]


class TestAsyncExpiry:
    """Tests for timers armed by asynchronous loads."""

    def test_write_expiry_starts_after_load_finishes(self):
        """Test the write deadline counts from load completion."""
        async def scenario():
            scheduler = ManualScheduler()
            gate = asyncio.Event()

            async def loader(key):
                await gate.wait()
                return f"{key}-value"

            cache = AsyncLoadingCache(loader, scheduler=scheduler, expire_after_write=1.0)
            task = asyncio.ensure_future(cache.get("foo"))
            await flush()

            scheduler.advance(0.505)
            gate.set()
            await task
            states = [cache.has("foo")]

            scheduler.advance(0.505)
            states.append(cache.has("foo"))

            scheduler.advance(0.5)
            states.append(cache.has("foo"))
            return states

        assert run(scenario()) == [True, True, False]

    def test_access_expiry_starts_after_load_finishes(self):
        """Test the access deadline counts from load completion."""
        async def scenario():
            scheduler = ManualScheduler()
            gate = asyncio.Event()

            async def loader(key):
                await gate.wait()
                return f"{key}-value"

            cache = AsyncLoadingCache(loader, scheduler=scheduler, expire_after_access=1.0)
            task = asyncio.ensure_future(cache.get("foo"))
            await flush()

            scheduler.advance(0.505)
            gate.set()
            await task
            states = [cache.has("foo")]

            scheduler.advance(0.505)
            states.append(cache.has("foo"))

            scheduler.advance(0.5)
            states.append(cache.has("foo"))
            return states

        assert run(scenario()) == [True, True, False]

    def test_event_loop_scheduler(self):
        """Test the default scheduler expires on the running loop."""
        removals = []

        async def scenario():
            cache = AsyncLoadingCache(
                value_of,
                expire_after_write=0.02,
                on_remove=lambda key, value, cause: removals.append((key, value, cause)),
            )
            assert await cache.get("foo") == "value-of-foo"

            await asyncio.sleep(0.1)
            return cache.has("foo")

        assert run(scenario()) is False
        assert removals == [("foo", "value-of-foo", RemovalCause.EXPIRED)]


class TestAsyncRefresh:
    """Tests for background refresh with coroutine loaders."""

    def test_refreshes_each_interval(self):
        """Test values reload at every interval."""
        counter = [0]

        async def loader(key):
            counter[0] += 1
            return f"{key} -> {counter[0]}"

        async def scenario():
            scheduler = ManualScheduler()
            cache = AsyncLoadingCache(loader, scheduler=scheduler, refresh_after_write=1.0)
            values = [await cache.get("foo")]

            scheduler.advance(1.002)
            await flush()
            values.append(await cache.get("foo"))

            scheduler.advance(0.5)
            await flush()
            values.append(await cache.get("foo"))

            scheduler.advance(0.501)
            await flush()
            values.append(await cache.get("foo"))
            return values

        assert run(scenario()) == ["foo -> 1", "foo -> 2", "foo -> 2", "foo -> 3"]

    def test_refresh_failure_keeps_value(self, caplog):
        """Test a rejected reload is logged and dropped."""
        calls = []

        async def loader(key):
            calls.append(key)
            if len(calls) == 2:
                raise ConnectionError("backend down")
            return f"v{len(calls)}"

        async def scenario():
            scheduler = ManualScheduler()
            cache = AsyncLoadingCache(loader, scheduler=scheduler, refresh_after_write=1.0)
            await cache.get("foo")

            with caplog.at_level(logging.WARNING, logger="loadcache_core.cache.cache"):
                scheduler.advance(1.0)
                await flush()

            return await cache.get("foo"), cache.get_stats().refresh_failures

        assert run(scenario()) == ("v1", 1)
        assert "backend down" in caplog.text

    def test_refresh_does_not_resurrect_deleted_key(self):
        """Test a reload finishing after delete is discarded."""
        async def scenario():
            scheduler = ManualScheduler()
            gate = asyncio.Event()
            calls = []

            async def loader(key):
                calls.append(key)
                if len(calls) > 1:
                    await gate.wait()
                return len(calls)

            cache = AsyncLoadingCache(loader, scheduler=scheduler, refresh_after_write=1.0)
            await cache.get("foo")

            scheduler.advance(1.0)
            await flush()
            cache.delete("foo")

            gate.set()
            await flush()
            return len(calls), cache.has("foo")

        assert run(scenario()) == (2, False)

    def test_close_cancels_pending_refresh(self):
        """Test close cancels in-flight reloads."""
        async def scenario():
            scheduler = ManualScheduler()
            gate = asyncio.Event()
            calls = []

            async def loader(key):
                calls.append(key)
                if len(calls) > 1:
                    await gate.wait()
                return len(calls)

            cache = AsyncLoadingCache(loader, scheduler=scheduler, refresh_after_write=1.0)
            await cache.get("foo")

            scheduler.advance(1.0)
            await flush()
            cache.close()

            gate.set()
            await flush()
            return cache.get_if_present("foo"), scheduler.pending()

        assert run(scenario()) == (1, 0)


class TestAsyncSingleFlight:
    """Tests for coalesced loads."""

    def test_concurrent_loads_not_deduplicated(self):
        """Test racing misses each call the loader by default."""
        calls = []

        async def loader(key):
            calls.append(key)
            await asyncio.sleep(0)
            return len(calls)

        async def scenario():
            cache = AsyncLoadingCache(loader, scheduler=ManualScheduler())
            return await asyncio.gather(cache.get("foo"), cache.get("foo"))

        run(scenario())
        assert calls == ["foo", "foo"]

    def test_single_flight(self):
        """Test racing misses share one loader call."""
        calls = []

        async def loader(key):
            calls.append(key)
            await asyncio.sleep(0)
            return f"value-of-{key}"

        async def scenario():
            cache = AsyncLoadingCache(loader, scheduler=ManualScheduler(), single_flight=True)
            return await asyncio.gather(cache.get("foo"), cache.get("foo"), cache.get("foo"))

        assert run(scenario()) == ["value-of-foo"] * 3
        assert calls == ["foo"]

    def test_single_flight_shares_error(self):
        """Test every waiter sees the loader failure."""
        async def loader(key):
            await asyncio.sleep(0)
            raise LookupError(key)

        async def scenario():
            cache = AsyncLoadingCache(loader, scheduler=ManualScheduler(), single_flight=True)
            results = await asyncio.gather(
                cache.get("foo"), cache.get("foo"), return_exceptions=True
            )
            return results, cache.has("foo")

        results, present = run(scenario())
        assert all(isinstance(r, LookupError) for r in results)
        assert not present


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
