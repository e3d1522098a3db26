"""LoadCache Scheduler - Timer Scheduling for Entry Lifecycles.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TimerHandle:
    """A cancellable armed deadline.

    Attributes:
        deadline: Scheduler time at which the callback fires next
        interval: Repeat interval, None for one-shot timers
    """

    def __init__(
        self,
        deadline: float,
        callback: Callable[[], None],
        interval: Optional[float] = None,
    ):
        self.deadline = deadline
        self.interval = interval
        self._callback = callback
        self._cancelled = False
        self._native: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def cancel(self) -> None:
        """Cancel the timer. Safe to call more than once."""
        self._cancelled = True
        if self._native is not None:
            self._native.cancel()
            self._native = None

    def _run(self) -> None:
        if self._cancelled:
            return
        try:
            self._callback()
        except Exception as e:
            logger.exception(f"Timer callback error: {e}")

    def __repr__(self) -> str:
        kind = "repeating" if self.repeating else "once"
        return f"TimerHandle(deadline={self.deadline:.3f}, {kind}, cancelled={self._cancelled})"


class Scheduler(ABC):
    """Abstract timer driver.

    Schedulers are the only source of asynchronous re-entry into a cache.
    A callback that raises is logged and does not stop the scheduler.
    """

    @abstractmethod
    def now(self) -> float:
        """Current scheduler time in seconds."""
        pass

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay seconds."""
        pass

    @abstractmethod
    def call_repeating(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback every interval seconds until cancelled."""
        pass

    def close(self) -> None:
        """Release scheduler resources."""
        pass


class _HeapScheduler(Scheduler):
    """Deadline heap shared by the thread and manual schedulers."""

    def __init__(self):
        self._heap: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()
        self._lock = threading.RLock()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self.now() + delay, callback)
        self._push(handle)
        return handle

    def call_repeating(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"Repeat interval must be positive, got {interval}")
        handle = TimerHandle(self.now() + interval, callback, interval=interval)
        self._push(handle)
        return handle

    def pending(self) -> int:
        """Number of armed, non-cancelled timers."""
        with self._lock:
            return sum(1 for _, _, h in self._heap if not h.cancelled)

    def _push(self, handle: TimerHandle) -> None:
        with self._lock:
            heapq.heappush(self._heap, (handle.deadline, next(self._counter), handle))
        self._wakeup()

    def _wakeup(self) -> None:
        pass

    def _pop_due(self, now: float) -> Optional[TimerHandle]:
        """Pop the earliest due timer, dropping cancelled ones."""
        with self._lock:
            while self._heap:
                deadline, _, handle = self._heap[0]
                if handle.cancelled:
                    heapq.heappop(self._heap)
                    continue
                if deadline > now:
                    return None
                heapq.heappop(self._heap)
                return handle
            return None

    def _next_deadline(self) -> Optional[float]:
        with self._lock:
            while self._heap and self._heap[0][2].cancelled:
                heapq.heappop(self._heap)
            return self._heap[0][0] if self._heap else None

    def _fire(self, handle: TimerHandle) -> None:
        if handle.repeating:
            # Rearm before running so the callback may cancel it.
            handle.deadline += handle.interval
            with self._lock:
                heapq.heappush(self._heap, (handle.deadline, next(self._counter), handle))
        handle._run()


class ThreadingScheduler(_HeapScheduler):
    """Scheduler firing callbacks on one daemon worker thread.

    Example:
        scheduler = ThreadingScheduler(name="sessions")
        handle = scheduler.call_later(30.0, lambda: print("expired"))
        handle.cancel()
        scheduler.close()
    """

    def __init__(self, name: str = "loadcache"):
        super().__init__()
        self.name = name
        self._condition = threading.Condition(self._lock)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def now(self) -> float:
        return time.monotonic()

    def start(self) -> None:
        """Start the worker thread."""
        with self._lock:
            if self._thread is not None:
                return

            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run_loop,
                daemon=True,
                name=f"Scheduler-{self.name}",
            )
            self._thread.start()
        logger.info(f"Scheduler {self.name} started")

    def close(self) -> None:
        """Stop the worker thread and drop pending timers."""
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()
            for _, _, handle in self._heap:
                handle.cancel()
            self._heap.clear()
            self._condition.notify_all()

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
            logger.info(f"Scheduler {self.name} stopped")

    def _push(self, handle: TimerHandle) -> None:
        self.start()
        super()._push(handle)

    def _wakeup(self) -> None:
        with self._condition:
            self._condition.notify_all()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            handle = self._pop_due(self.now())
            if handle is not None:
                self._fire(handle)
                continue

            with self._condition:
                if self._stop_event.is_set():
                    break
                deadline = self._next_deadline()
                timeout = None if deadline is None else max(0.0, deadline - self.now())
                self._condition.wait(timeout)


class ManualScheduler(_HeapScheduler):
    """Scheduler driven by an explicit virtual clock.

    Nothing fires until advance() is called; callbacks then run on the
    calling thread in deadline order.

    Example:
        scheduler = ManualScheduler()
        cache = LoadingCache(config, scheduler=scheduler)
        cache.set("key", "value")
        scheduler.advance(60.0)
    """

    def __init__(self, start: float = 0.0):
        super().__init__()
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing every timer that falls due.

        Args:
            seconds: Amount of virtual time to advance

        Returns:
            Number of callbacks fired
        """
        if seconds < 0:
            raise ValueError("Cannot move the clock backwards")

        target = self._now + seconds
        fired = 0
        while True:
            deadline = self._next_deadline()
            if deadline is None or deadline > target:
                break
            self._now = max(self._now, deadline)
            handle = self._pop_due(self._now)
            if handle is None:
                continue
            self._fire(handle)
            fired += 1

        self._now = target
        return fired


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the event loop's call_later.

    Callbacks run on the loop thread, so a cache driven by this scheduler
    is only ever touched by the loop. The loop defaults to the one running
    when the first timer is armed.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                return time.monotonic()
        return self._loop.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self.now() + delay, callback)
        handle._native = self.loop.call_at(handle.deadline, handle._run)
        return handle

    def call_repeating(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"Repeat interval must be positive, got {interval}")

        handle = TimerHandle(self.now() + interval, callback, interval=interval)

        def tick() -> None:
            if handle.cancelled:
                return
            handle.deadline += interval
            handle._native = self.loop.call_at(handle.deadline, tick)
            handle._run()

        handle._native = self.loop.call_at(handle.deadline, tick)
        return handle


__all__ = [
    "TimerHandle",
    "Scheduler",
    "ThreadingScheduler",
    "ManualScheduler",
    "AsyncioScheduler",
]
