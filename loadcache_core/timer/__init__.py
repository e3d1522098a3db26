"""Timer module - Scheduling of expiry and refresh timers."""

from loadcache_core.timer.scheduler import (
    TimerHandle,
    Scheduler,
    ThreadingScheduler,
    ManualScheduler,
    AsyncioScheduler,
)

__all__ = [
    "TimerHandle",
    "Scheduler",
    "ThreadingScheduler",
    "ManualScheduler",
    "AsyncioScheduler",
]
