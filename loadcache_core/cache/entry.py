"""LoadCache Entry - Cache Entry with Timers and Removal Causes.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, Optional

from loadcache_core.timer.scheduler import TimerHandle


class RemovalCause(Enum):
    """Why an entry left the cache."""

    EXPLICIT_DELETE = "EXPLICIT_DELETE"   # Caller deleted the key
    EXPIRED = "EXPIRED"                   # An expiry timer fired
    REPLACED = "REPLACED"                 # A write overwrote a live value


class TimerRole(Enum):
    """Timer roles an entry may have armed."""

    ACCESS_EXPIRY = "access_expiry"
    WRITE_EXPIRY = "write_expiry"
    REFRESH = "refresh"

    @property
    def expires(self) -> bool:
        return self is not TimerRole.REFRESH


@dataclass
class EntryMetadata:
    """Metadata for a cache entry.

    Times are in scheduler time, not wall-clock time.

    Attributes:
        written_at: Last write (set, load or refresh)
        accessed_at: Last read or write
        access_count: Number of read hits
        version: Incremented on every write
    """

    written_at: float = 0.0
    accessed_at: float = 0.0
    access_count: int = 0
    version: int = 1

    def touch(self, now: float) -> None:
        """Update access time and count."""
        self.accessed_at = now
        self.access_count += 1

    def update(self, now: float) -> None:
        """Update write time and version."""
        self.written_at = now
        self.accessed_at = now
        self.version += 1


@dataclass
class CacheEntry:
    """A live cache entry and the timers armed for it.

    At most one timer per role is held; arm() cancels the one it replaces.

    Attributes:
        key: Cache key
        value: Cached value
        metadata: Entry metadata
        timers: Armed timers by role
    """

    key: Hashable
    value: Any
    metadata: EntryMetadata = field(default_factory=EntryMetadata)
    timers: Dict[TimerRole, TimerHandle] = field(default_factory=dict)

    def arm(self, role: TimerRole, handle: TimerHandle) -> None:
        """Install a timer for role, cancelling the previous one."""
        previous = self.timers.get(role)
        if previous is not None:
            previous.cancel()
        self.timers[role] = handle

    def owns(self, role: TimerRole, handle: TimerHandle) -> bool:
        """Check whether handle is still the armed timer for role."""
        return self.timers.get(role) is handle and not handle.cancelled

    def cancel_timers(self) -> None:
        """Cancel and drop every armed timer."""
        for handle in self.timers.values():
            handle.cancel()
        self.timers.clear()

    def expires_at(self) -> Optional[float]:
        """Earliest expiry deadline, None if no expiry timer is armed."""
        deadlines = [
            handle.deadline
            for role, handle in self.timers.items()
            if role.expires and not handle.cancelled
        ]
        return min(deadlines) if deadlines else None

    def is_expired(self, now: float) -> bool:
        """Check if an expiry deadline has passed."""
        deadline = self.expires_at()
        return deadline is not None and now >= deadline

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary.

        Returns:
            Dictionary representation
        """
        return {
            "key": self.key,
            "value": self.value,
            "metadata": {
                "written_at": self.metadata.written_at,
                "accessed_at": self.metadata.accessed_at,
                "access_count": self.metadata.access_count,
                "version": self.metadata.version,
            },
            "timers": {role.value: handle.deadline for role, handle in self.timers.items()},
        }

    def __repr__(self) -> str:
        roles = ",".join(role.value for role in self.timers)
        return f"CacheEntry(key={self.key!r}, version={self.metadata.version}, timers=[{roles}])"


__all__ = ["CacheEntry", "EntryMetadata", "RemovalCause", "TimerRole"]
