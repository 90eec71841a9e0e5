"""
In-memory keyed cache with per-entry freshness and retention windows.

Keys are tuples ``(domain, *params)`` compared by value. The store owns every
CacheEntry; ``get`` hands out a snapshot, and list values are frozen to tuples
on write so readers cannot mutate shared state. The store does not coalesce
concurrent population of a key; that is the executor's job.
"""
from __future__ import annotations

import dataclasses
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, Iterator, Optional, TypeVar

from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_ENTRIES, CACHE_EVICTIONS

logger = get_logger(__name__)

T = TypeVar("T")

CacheKey = tuple[Hashable, ...]
Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    key: CacheKey
    value: T
    fetched_at: float
    stale_after: float
    retain_until: float
    parent: Optional[CacheKey] = None

    def is_stale(self, now: float) -> bool:
        return now - self.fetched_at >= self.stale_after

    def is_expired(self, now: float) -> bool:
        return now > self.retain_until


def key_matches_prefix(key: CacheKey, prefix: CacheKey) -> bool:
    return len(key) >= len(prefix) and key[: len(prefix)] == prefix


class CacheStore:
    """
    Keyed cache store.

    Args:
        clock: Wall-clock source in seconds; injectable for tests.
        max_entries: LRU cap. Entries with active consumers are never
            evicted by the cap, so the store may briefly exceed it.
    """

    def __init__(self, clock: Clock = time.time, max_entries: int = 500) -> None:
        self._clock = clock
        self._max_entries = max_entries
        self._entries: OrderedDict[CacheKey, CacheEntry[Any]] = OrderedDict()
        self._children: dict[CacheKey, set[CacheKey]] = {}
        self._consumers: dict[CacheKey, int] = {}

    @property
    def clock(self) -> Clock:
        return self._clock

    def now(self) -> float:
        return self._clock()

    # ── Reads ───────────────────────────────────────────────────────────

    def get(self, key: CacheKey) -> Optional[CacheEntry[Any]]:
        """Return a snapshot of the entry for ``key``, or None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        self._entries.move_to_end(key)
        return dataclasses.replace(entry)

    def is_stale(self, key: CacheKey, now: Optional[float] = None) -> bool:
        """Absent keys count as stale."""
        entry = self._entries.get(key)
        if entry is None:
            return True
        return entry.is_stale(self._clock() if now is None else now)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> Iterator[CacheKey]:
        return iter(list(self._entries))

    def children(self, key: CacheKey) -> set[CacheKey]:
        return set(self._children.get(key, ()))

    # ── Writes ──────────────────────────────────────────────────────────

    def set(
        self,
        key: CacheKey,
        value: Any,
        stale_after: float,
        retain_for: float,
        parent: Optional[CacheKey] = None,
        now: Optional[float] = None,
    ) -> CacheEntry[Any]:
        """Create or replace the entry for ``key``."""
        if stale_after < 0 or retain_for < 0:
            raise ValueError("stale_after and retain_for must be non-negative")
        fetched_at = self._clock() if now is None else now
        if isinstance(value, list):
            value = tuple(value)

        old = self._entries.get(key)
        if old is not None and old.parent is not None and old.parent != parent:
            self._unlink(old.parent, key)

        entry: CacheEntry[Any] = CacheEntry(
            key=key,
            value=value,
            fetched_at=fetched_at,
            stale_after=stale_after,
            retain_until=fetched_at + retain_for,
            parent=parent,
        )
        self._entries[key] = entry
        self._entries.move_to_end(key)
        if parent is not None:
            self._children.setdefault(parent, set()).add(key)

        self._enforce_capacity()
        CACHE_ENTRIES.set(len(self._entries))
        return dataclasses.replace(entry)

    def invalidate(self, key: CacheKey) -> int:
        """Remove ``key`` and, transitively, every entry derived from it."""
        removed = 0
        pending = [key]
        while pending:
            current = pending.pop()
            pending.extend(self._children.pop(current, ()))
            entry = self._entries.pop(current, None)
            if entry is not None:
                removed += 1
                if entry.parent is not None:
                    self._unlink(entry.parent, current)
        if removed:
            CACHE_EVICTIONS.labels(reason="invalidated").inc(removed)
            CACHE_ENTRIES.set(len(self._entries))
            logger.debug("cache_invalidated", key=key, removed=removed)
        return removed

    def invalidate_prefix(self, prefix: CacheKey) -> int:
        removed = 0
        for key in self.keys():
            if key in self._entries and key_matches_prefix(key, prefix):
                removed += self.invalidate(key)
        return removed

    def clear(self) -> None:
        self._entries.clear()
        self._children.clear()
        CACHE_ENTRIES.set(0)

    # ── Retention ───────────────────────────────────────────────────────

    def retain(self, key: CacheKey) -> None:
        """Register an active consumer; retained entries survive eviction."""
        self._consumers[key] = self._consumers.get(key, 0) + 1

    def release(self, key: CacheKey) -> None:
        count = self._consumers.get(key, 0) - 1
        if count > 0:
            self._consumers[key] = count
        else:
            self._consumers.pop(key, None)

    def has_consumers(self, key: CacheKey) -> bool:
        return self._consumers.get(key, 0) > 0

    def evict_expired(self, now: Optional[float] = None) -> int:
        """Drop entries past their retention window that nobody is consuming."""
        now = self._clock() if now is None else now
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.is_expired(now) and not self.has_consumers(key)
        ]
        removed = 0
        for key in expired:
            entry = self._entries.pop(key, None)
            if entry is None:
                continue
            removed += 1
            if entry.parent is not None:
                self._unlink(entry.parent, key)
        if removed:
            CACHE_EVICTIONS.labels(reason="expired").inc(removed)
            CACHE_ENTRIES.set(len(self._entries))
            logger.debug("cache_evicted_expired", removed=removed)
        return removed

    def stats(self) -> dict[str, int]:
        return {
            "size": len(self._entries),
            "max_entries": self._max_entries,
            "consumers": sum(self._consumers.values()),
        }

    # ── Internals ───────────────────────────────────────────────────────

    def _unlink(self, parent: CacheKey, child: CacheKey) -> None:
        siblings = self._children.get(parent)
        if siblings is None:
            return
        siblings.discard(child)
        if not siblings:
            del self._children[parent]

    def _enforce_capacity(self) -> None:
        if len(self._entries) <= self._max_entries:
            return
        for key in list(self._entries):
            if len(self._entries) <= self._max_entries:
                break
            if self.has_consumers(key):
                continue
            entry = self._entries.pop(key)
            if entry.parent is not None:
                self._unlink(entry.parent, key)
            CACHE_EVICTIONS.labels(reason="capacity").inc()
