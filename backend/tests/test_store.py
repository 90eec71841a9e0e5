"""
Unit tests for the cache store: freshness boundaries, retention, invalidation.

Run: pytest backend/tests/test_store.py -v
"""
from __future__ import annotations

import pytest

from shared.models.enums import DataDomain
from sync.store import CacheStore

KEY = (DataDomain.MATCHES, "NBA")


# ── Freshness ───────────────────────────────────────────────────────────

def test_get_missing_key_returns_none(store: CacheStore) -> None:
    assert store.get(KEY) is None
    assert store.is_stale(KEY)


@pytest.mark.parametrize("offset", [0.0, 1.0, 299.0, 299.999])
def test_entry_fresh_before_stale_after(store: CacheStore, clock, offset: float) -> None:
    entry = store.set(KEY, ["a"], stale_after=300, retain_for=600)
    assert not store.is_stale(KEY, now=entry.fetched_at + offset)


@pytest.mark.parametrize("offset", [300.0, 300.001, 10_000.0])
def test_entry_stale_from_stale_after(store: CacheStore, offset: float) -> None:
    entry = store.set(KEY, ["a"], stale_after=300, retain_for=600)
    assert store.is_stale(KEY, now=entry.fetched_at + offset)


def test_keys_compare_by_value(store: CacheStore) -> None:
    store.set((DataDomain.STANDINGS, "NBA"), "v", stale_after=10, retain_for=10)
    assert store.get((DataDomain.STANDINGS, "NBA")).value == "v"
    assert (DataDomain.STANDINGS, "NFL") not in store


def test_list_values_are_frozen(store: CacheStore) -> None:
    source = [1, 2]
    store.set(KEY, source, stale_after=10, retain_for=10)
    source.append(3)
    assert store.get(KEY).value == (1, 2)


def test_set_replaces_value_and_timestamps(store: CacheStore, clock) -> None:
    first = store.set(KEY, "old", stale_after=10, retain_for=20)
    clock.advance(15)
    second = store.set(KEY, "new", stale_after=10, retain_for=20)
    assert store.get(KEY).value == "new"
    assert second.fetched_at == first.fetched_at + 15
    assert second.retain_until == second.fetched_at + 20


def test_negative_windows_rejected(store: CacheStore) -> None:
    with pytest.raises(ValueError):
        store.set(KEY, "v", stale_after=-1, retain_for=10)


# ── Retention & eviction ────────────────────────────────────────────────

def test_evict_expired_drops_only_past_retain_until(store: CacheStore, clock) -> None:
    entry = store.set(KEY, "v", stale_after=10, retain_for=60)
    assert store.evict_expired(now=entry.retain_until) == 0
    assert store.evict_expired(now=entry.retain_until + 0.001) == 1
    assert KEY not in store


def test_evict_expired_keeps_entries_with_consumers(store: CacheStore, clock) -> None:
    store.set(KEY, "v", stale_after=10, retain_for=60)
    store.retain(KEY)
    clock.advance(120)
    assert store.evict_expired() == 0
    store.release(KEY)
    assert store.evict_expired() == 1


def test_retain_is_reference_counted(store: CacheStore) -> None:
    store.retain(KEY)
    store.retain(KEY)
    store.release(KEY)
    assert store.has_consumers(KEY)
    store.release(KEY)
    assert not store.has_consumers(KEY)


def test_lru_cap_evicts_least_recently_used(clock) -> None:
    store = CacheStore(clock=clock, max_entries=2)
    store.set(("d", 1), "a", stale_after=10, retain_for=10)
    store.set(("d", 2), "b", stale_after=10, retain_for=10)
    store.get(("d", 1))
    store.set(("d", 3), "c", stale_after=10, retain_for=10)
    assert ("d", 1) in store
    assert ("d", 2) not in store
    assert len(store) == 2


def test_lru_cap_skips_retained_entries(clock) -> None:
    store = CacheStore(clock=clock, max_entries=1)
    store.set(("d", 1), "a", stale_after=10, retain_for=10)
    store.retain(("d", 1))
    store.set(("d", 2), "b", stale_after=10, retain_for=10)
    assert ("d", 1) in store
    assert ("d", 2) in store


# ── Invalidation ────────────────────────────────────────────────────────

def test_invalidate_cascades_to_children(store: CacheStore) -> None:
    parent = (DataDomain.STANDINGS, "NBA")
    child = (DataDomain.STANDINGS, "NBA", "conference", "east")
    grandchild = (DataDomain.STANDINGS, "NBA", "conference", "east", "top")
    store.set(parent, "p", stale_after=10, retain_for=10)
    store.set(child, "c", stale_after=10, retain_for=10, parent=parent)
    store.set(grandchild, "g", stale_after=10, retain_for=10, parent=child)

    assert store.invalidate(parent) == 3
    assert len(store) == 0
    assert store.children(parent) == set()


def test_invalidate_prefix(store: CacheStore) -> None:
    store.set((DataDomain.MATCHES, "NBA"), 1, stale_after=10, retain_for=10)
    store.set((DataDomain.MATCHES, "NFL"), 2, stale_after=10, retain_for=10)
    store.set((DataDomain.STANDINGS, "NBA"), 3, stale_after=10, retain_for=10)
    assert store.invalidate_prefix((DataDomain.MATCHES,)) == 2
    assert list(store.keys()) == [(DataDomain.STANDINGS, "NBA")]


def test_stats(store: CacheStore) -> None:
    store.set(KEY, 1, stale_after=10, retain_for=10)
    store.retain(KEY)
    assert store.stats() == {"size": 1, "max_entries": 500, "consumers": 1}
