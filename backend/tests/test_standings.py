"""
Unit tests for the standings aggregator and its derived views.

Run: pytest backend/tests/test_standings.py -v
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from builder.standings import (
    StandingsAggregator,
    filter_by_conference,
    filter_by_division,
    standings_key,
    view_key,
)
from sync.executor import FetchPolicyExecutor
from sync.policy import FetchPolicy
from sync.store import CacheStore

POLICY = FetchPolicy(stale_after=300, retain_for=600, max_retries=0)


@pytest.fixture
def table(make_standing):
    return [
        make_standing("bos", "Eastern Conference", "Atlantic", conference_rank=1, division_rank=1),
        make_standing("lal", "Western Conference", "Pacific", conference_rank=3, division_rank=2),
        make_standing("nyk", "Eastern Conference", "Atlantic", conference_rank=4, division_rank=2),
        make_standing("mil", "Eastern Conference", "Central", conference_rank=2, division_rank=1),
        make_standing("gsw", "Western Conference", "Pacific", conference_rank=1, division_rank=1),
    ]


@pytest.fixture
def fetch(table) -> AsyncMock:
    return AsyncMock(return_value=table)


@pytest.fixture
def aggregator(store: CacheStore, fetch: AsyncMock) -> StandingsAggregator:
    return StandingsAggregator(FetchPolicyExecutor(store, sleep=AsyncMock()), fetch, POLICY)


# ── Pure filters ────────────────────────────────────────────────────────

def test_filter_by_conference_case_insensitive_and_sorted(table) -> None:
    east = filter_by_conference(table, "eastern CONFERENCE")
    assert [s.team_id for s in east] == ["bos", "mil", "nyk"]


def test_filter_by_division_sorted_by_division_rank(table) -> None:
    assert [s.team_id for s in filter_by_division(table, "pacific")] == ["gsw", "lal"]


def test_filter_unknown_group_is_empty(table) -> None:
    assert filter_by_conference(table, "Nowhere") == ()


def test_filter_ignores_missing_grouping(make_standing) -> None:
    rows = [make_standing("x", None, None, conference_rank=1, division_rank=1)]
    assert filter_by_division(rows, "atlantic") == ()


# ── Aggregator ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_one_canonical_fetch_serves_every_view(
    aggregator: StandingsAggregator, fetch: AsyncMock
) -> None:
    await aggregator.standings("NBA")
    await aggregator.by_conference("NBA", "Western Conference")
    await aggregator.by_division("NBA", "Atlantic")
    assert fetch.await_count == 1


@pytest.mark.asyncio
async def test_view_cached_under_derived_key(
    aggregator: StandingsAggregator, store: CacheStore
) -> None:
    view = await aggregator.by_conference("NBA", "Western Conference")
    assert [s.team_id for s in view] == ["gsw", "lal"]

    key = view_key("NBA", "conference", "western conference")
    assert store.get(key).parent == standings_key("NBA")
    assert key in store.children(standings_key("NBA"))
    assert aggregator.cached_view("NBA", "conference", "WESTERN CONFERENCE") == view


@pytest.mark.asyncio
async def test_invalidating_league_drops_views(
    aggregator: StandingsAggregator, store: CacheStore, fetch: AsyncMock
) -> None:
    await aggregator.by_conference("NBA", "Eastern Conference")
    await aggregator.by_division("NBA", "Pacific")
    assert aggregator.invalidate("NBA") == 3
    assert len(store) == 0

    await aggregator.by_division("NBA", "Pacific")
    assert fetch.await_count == 2


@pytest.mark.asyncio
async def test_view_recomputed_when_canonical_is_newer(
    aggregator: StandingsAggregator, store: CacheStore, clock, make_standing
) -> None:
    await aggregator.by_division("NBA", "Central")

    clock.advance(10)
    refreshed = [make_standing("chi", "Eastern Conference", "Central", conference_rank=5, division_rank=1)]
    store.set(standings_key("NBA"), refreshed, stale_after=300, retain_for=600)

    view = await aggregator.by_division("NBA", "Central")
    assert [s.team_id for s in view] == ["chi"]


@pytest.mark.asyncio
async def test_views_are_per_league(aggregator: StandingsAggregator, fetch: AsyncMock) -> None:
    await aggregator.by_conference("NBA", "Eastern Conference")
    await aggregator.by_conference("WNBA", "Eastern Conference")
    assert [c.args[0] for c in fetch.await_args_list] == ["NBA", "WNBA"]
