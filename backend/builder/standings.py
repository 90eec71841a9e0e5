"""
Standings aggregator.

Fetches one canonical standings table per league through the executor and
derives conference/division views from it. Derived views are cached under
their own keys with the canonical key as parent, so invalidating the league
invalidates every view, and a view computed from an older canonical snapshot
is recomputed.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Iterable, Optional

from shared.models.domain import Standing
from shared.models.enums import DataDomain
from shared.utils.logging import get_logger
from sync.executor import FetchPolicyExecutor
from sync.policy import FetchPolicy
from sync.store import CacheKey

logger = get_logger(__name__)

StandingsFetch = Callable[[str], Awaitable[list[Standing]]]

CONFERENCE = "conference"
DIVISION = "division"

_RANK_FIELD = {CONFERENCE: "conference_rank", DIVISION: "division_rank"}


def _filter_sorted(standings: Iterable[Standing], field: str, name: str) -> tuple[Standing, ...]:
    wanted = name.casefold()
    rows = [s for s in standings if (getattr(s, field) or "").casefold() == wanted]
    rows.sort(key=lambda s: getattr(s, _RANK_FIELD[field]))
    return tuple(rows)


def filter_by_conference(standings: Iterable[Standing], conference: str) -> tuple[Standing, ...]:
    """Teams in ``conference`` (case-insensitive), ascending by conference rank."""
    return _filter_sorted(standings, CONFERENCE, conference)


def filter_by_division(standings: Iterable[Standing], division: str) -> tuple[Standing, ...]:
    """Teams in ``division`` (case-insensitive), ascending by division rank."""
    return _filter_sorted(standings, DIVISION, division)


def standings_key(league: str) -> CacheKey:
    return (DataDomain.STANDINGS, league)


def view_key(league: str, field: str, name: str) -> CacheKey:
    return (DataDomain.STANDINGS, league, field, name.casefold())


class StandingsAggregator:

    def __init__(
        self,
        executor: FetchPolicyExecutor,
        fetch_standings: StandingsFetch,
        policy: FetchPolicy,
    ) -> None:
        self._executor = executor
        self._fetch = fetch_standings
        self._policy = policy

    @property
    def policy(self) -> FetchPolicy:
        return self._policy

    def fetcher(self, league: str) -> Callable[[], Awaitable[list[Standing]]]:
        async def _fetch() -> list[Standing]:
            return await self._fetch(league)

        return _fetch

    async def standings(self, league: str) -> tuple[Standing, ...]:
        """Full league standings (canonical, cached)."""
        return await self._executor.get(standings_key(league), self.fetcher(league), self._policy)

    async def by_conference(self, league: str, conference: str) -> tuple[Standing, ...]:
        return await self._view(league, CONFERENCE, conference)

    async def by_division(self, league: str, division: str) -> tuple[Standing, ...]:
        return await self._view(league, DIVISION, division)

    def invalidate(self, league: str) -> int:
        """Drop the canonical table and every view derived from it."""
        return self._executor.store.invalidate(standings_key(league))

    async def _view(self, league: str, field: str, name: str) -> tuple[Standing, ...]:
        return self.view_of(league, field, name, await self.standings(league))

    def view_of(
        self, league: str, field: str, name: str, canonical: tuple[Standing, ...]
    ) -> tuple[Standing, ...]:
        """
        Derive the ``field`` view named ``name`` from a canonical table the
        caller has already read. Never fetches.
        """
        store = self._executor.store
        parent_key = standings_key(league)
        parent = store.get(parent_key)
        current = parent is not None and parent.value is canonical
        key = view_key(league, field, name)

        cached = store.get(key)
        if current and cached is not None and cached.fetched_at >= parent.fetched_at:
            return cached.value

        view = _filter_sorted(canonical, field, name)
        if not current:
            # canonical entry replaced or evicted since it was read
            return view
        store.set(
            key,
            view,
            stale_after=parent.stale_after,
            retain_for=parent.retain_until - parent.fetched_at,
            parent=parent_key,
            now=parent.fetched_at,
        )
        logger.debug("standings_view_computed", league=league, field=field, name=name, teams=len(view))
        return view

    def cached_view(self, league: str, field: str, name: str) -> Optional[tuple[Standing, ...]]:
        entry = self._executor.store.get(view_key(league, field, name))
        return entry.value if entry is not None else None
