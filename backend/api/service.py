"""
Sports data service: the consumption facade the HTTP layer talks to, plus the
uvicorn entrypoint.

Every read goes through the fetch policy executor and returns a QueryResult.
Derived data (partitions, picks, standings views) is computed from the
cached canonical entities.
"""
from __future__ import annotations

import asyncio
import os
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional

import uvicorn

from builder.partition import partition_matches
from builder.picks import rank_confident_picks
from builder.standings import CONFERENCE, DIVISION, StandingsAggregator, standings_key
from ingest.head_to_head import HeadToHeadResolver
from ingest.providers.registry import ProviderRegistry
from scheduler.refresh import AutoRefreshScheduler
from shared.config import Settings, get_settings
from shared.models.domain import (
    HeadToHeadHistory,
    Match,
    MatchPartition,
    Pick,
    QueryResult,
    RefreshState,
    Standing,
    Team,
)
from shared.models.enums import DataDomain
from shared.utils.logging import get_logger
from sync.executor import FetchPolicyExecutor, Sleep
from sync.store import CacheKey, CacheStore

logger = get_logger(__name__)


def matches_key(league: str) -> CacheKey:
    return (DataDomain.MATCHES, league)


class SportsDataService:
    """
    Wires the cache store, executor, scheduler and derived views together.

    Args:
        registry: Provider registry resolving which provider serves a domain.
        settings: Service settings; defaults to the process settings.
        store: Cache store; a fresh one is created when omitted.
        sleep: Retry backoff sleep, forwarded to the executor.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        settings: Settings | None = None,
        store: Optional[CacheStore] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._registry = registry
        self._store = store or CacheStore(max_entries=self._settings.cache_max_entries)
        self._executor = FetchPolicyExecutor(self._store, sleep=sleep)
        self._scheduler = AutoRefreshScheduler(
            self._executor, evict_interval_s=self._settings.evict_interval_s
        )
        self._match_policy = self._settings.policy_for(DataDomain.MATCHES)
        self.standings_aggregator = StandingsAggregator(
            self._executor,
            self._fetch_standings,
            self._settings.policy_for(DataDomain.STANDINGS),
        )
        self.head_to_head_resolver = HeadToHeadResolver(
            self._executor,
            self._fetch_head_to_head,
            self._settings.policy_for(DataDomain.HEAD_TO_HEAD),
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def executor(self) -> FetchPolicyExecutor:
        return self._executor

    @property
    def scheduler(self) -> AutoRefreshScheduler:
        return self._scheduler

    @property
    def store(self) -> CacheStore:
        return self._store

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self) -> None:
        await self._registry.start()
        self.register_refresh_jobs(self._settings.tracked_leagues)
        await self._scheduler.start()
        logger.info("sports_data_service_started", leagues=self._settings.tracked_leagues)

    async def stop(self) -> None:
        await self._scheduler.stop()
        await self._executor.aclose()
        await self._registry.close()
        logger.info("sports_data_service_stopped")

    def register_refresh_jobs(self, leagues: Iterable[str]) -> None:
        """Keep matches and standings for ``leagues`` refreshed in the background."""
        serves_standings = self._supports(DataDomain.STANDINGS)
        for league in leagues:
            league = league.upper()
            self._scheduler.register(
                matches_key(league),
                self._matches_fetcher(league),
                self._match_policy,
                self._settings.live_refresh_interval_s,
            )
            if serves_standings:
                self._scheduler.register(
                    standings_key(league),
                    self.standings_aggregator.fetcher(league),
                    self.standings_aggregator.policy,
                    self._settings.standings_refresh_interval_s,
                )

    # ── Provider plumbing ───────────────────────────────────────────────

    def _supports(self, domain: DataDomain) -> bool:
        return any(p.supports(domain) for p in self._registry.providers.values())

    def _matches_fetcher(self, league: str) -> Callable[[], Awaitable[list[Match]]]:
        async def _fetch() -> list[Match]:
            return await self._registry.provider_for(DataDomain.MATCHES).fetch_matches(league)

        return _fetch

    async def _fetch_standings(self, league: str) -> list[Standing]:
        return await self._registry.provider_for(DataDomain.STANDINGS).fetch_standings(league)

    async def _fetch_head_to_head(
        self, league: str, team1_id: str, team1_name: str, team2_id: str, team2_name: str
    ) -> HeadToHeadHistory:
        provider = self._registry.provider_for(DataDomain.HEAD_TO_HEAD)
        return await provider.fetch_head_to_head(league, team1_id, team1_name, team2_id, team2_name)

    # ── Reads ───────────────────────────────────────────────────────────

    async def match_list(self, league: str) -> QueryResult[tuple[Match, ...]]:
        league = league.upper()
        return await self._executor.read(matches_key(league), self._matches_fetcher(league), self._match_policy)

    async def matches(self, league: str) -> QueryResult[MatchPartition]:
        """Matches for ``league`` split into upcoming / live / finished."""
        result = await self.match_list(league)
        if result.data is None:
            return result
        return result.model_copy(update={"data": partition_matches(result.data)})

    async def picks(
        self,
        leagues: Iterable[str],
        top_n: Optional[int] = None,
        min_confidence: Optional[float] = None,
    ) -> QueryResult[list[Pick]]:
        """
        Most confident picks per league across ``leagues``. Leagues that failed
        to load contribute their last cached matches, and their errors are
        joined into one message.
        """
        unique = dict.fromkeys(league.upper() for league in leagues)
        results = await asyncio.gather(*(self.match_list(league) for league in unique))
        matches: list[Match] = []
        errors: list[str] = []
        updated: list[datetime] = []
        for result in results:
            if result.data is not None:
                matches.extend(result.data)
            if result.error:
                errors.append(result.error)
            if result.last_updated is not None:
                updated.append(result.last_updated)

        picks = rank_confident_picks(
            matches,
            top_n=top_n if top_n is not None else self._settings.picks_top_n,
            min_confidence=(
                min_confidence if min_confidence is not None else self._settings.picks_min_confidence
            ),
        )
        return QueryResult(
            data=picks,
            is_loading=any(r.is_loading for r in results),
            error="; ".join(errors) or None,
            last_updated=min(updated) if updated else None,
        )

    async def standings(
        self,
        league: str,
        conference: Optional[str] = None,
        division: Optional[str] = None,
    ) -> QueryResult[tuple[Standing, ...]]:
        """Full league standings, or the conference/division view when one is given."""
        league = league.upper()
        aggregator = self.standings_aggregator
        result = await self._executor.read(
            standings_key(league), aggregator.fetcher(league), aggregator.policy
        )
        if result.data is None:
            return result
        data: Any = result.data
        if division:
            data = aggregator.view_of(league, DIVISION, division, result.data)
        elif conference:
            data = aggregator.view_of(league, CONFERENCE, conference, result.data)
        return result.model_copy(update={"data": data})

    def invalidate_standings(self, league: str) -> int:
        return self.standings_aggregator.invalidate(league.upper())

    async def head_to_head(
        self, team1: Optional[Team], team2: Optional[Team], league: str
    ) -> QueryResult[HeadToHeadHistory]:
        return await self.head_to_head_resolver.read(team1, team2, league.upper())

    def refresh_states(self) -> list[RefreshState]:
        return [self._executor.refresh_state(domain) for domain in DataDomain]

    def handle_refocus(self) -> int:
        return self._executor.handle_refocus()


def main() -> None:
    """Start the API service."""
    settings = get_settings()
    port = int(os.environ.get("PORT", settings.api_port))

    uvicorn.run(
        "api.app:app",
        host=settings.api_host,
        port=port,
        log_level=settings.log_level.lower(),
        access_log=False,  # We handle logging via middleware
        timeout_keep_alive=30,
    )


if __name__ == "__main__":
    main()
