"""
Head-to-head resolver.

Histories are cached once per unordered team pair and league. The stored
history is expressed from the lower team id's point of view; each caller
gets it re-oriented to the team it passed first.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Optional

from shared.errors import InvalidInputError
from shared.models.domain import HeadToHeadHistory, QueryResult, Team
from shared.models.enums import DataDomain
from shared.utils.logging import get_logger
from sync.executor import FetchPolicyExecutor
from sync.policy import FetchPolicy
from sync.store import CacheKey

logger = get_logger(__name__)

HeadToHeadFetch = Callable[[str, str, str, str, str], Awaitable[HeadToHeadHistory]]


def head_to_head_key(league: str, team1_id: str, team2_id: str) -> CacheKey:
    first, second = sorted((team1_id, team2_id))
    return (DataDomain.HEAD_TO_HEAD, league, first, second)


class HeadToHeadResolver:

    def __init__(
        self,
        executor: FetchPolicyExecutor,
        fetch_head_to_head: HeadToHeadFetch,
        policy: FetchPolicy,
    ) -> None:
        self._executor = executor
        self._fetch = fetch_head_to_head
        self._policy = policy

    @staticmethod
    def _validate(team1: Optional[Team], team2: Optional[Team], league: str) -> None:
        if team1 is None or team2 is None:
            raise InvalidInputError("both teams are required for a head-to-head lookup")
        if not team1.id or not team2.id:
            raise InvalidInputError("team descriptors must carry an id")
        if team1.id == team2.id:
            raise InvalidInputError(f"cannot compare team {team1.id!r} with itself")
        if not league:
            raise InvalidInputError("league is required for a head-to-head lookup")

    def _fetcher(self, team1: Team, team2: Team, league: str) -> Callable[[], Awaitable[HeadToHeadHistory]]:
        first, second = sorted((team1, team2), key=lambda t: t.id)

        async def _fetch() -> HeadToHeadHistory:
            history = await self._fetch(league, first.id, first.name, second.id, second.name)
            return history.oriented(first.id)

        return _fetch

    async def resolve(self, team1: Optional[Team], team2: Optional[Team], league: str) -> HeadToHeadHistory:
        """
        Meeting history between ``team1`` and ``team2`` in ``league``, most
        recent first, summarized from ``team1``'s perspective.

        Raises:
            InvalidInputError: Either team is missing.
        """
        self._validate(team1, team2, league)
        key = head_to_head_key(league, team1.id, team2.id)
        history = await self._executor.get(key, self._fetcher(team1, team2, league), self._policy)
        return history.oriented(team1.id)

    async def read(
        self, team1: Optional[Team], team2: Optional[Team], league: str
    ) -> QueryResult[HeadToHeadHistory]:
        """``resolve`` under the consumption contract. Invalid input still raises."""
        self._validate(team1, team2, league)
        key = head_to_head_key(league, team1.id, team2.id)
        result = await self._executor.read(key, self._fetcher(team1, team2, league), self._policy)
        if result.data is None:
            return result
        return result.model_copy(update={"data": result.data.oriented(team1.id)})
