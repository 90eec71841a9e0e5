"""
Unit tests for head-to-head history summaries and the resolver cache.

Run: pytest backend/tests/test_head_to_head.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from ingest.head_to_head import HeadToHeadResolver, head_to_head_key
from shared.errors import InvalidInputError
from shared.models.domain import HeadToHeadHistory, HistoricalMeeting, Team
from shared.models.enums import DataDomain, MeetingWinner
from sync.executor import FetchPolicyExecutor
from sync.policy import FetchPolicy
from sync.store import CacheStore

POLICY = FetchPolicy(stale_after=300, retain_for=1800, max_retries=0)

CELTICS = Team(id="2", name="Boston Celtics", short_name="BOS")
LAKERS = Team(id="13", name="Los Angeles Lakers", short_name="LAL")


def meeting(idx: int, home: Team, away: Team, home_score: int, away_score: int) -> HistoricalMeeting:
    if home_score > away_score:
        winner = MeetingWinner.HOME
    elif away_score > home_score:
        winner = MeetingWinner.AWAY
    else:
        winner = MeetingWinner.TIE
    return HistoricalMeeting(
        id=f"g{idx}",
        date=datetime(2024, 1, 1, tzinfo=timezone.utc) - timedelta(days=30 * idx),
        home_team_id=home.id,
        home_team=home.name,
        away_team_id=away.id,
        away_team=away.name,
        home_score=home_score,
        away_score=away_score,
        winner=winner,
    )


# most recent first: LAL, LAL, BOS, tie
MEETINGS = [
    meeting(0, LAKERS, CELTICS, 110, 100),
    meeting(1, CELTICS, LAKERS, 95, 101),
    meeting(2, CELTICS, LAKERS, 120, 99),
    meeting(3, LAKERS, CELTICS, 90, 90),
]


# ── Summary ─────────────────────────────────────────────────────────────

def test_summary_from_team_perspective() -> None:
    history = HeadToHeadHistory.from_meetings("NBA", LAKERS.id, CELTICS.id, MEETINGS)
    assert history.total_games == 4
    assert (history.team1_wins, history.team2_wins, history.ties) == (2, 1, 1)
    assert history.streak_team_id == LAKERS.id
    assert history.streak_count == 2
    assert history.avg_team1_score == round((110 + 101 + 99 + 90) / 4, 1)
    assert history.avg_team2_score == round((100 + 95 + 120 + 90) / 4, 1)


def test_oriented_swaps_summary() -> None:
    history = HeadToHeadHistory.from_meetings("NBA", LAKERS.id, CELTICS.id, MEETINGS)
    flipped = history.oriented(CELTICS.id)
    assert (flipped.team1_id, flipped.team2_id) == (CELTICS.id, LAKERS.id)
    assert (flipped.team1_wins, flipped.team2_wins) == (1, 2)
    assert flipped.avg_team1_score == history.avg_team2_score
    assert flipped.meetings == history.meetings
    assert flipped.oriented(LAKERS.id) == history


def test_oriented_rejects_outsider() -> None:
    history = HeadToHeadHistory.from_meetings("NBA", LAKERS.id, CELTICS.id, MEETINGS)
    with pytest.raises(ValueError):
        history.oriented("999")


def test_empty_history() -> None:
    history = HeadToHeadHistory.from_meetings("NBA", "1", "2", [])
    assert history.total_games == 0
    assert history.streak_team_id is None
    assert history.avg_team1_score == 0.0


# ── Resolver ────────────────────────────────────────────────────────────

@pytest.fixture
def provider_fetch() -> AsyncMock:
    async def _fetch(league, team1_id, team1_name, team2_id, team2_name):
        return HeadToHeadHistory.from_meetings(league, team1_id, team2_id, MEETINGS)

    return AsyncMock(side_effect=_fetch)


@pytest.fixture
def resolver(store: CacheStore, provider_fetch: AsyncMock) -> HeadToHeadResolver:
    return HeadToHeadResolver(FetchPolicyExecutor(store, sleep=AsyncMock()), provider_fetch, POLICY)


def test_key_is_order_independent() -> None:
    assert head_to_head_key("NBA", "2", "13") == head_to_head_key("NBA", "13", "2")
    assert head_to_head_key("NBA", "2", "13")[0] == DataDomain.HEAD_TO_HEAD


@pytest.mark.asyncio
async def test_resolve_is_symmetric_and_cached(
    resolver: HeadToHeadResolver, provider_fetch: AsyncMock, store: CacheStore
) -> None:
    ab = await resolver.resolve(LAKERS, CELTICS, "NBA")
    ba = await resolver.resolve(CELTICS, LAKERS, "NBA")

    assert provider_fetch.await_count == 1
    assert len(store) == 1
    assert ab.team1_id == LAKERS.id
    assert ba.team1_id == CELTICS.id
    assert ab.team1_wins == ba.team2_wins
    assert ab.meetings == ba.meetings


@pytest.mark.asyncio
async def test_provider_called_with_normalized_pair(
    resolver: HeadToHeadResolver, provider_fetch: AsyncMock
) -> None:
    await resolver.resolve(LAKERS, CELTICS, "NBA")
    first, second = sorted((LAKERS, CELTICS), key=lambda t: t.id)
    provider_fetch.assert_awaited_once_with("NBA", first.id, first.name, second.id, second.name)


@pytest.mark.asyncio
async def test_leagues_cached_separately(
    resolver: HeadToHeadResolver, provider_fetch: AsyncMock
) -> None:
    await resolver.resolve(LAKERS, CELTICS, "NBA")
    await resolver.resolve(LAKERS, CELTICS, "WNBA")
    assert provider_fetch.await_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("team1, team2", [(None, CELTICS), (LAKERS, None), (None, None)])
async def test_missing_team_raises(resolver: HeadToHeadResolver, provider_fetch: AsyncMock, team1, team2) -> None:
    with pytest.raises(InvalidInputError):
        await resolver.resolve(team1, team2, "NBA")
    provider_fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_same_team_raises(resolver: HeadToHeadResolver) -> None:
    with pytest.raises(InvalidInputError):
        await resolver.resolve(LAKERS, LAKERS, "NBA")


@pytest.mark.asyncio
async def test_read_orients_result(resolver: HeadToHeadResolver) -> None:
    result = await resolver.read(CELTICS, LAKERS, "NBA")
    assert result.error is None
    assert result.data.team1_id == CELTICS.id
    assert result.last_updated is not None
