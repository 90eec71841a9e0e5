"""Shared fixtures: a controllable clock and canonical model factories."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest

from shared.models.domain import Match, Odds, Prediction, Standing, Team
from shared.models.enums import MatchStatus, Side
from sync.store import CacheStore

BASE_TIME = datetime(2024, 1, 15, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced wall clock (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> CacheStore:
    return CacheStore(clock=clock)


@pytest.fixture
def make_match() -> Callable[..., Match]:
    def _make(
        match_id: str = "m1",
        league: str = "NBA",
        status: MatchStatus = MatchStatus.SCHEDULED,
        confidence: Any = None,
        start_offset_h: float = 0.0,
        recommended: Side = Side.HOME,
        with_prediction: Optional[bool] = None,
    ) -> Match:
        if with_prediction is None:
            with_prediction = confidence is not None
        return Match(
            id=match_id,
            league=league,
            home_team=Team(id=f"{match_id}-h", name="Home Team", short_name="HOM"),
            away_team=Team(id=f"{match_id}-a", name="Away Team", short_name="AWY"),
            start_time=BASE_TIME + timedelta(hours=start_offset_h),
            odds=Odds(home_win=0.55, away_win=0.45),
            status=status,
            prediction=Prediction(recommended=recommended, confidence=confidence) if with_prediction else None,
        )

    return _make


@pytest.fixture
def make_standing() -> Callable[..., Standing]:
    def _make(
        team_id: str,
        conference: Optional[str],
        division: Optional[str],
        conference_rank: int,
        division_rank: int,
        league: str = "NBA",
        wins: int = 0,
        losses: int = 0,
    ) -> Standing:
        return Standing(
            league=league,
            team_id=team_id,
            team_name=f"Team {team_id}",
            conference=conference,
            division=division,
            conference_rank=conference_rank,
            division_rank=division_rank,
            wins=wins,
            losses=losses,
        )

    return _make
