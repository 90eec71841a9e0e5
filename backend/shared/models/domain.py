"""
Pydantic v2 domain models shared across the sync layer.
These are the canonical internal representations every provider adapter
normalizes into. Instances are frozen: cached values are handed to callers
as read-only views.
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from shared.models.enums import DataDomain, MatchStatus, MeetingWinner, ProviderName, Side

T = TypeVar("T")


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)


# ── Match ───────────────────────────────────────────────────────────────
class Team(DomainModel):
    id: str
    name: str
    short_name: str
    logo: str = ""
    record: Optional[str] = None


class Odds(DomainModel):
    """Win probabilities in [0, 1]."""
    home_win: float
    away_win: float
    draw: Optional[float] = None


class LiveOdds(DomainModel):
    """Per-sportsbook odds, tagged with the provider that produced them."""
    provider: ProviderName
    sportsbook: str
    home_win: float
    away_win: float
    draw: Optional[float] = None
    updated_at: Optional[AwareDatetime] = None


class Score(DomainModel):
    home: int = 0
    away: int = 0
    period: Optional[str] = None


class ProjectedScore(DomainModel):
    home: float
    away: float


class Prediction(DomainModel):
    """
    Upstream prediction. ``confidence`` is carried as received; only
    finite values in [0, 100] are rankable.
    """
    recommended: Side
    confidence: Optional[float] = None
    projected_score: Optional[ProjectedScore] = None

    @property
    def is_rankable(self) -> bool:
        c = self.confidence
        return (
            isinstance(c, (int, float))
            and not isinstance(c, bool)
            and math.isfinite(c)
            and 0.0 <= c <= 100.0
        )


class Match(DomainModel):
    id: str
    league: str
    home_team: Team
    away_team: Team
    start_time: AwareDatetime
    odds: Optional[Odds] = None
    live_odds: tuple[LiveOdds, ...] = ()
    score: Optional[Score] = None
    status: MatchStatus
    prediction: Optional[Prediction] = None


# ── Standings ───────────────────────────────────────────────────────────
class Streak(DomainModel):
    kind: str = "win"
    length: int = 0


class Standing(DomainModel):
    league: str
    team_id: str
    team_name: str
    conference: Optional[str] = None
    division: Optional[str] = None
    conference_rank: int = Field(ge=1)
    division_rank: int = Field(ge=1)
    wins: int = 0
    losses: int = 0
    ties: Optional[int] = None
    win_pct: float = 0.0
    games_back: float = 0.0
    streak: Streak = Field(default_factory=Streak)


# ── Head to head ────────────────────────────────────────────────────────
class HistoricalMeeting(DomainModel):
    id: str
    date: AwareDatetime
    home_team_id: str
    home_team: str
    away_team_id: str
    away_team: str
    home_score: int
    away_score: int
    winner: MeetingWinner
    venue: str = ""
    season: str = ""

    def score_for(self, team_id: str) -> int:
        return self.home_score if self.home_team_id == team_id else self.away_score


class HeadToHeadHistory(DomainModel):
    """
    Meetings between two teams in one league, most recent first.
    Summary fields are expressed from ``team1_id``'s point of view.
    """
    league: str
    team1_id: str
    team2_id: str
    meetings: tuple[HistoricalMeeting, ...] = ()
    team1_wins: int = 0
    team2_wins: int = 0
    ties: int = 0
    streak_team_id: Optional[str] = None
    streak_count: int = 0
    avg_team1_score: float = 0.0
    avg_team2_score: float = 0.0

    @property
    def total_games(self) -> int:
        return len(self.meetings)

    @classmethod
    def from_meetings(
        cls,
        league: str,
        team1_id: str,
        team2_id: str,
        meetings: list[HistoricalMeeting],
    ) -> "HeadToHeadHistory":
        """Build a history and its summary from meetings ordered most recent first."""
        team1_wins = team2_wins = ties = 0
        team1_total = team2_total = 0
        results: list[Optional[str]] = []
        for meeting in meetings:
            t1 = meeting.score_for(team1_id)
            t2 = meeting.score_for(team2_id)
            team1_total += t1
            team2_total += t2
            if t1 > t2:
                team1_wins += 1
                results.append(team1_id)
            elif t2 > t1:
                team2_wins += 1
                results.append(team2_id)
            else:
                ties += 1
                results.append(None)

        streak_team: Optional[str] = results[0] if results else None
        streak_count = 0
        if streak_team is not None:
            for winner in results:
                if winner != streak_team:
                    break
                streak_count += 1

        n = len(meetings)
        return cls(
            league=league,
            team1_id=team1_id,
            team2_id=team2_id,
            meetings=tuple(meetings),
            team1_wins=team1_wins,
            team2_wins=team2_wins,
            ties=ties,
            streak_team_id=streak_team,
            streak_count=streak_count,
            avg_team1_score=round(team1_total / n, 1) if n else 0.0,
            avg_team2_score=round(team2_total / n, 1) if n else 0.0,
        )

    def oriented(self, team1_id: str) -> "HeadToHeadHistory":
        """Return this history from ``team1_id``'s perspective."""
        if team1_id == self.team1_id:
            return self
        if team1_id != self.team2_id:
            raise ValueError(f"team {team1_id!r} is not part of this history")
        return self.model_copy(
            update={
                "team1_id": self.team2_id,
                "team2_id": self.team1_id,
                "team1_wins": self.team2_wins,
                "team2_wins": self.team1_wins,
                "avg_team1_score": self.avg_team2_score,
                "avg_team2_score": self.avg_team1_score,
            }
        )


# ── Derived outputs ─────────────────────────────────────────────────────
class Pick(DomainModel):
    """One entry of the confident picks list."""
    match: Match
    confidence: float
    group: str
    rank: int


class MatchPartition(DomainModel):
    upcoming: tuple[Match, ...] = ()
    live: tuple[Match, ...] = ()
    finished: tuple[Match, ...] = ()


# ── Consumption contract ────────────────────────────────────────────────
class RefreshState(DomainModel):
    domain: DataDomain
    last_updated: Optional[datetime] = None
    is_loading: bool = False


class QueryResult(BaseModel, Generic[T]):
    """What every read operation hands to its caller."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    data: Optional[T] = None
    is_loading: bool = False
    error: Optional[str] = None
    last_updated: Optional[datetime] = None
