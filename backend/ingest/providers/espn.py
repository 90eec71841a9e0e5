"""
ESPN provider connector.
Fetches scoreboards, standings and team schedules from ESPN's public APIs and
normalizes them into canonical Match / Standing / HeadToHeadHistory models.
"""
from __future__ import annotations

import asyncio
import math
from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.errors import MappingError, ProviderError, UnsupportedOperationError
from shared.models.domain import (
    HeadToHeadHistory,
    HistoricalMeeting,
    LiveOdds,
    Match,
    Odds,
    Prediction,
    Score,
    Standing,
    Streak,
    Team,
)
from shared.models.enums import DataDomain, MatchStatus, MeetingWinner, ProviderName, Side
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import MAPPING_DROPS

from ingest.providers.base import (
    RECORD_ERRORS,
    BaseProvider,
    as_mapping_error,
    normalize_probabilities,
    parse_timestamp,
    safe_int,
)

logger = get_logger(__name__)

PROVIDER = ProviderName.ESPN.value

# canonical league -> "{sport}/{league}" path segment
LEAGUE_PATHS: dict[str, str] = {
    "NBA": "basketball/nba",
    "WNBA": "basketball/wnba",
    "NCAAB": "basketball/mens-college-basketball",
    "NFL": "football/nfl",
    "NCAAF": "football/college-football",
    "MLB": "baseball/mlb",
    "NHL": "hockey/nhl",
    "SOCCER": "soccer/eng.1",
    "EPL": "soccer/eng.1",
    "MLS": "soccer/usa.1",
}

# ESPN status names that override the pre/in/post state
_STATUS_NAME_OVERRIDES: dict[str, MatchStatus] = {
    "STATUS_POSTPONED": MatchStatus.POSTPONED,
    "STATUS_CANCELED": MatchStatus.CANCELLED,
    "STATUS_CANCELLED": MatchStatus.CANCELLED,
    "STATUS_SUSPENDED": MatchStatus.SUSPENDED,
    "STATUS_DELAYED": MatchStatus.SUSPENDED,
    "STATUS_RAIN_DELAY": MatchStatus.SUSPENDED,
}

_STATE_TO_STATUS: dict[str, MatchStatus] = {
    "pre": MatchStatus.SCHEDULED,
    "in": MatchStatus.LIVE,
    "post": MatchStatus.FINISHED,
}

MAX_MEETINGS = 10


def league_path(league: str) -> str:
    path = LEAGUE_PATHS.get(league.upper())
    if path is None:
        raise UnsupportedOperationError(PROVIDER, f"unknown league {league!r}")
    return path


def moneyline_to_probability(moneyline: Any) -> Optional[float]:
    """American moneyline → raw implied probability."""
    try:
        ml = float(moneyline)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(ml) or ml == 0:
        return None
    if ml < 0:
        return -ml / (-ml + 100.0)
    return 100.0 / (ml + 100.0)


def parse_status(status: dict[str, Any], record_id: Optional[str]) -> MatchStatus:
    status_type = status.get("type") or {}
    override = _STATUS_NAME_OVERRIDES.get(str(status_type.get("name", "")).upper())
    if override is not None:
        return override
    state = str(status_type.get("state", "")).lower()
    mapped = _STATE_TO_STATUS.get(state)
    if mapped is None:
        raise MappingError(PROVIDER, record_id, f"unknown event state {state!r}")
    return mapped


def parse_streak(value: str) -> Streak:
    """Parse "W5" / "L2" style streak strings."""
    if not value or len(value) < 2:
        return Streak()
    kind = "win" if value[0].upper() == "W" else "loss"
    return Streak(kind=kind, length=safe_int(value[1:]))


def _competitor(competition: dict[str, Any], side: str) -> Optional[dict[str, Any]]:
    return next(
        (c for c in competition.get("competitors") or [] if c.get("homeAway") == side),
        None,
    )


def _team(competitor: dict[str, Any], record_id: Optional[str]) -> Team:
    team = competitor.get("team") or {}
    team_id = team.get("id") or competitor.get("id")
    name = team.get("displayName") or team.get("name")
    if not team_id or not name:
        raise MappingError(PROVIDER, record_id, "competitor without team id/name")
    record = next(
        (r.get("summary") for r in competitor.get("records") or [] if r.get("type") == "total"),
        None,
    )
    return Team(
        id=str(team_id),
        name=name,
        short_name=team.get("abbreviation") or name[:3].upper(),
        logo=team.get("logo") or "",
        record=record or None,
    )


def _odds(competition: dict[str, Any]) -> tuple[Optional[Odds], list[LiveOdds]]:
    books: list[LiveOdds] = []
    for entry in competition.get("odds") or []:
        raw = {
            "home": moneyline_to_probability((entry.get("homeTeamOdds") or {}).get("moneyLine")),
            "away": moneyline_to_probability((entry.get("awayTeamOdds") or {}).get("moneyLine")),
            "draw": moneyline_to_probability((entry.get("drawOdds") or {}).get("moneyLine")),
        }
        probs = normalize_probabilities({k: v for k, v in raw.items() if v is not None})
        if "home" not in probs or "away" not in probs:
            continue
        books.append(
            LiveOdds(
                provider=ProviderName.ESPN,
                sportsbook=(entry.get("provider") or {}).get("name", "unknown"),
                home_win=round(probs["home"], 4),
                away_win=round(probs["away"], 4),
                draw=round(probs["draw"], 4) if "draw" in probs else None,
            )
        )
    if not books:
        return None, []
    primary = books[0]
    return Odds(home_win=primary.home_win, away_win=primary.away_win, draw=primary.draw), books


def _prediction(predictor: Optional[dict[str, Any]], record_id: Optional[str]) -> Optional[Prediction]:
    """
    ESPN's predictor block carries per-team win projections in percent.
    Unparseable projections leave the match without a prediction.
    """
    if not predictor:
        return None
    try:
        home = float((predictor.get("homeTeam") or {}).get("gameProjection"))
        away = float((predictor.get("awayTeam") or {}).get("gameProjection"))
    except (TypeError, ValueError):
        logger.debug("espn_predictor_unparseable", record_id=record_id)
        return None
    recommended = Side.HOME if home >= away else Side.AWAY
    # NaN projections are kept; the ranker filters them out
    confidence = home if recommended == Side.HOME else away
    return Prediction(recommended=recommended, confidence=confidence)


def map_event(event: dict[str, Any], league: str) -> Match:
    """Normalize one ESPN scoreboard event into a Match."""
    record_id = str(event.get("id")) if event.get("id") is not None else None
    if record_id is None:
        raise MappingError(PROVIDER, None, "event without id")
    competitions = event.get("competitions") or []
    if not competitions:
        raise MappingError(PROVIDER, record_id, "event without competition")
    competition = competitions[0]

    home = _competitor(competition, "home")
    away = _competitor(competition, "away")
    if home is None or away is None:
        raise MappingError(PROVIDER, record_id, "missing competitor data")

    status_block = event.get("status") or competition.get("status") or {}
    status = parse_status(status_block, record_id)

    score = None
    if not status.is_upcoming:
        score = Score(
            home=safe_int(home.get("score")),
            away=safe_int(away.get("score")),
            period=f"Period {status_block.get('period') or 1} - {status_block.get('displayClock') or '00:00'}",
        )

    odds, live_odds = _odds(competition)
    prediction = _prediction(competition.get("predictor") or event.get("predictor"), record_id)

    return Match(
        id=record_id,
        league=league.upper(),
        home_team=_team(home, record_id),
        away_team=_team(away, record_id),
        start_time=parse_timestamp(event.get("date"), PROVIDER, record_id),
        odds=odds,
        live_odds=tuple(live_odds),
        score=score,
        status=status,
        prediction=prediction,
    )


# ── Standings ───────────────────────────────────────────────────────────

def _stat(stats: list[dict[str, Any]], *names: str) -> Optional[float]:
    lowered = {str(s.get("name", "")).lower(): s for s in stats}
    for name in names:
        stat = lowered.get(name.lower())
        if stat is not None and stat.get("value") is not None:
            try:
                return float(stat["value"])
            except (TypeError, ValueError):
                continue
    return None


def _stat_display(stats: list[dict[str, Any]], *names: str) -> str:
    lowered = {str(s.get("name", "")).lower(): s for s in stats}
    for name in names:
        stat = lowered.get(name.lower())
        if stat is not None and stat.get("displayValue"):
            return str(stat["displayValue"])
    return ""


def _standing_row(
    entry: dict[str, Any],
    league: str,
    conference: Optional[str],
    division: Optional[str],
    position: int,
) -> dict[str, Any]:
    team = entry.get("team") or {}
    if not team.get("id"):
        raise MappingError(PROVIDER, None, "standings entry without team id")
    stats = entry.get("stats") or []
    wins = safe_int(_stat(stats, "wins"))
    losses = safe_int(_stat(stats, "losses"))
    ties = safe_int(_stat(stats, "ties") or _stat(stats, "otLosses"))
    played = wins + losses + ties
    seed = _stat(stats, "playoffSeed", "leagueRank", "rank")
    return {
        "league": league.upper(),
        "team_id": str(team["id"]),
        "team_name": str(team.get("displayName") or team.get("name") or team["id"]),
        "conference": str(conference) if conference else None,
        "division": str(division) if division else None,
        "seed": int(seed) if seed and seed > 0 else None,
        "position": position,
        "wins": wins,
        "losses": losses,
        "ties": ties or None,
        "win_pct": round(wins / played, 3) if played else 0.0,
        "games_back": _stat(stats, "gamesBehind", "gamesBack") or 0.0,
        "streak": parse_streak(_stat_display(stats, "streak", "strk")),
    }


def _assign_ranks(rows: list[dict[str, Any]]) -> list[Standing]:
    """
    Division rank is the entry's position within its division table. Conference
    rank uses the upstream seed when the seeds are unique within the
    conference, otherwise teams are re-ranked by win percentage.
    """
    by_conference: dict[Optional[str], list[dict[str, Any]]] = {}
    for row in rows:
        by_conference.setdefault(row["conference"], []).append(row)

    for members in by_conference.values():
        seeds = [r["seed"] for r in members]
        if all(seeds) and len(set(seeds)) == len(seeds):
            for r in members:
                r["conference_rank"] = r["seed"]
        else:
            ordered = sorted(members, key=lambda r: (-r["win_pct"], -r["wins"], r["team_name"]))
            for rank, r in enumerate(ordered, start=1):
                r["conference_rank"] = rank

    standings = []
    for row in rows:
        position = row.pop("position")
        row.pop("seed")
        row["division_rank"] = position if row["division"] else row["conference_rank"]
        standings.append(Standing(**row))
    return standings


def map_standings(payload: dict[str, Any], league: str) -> list[Standing]:
    """Flatten ESPN's conference → division → entries tree (or a flat table)."""
    rows: list[dict[str, Any]] = []

    def add_entries(entries: list[dict[str, Any]], conference: Optional[str], division: Optional[str]) -> None:
        for position, entry in enumerate(entries, start=1):
            try:
                rows.append(_standing_row(entry, league, conference, division, position))
            except RECORD_ERRORS as raw:
                exc = as_mapping_error(raw, PROVIDER, entry.get("team") if isinstance(entry, dict) else None)
                MAPPING_DROPS.labels(provider=PROVIDER, entity="standing").inc()
                logger.warning(
                    "mapping_error_dropped",
                    provider=PROVIDER,
                    entity="standing",
                    record_id=exc.record_id,
                    reason=exc.reason,
                )

    children = payload.get("children") or []
    if children:
        for conference in children:
            conf_name = conference.get("name") or conference.get("abbreviation") or ""
            divisions = conference.get("children") or []
            if divisions:
                for division in divisions:
                    div_name = division.get("name") or division.get("abbreviation") or ""
                    add_entries((division.get("standings") or {}).get("entries") or [], conf_name, div_name)
            else:
                add_entries((conference.get("standings") or {}).get("entries") or [], conf_name, None)
    else:
        add_entries((payload.get("standings") or {}).get("entries") or [], None, None)

    return _assign_ranks(rows)


# ── Head to head ────────────────────────────────────────────────────────

def map_schedule_event(event: dict[str, Any]) -> Optional[HistoricalMeeting]:
    """Completed schedule event → meeting; None for games not yet played."""
    record_id = str(event.get("id")) if event.get("id") is not None else None
    competition = (event.get("competitions") or [{}])[0]
    status = competition.get("status") or event.get("status") or {}
    if not (status.get("type") or {}).get("completed"):
        return None
    home = _competitor(competition, "home")
    away = _competitor(competition, "away")
    if home is None or away is None or record_id is None:
        raise MappingError(PROVIDER, record_id, "schedule event without both competitors")

    home_team = _team(home, record_id)
    away_team = _team(away, record_id)
    home_score = safe_int((home.get("score") or {}).get("value") if isinstance(home.get("score"), dict) else home.get("score"))
    away_score = safe_int((away.get("score") or {}).get("value") if isinstance(away.get("score"), dict) else away.get("score"))
    if home_score > away_score:
        winner = MeetingWinner.HOME
    elif away_score > home_score:
        winner = MeetingWinner.AWAY
    else:
        winner = MeetingWinner.TIE

    season = event.get("season") or {}
    return HistoricalMeeting(
        id=record_id,
        date=parse_timestamp(event.get("date"), PROVIDER, record_id),
        home_team_id=home_team.id,
        home_team=home_team.name,
        away_team_id=away_team.id,
        away_team=away_team.name,
        home_score=home_score,
        away_score=away_score,
        winner=winner,
        venue=(competition.get("venue") or {}).get("fullName", ""),
        season=str(season.get("displayName") or season.get("year") or ""),
    )


class ESPNProvider(BaseProvider):
    """ESPN data provider connector."""

    domains = frozenset({DataDomain.MATCHES, DataDomain.STANDINGS, DataDomain.HEAD_TO_HEAD})

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: Optional[ProviderHTTPClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self._settings = settings or get_settings()
        http_client = http_client or ProviderHTTPClient(
            provider_name=PROVIDER,
            base_url=self._settings.espn_base_url,
            timeout_s=self._settings.provider_request_timeout_s,
        )
        super().__init__(
            name=ProviderName.ESPN,
            http_client=http_client,
            breaker=breaker
            or CircuitBreaker(
                PROVIDER,
                failure_threshold=self._settings.circuit_failure_threshold,
                recovery_timeout_s=self._settings.circuit_recovery_timeout_s,
            ),
        )

    async def _fetch_matches(self, league: str) -> list[Match]:
        data = await self._http.get_json(f"/{league_path(league)}/scoreboard")
        events = _expect_list(data, "events")
        return self.map_records(events, lambda e: map_event(e, league), entity="match")

    async def _fetch_standings(self, league: str) -> list[Standing]:
        base = self._settings.espn_standings_url.rstrip("/")
        data = await self._http.get_json(f"{base}/{league_path(league)}/standings")
        if not isinstance(data, dict):
            raise ProviderError(PROVIDER, "standings payload is not an object")
        return map_standings(data, league)

    async def _fetch_head_to_head(
        self,
        league: str,
        team1_id: str,
        team1_name: str,
        team2_id: str,
        team2_name: str,
    ) -> HeadToHeadHistory:
        schedules = await asyncio.gather(
            self._team_meetings(league, team1_id),
            self._team_meetings(league, team2_id),
        )
        pair = {team1_id, team2_id}
        meetings: dict[str, HistoricalMeeting] = {}
        for schedule in schedules:
            for meeting in schedule:
                if {meeting.home_team_id, meeting.away_team_id} == pair:
                    meetings[meeting.id] = meeting
        ordered = sorted(meetings.values(), key=lambda m: m.date, reverse=True)[:MAX_MEETINGS]
        logger.debug(
            "espn_head_to_head_resolved",
            league=league,
            team1=team1_name,
            team2=team2_name,
            meetings=len(ordered),
        )
        return HeadToHeadHistory.from_meetings(league.upper(), team1_id, team2_id, ordered)

    async def _team_meetings(self, league: str, team_id: str) -> list[HistoricalMeeting]:
        data = await self._http.get_json(f"/{league_path(league)}/teams/{team_id}/schedule")
        events = _expect_list(data, "events")
        meetings = self.map_records(events, map_schedule_event, entity="meeting")
        return [m for m in meetings if m is not None]


def _expect_list(data: Any, field: str) -> list[Any]:
    if not isinstance(data, dict):
        raise ProviderError(PROVIDER, "payload is not an object")
    value = data.get(field) or []
    if not isinstance(value, list):
        raise ProviderError(PROVIDER, f"{field!r} is not a list")
    return value
