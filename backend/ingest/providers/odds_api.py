"""
The Odds API connector.
Maps bookmaker head-to-head markets onto matches: per-bookmaker LiveOdds, the
consensus implied probabilities, and a market-implied prediction. Live scores
come from the companion /scores endpoint. Standings and head-to-head history
are not served by this provider.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from shared.config import Settings, get_settings
from shared.errors import MappingError, ProviderError, UnsupportedOperationError
from shared.models.domain import LiveOdds, Match, Odds, Prediction, Score, Team
from shared.models.enums import MatchStatus, ProviderName, Side
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.base import (
    BaseProvider,
    normalize_probabilities,
    parse_timestamp,
    safe_int,
)

logger = get_logger(__name__)

PROVIDER = ProviderName.ODDS_API.value

SPORT_KEYS: dict[str, str] = {
    "NBA": "basketball_nba",
    "WNBA": "basketball_wnba",
    "NCAAB": "basketball_ncaab",
    "NFL": "americanfootball_nfl",
    "NCAAF": "americanfootball_ncaaf",
    "MLB": "baseball_mlb",
    "NHL": "icehockey_nhl",
    "SOCCER": "soccer_epl",
    "EPL": "soccer_epl",
    "MLS": "soccer_usa_mls",
}

PRE_GAME_WINDOW = timedelta(hours=1)


def sport_key(league: str) -> str:
    key = SPORT_KEYS.get(league.upper())
    if key is None:
        raise UnsupportedOperationError(PROVIDER, f"unknown league {league!r}")
    return key


def team_id(name: str) -> str:
    return f"odds-api-{'-'.join(name.lower().split())}"


def abbreviate(name: str) -> str:
    words = name.split()
    if len(words) == 1:
        return name[:3].upper()
    return "".join(w[0] for w in words[:3]).upper()


def _bookmaker_probabilities(
    bookmaker: dict[str, Any], home: str, away: str
) -> dict[str, float]:
    """Decimal h2h prices → normalized implied probabilities keyed home/away/draw."""
    market = next((m for m in bookmaker.get("markets") or [] if m.get("key") == "h2h"), None)
    if market is None:
        return {}
    names = {home: "home", away: "away", "Draw": "draw"}
    raw: dict[str, float] = {}
    for outcome in market.get("outcomes") or []:
        side = names.get(outcome.get("name"))
        try:
            price = float(outcome.get("price"))
        except (TypeError, ValueError):
            continue
        if side is not None and price > 1.0:
            raw[side] = 1.0 / price
    return normalize_probabilities(raw)


def _status(event: dict[str, Any], score: Optional[dict[str, Any]], start: datetime, now: datetime) -> MatchStatus:
    if (score or {}).get("completed") or event.get("completed"):
        return MatchStatus.FINISHED
    if start <= now and ((score or {}).get("scores") or event.get("live")):
        return MatchStatus.LIVE
    if start - now < PRE_GAME_WINDOW:
        return MatchStatus.PRE
    return MatchStatus.SCHEDULED


def _score(score: dict[str, Any], home: str, away: str) -> Optional[Score]:
    by_name = {s.get("name"): s.get("score") for s in score.get("scores") or []}
    if not by_name:
        return None
    return Score(home=safe_int(by_name.get(home)), away=safe_int(by_name.get(away)))


def map_event(
    event: dict[str, Any],
    league: str,
    scores: dict[str, dict[str, Any]],
    now: datetime,
) -> Match:
    raw_id = event.get("id")
    record_id = str(raw_id) if raw_id not in (None, "") else None
    home = event.get("home_team")
    away = event.get("away_team")
    if not record_id or not home or not away:
        raise MappingError(PROVIDER, record_id, "event without id or teams")
    start = parse_timestamp(event.get("commence_time"), PROVIDER, record_id)

    live_odds: list[LiveOdds] = []
    for bookmaker in event.get("bookmakers") or []:
        probs = _bookmaker_probabilities(bookmaker, home, away)
        if "home" not in probs or "away" not in probs:
            continue
        updated_at = None
        if bookmaker.get("last_update"):
            updated_at = parse_timestamp(bookmaker["last_update"], PROVIDER, record_id)
        live_odds.append(
            LiveOdds(
                provider=ProviderName.ODDS_API,
                sportsbook=bookmaker.get("title") or bookmaker.get("key") or "unknown",
                home_win=round(probs["home"], 4),
                away_win=round(probs["away"], 4),
                draw=round(probs["draw"], 4) if "draw" in probs else None,
                updated_at=updated_at,
            )
        )

    odds: Optional[Odds] = None
    prediction: Optional[Prediction] = None
    if live_odds:
        primary = live_odds[0]
        odds = Odds(home_win=primary.home_win, away_win=primary.away_win, draw=primary.draw)
        sides = {Side.HOME: odds.home_win, Side.AWAY: odds.away_win}
        if odds.draw is not None:
            sides[Side.DRAW] = odds.draw
        recommended = max(sides, key=lambda s: sides[s])
        prediction = Prediction(recommended=recommended, confidence=round(sides[recommended] * 100, 1))

    score_data = scores.get(record_id)
    return Match(
        id=record_id,
        league=league.upper(),
        home_team=Team(id=team_id(home), name=home, short_name=abbreviate(home)),
        away_team=Team(id=team_id(away), name=away, short_name=abbreviate(away)),
        start_time=start,
        odds=odds,
        live_odds=tuple(live_odds),
        score=_score(score_data, home, away) if score_data else None,
        status=_status(event, score_data, start, now),
        prediction=prediction,
    )


class OddsAPIProvider(BaseProvider):
    """The Odds API connector (matches only)."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: Optional[ProviderHTTPClient] = None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        http_client = http_client or ProviderHTTPClient(
            provider_name=PROVIDER,
            base_url=self._settings.odds_api_base_url,
            timeout_s=self._settings.provider_request_timeout_s,
        )
        super().__init__(
            name=ProviderName.ODDS_API,
            http_client=http_client,
            breaker=breaker
            or CircuitBreaker(
                PROVIDER,
                failure_threshold=self._settings.circuit_failure_threshold,
                recovery_timeout_s=self._settings.circuit_recovery_timeout_s,
            ),
        )

    async def _fetch_matches(self, league: str) -> list[Match]:
        if not self._settings.odds_api_key:
            raise ProviderError(PROVIDER, "MS_ODDS_API_KEY is not configured")
        sport = sport_key(league)
        auth = {"apiKey": self._settings.odds_api_key}
        odds_data, scores_data = await asyncio.gather(
            self._http.get_json(
                f"/sports/{sport}/odds",
                params={**auth, "regions": "us", "markets": "h2h", "oddsFormat": "decimal"},
            ),
            self._http.get_json(f"/sports/{sport}/scores", params={**auth, "daysFrom": 1}),
        )
        if not isinstance(odds_data, list):
            raise ProviderError(PROVIDER, "odds payload is not a list")
        scores = {
            str(s["id"]): s for s in scores_data or [] if isinstance(s, dict) and s.get("id")
        } if isinstance(scores_data, list) else {}
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return self.map_records(
            odds_data, lambda e: map_event(e, league, scores, now), entity="match"
        )
