"""Domain enumerations for Match Sync."""
from __future__ import annotations

from enum import Enum


class League(str, Enum):
    NBA = "NBA"
    NFL = "NFL"
    MLB = "MLB"
    NHL = "NHL"
    NCAAF = "NCAAF"
    NCAAB = "NCAAB"
    WNBA = "WNBA"
    SOCCER = "SOCCER"
    EPL = "EPL"
    MLS = "MLS"


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    PRE = "pre"
    LIVE = "live"
    FINISHED = "finished"
    # Provider statuses that belong to no partition
    POSTPONED = "postponed"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"

    @property
    def is_upcoming(self) -> bool:
        return self in (MatchStatus.SCHEDULED, MatchStatus.PRE)


class Side(str, Enum):
    HOME = "home"
    AWAY = "away"
    DRAW = "draw"


class MeetingWinner(str, Enum):
    HOME = "home"
    AWAY = "away"
    TIE = "tie"


class ProviderName(str, Enum):
    ESPN = "espn"
    ODDS_API = "odds_api"


class DataDomain(str, Enum):
    """Logical data domains; each owns a fetch policy and a RefreshState."""
    MATCHES = "matches"
    STANDINGS = "standings"
    HEAD_TO_HEAD = "head_to_head"
