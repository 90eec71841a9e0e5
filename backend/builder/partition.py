"""Split a match collection into upcoming / live / finished by status."""
from __future__ import annotations

from typing import Iterable

from shared.errors import ValidationError
from shared.models.domain import Match, MatchPartition
from shared.models.enums import MatchStatus


def partition_matches(matches: Iterable[Match]) -> MatchPartition:
    """
    Classify matches solely by ``status``, preserving input order.

    scheduled/pre → upcoming, live → live, finished → finished. Postponed,
    cancelled and suspended matches belong to none of the three.
    """
    upcoming: list[Match] = []
    live: list[Match] = []
    finished: list[Match] = []
    for match in matches:
        if not isinstance(match, Match):
            raise ValidationError(f"expected Match, got {type(match).__name__}")
        if match.status.is_upcoming:
            upcoming.append(match)
        elif match.status == MatchStatus.LIVE:
            live.append(match)
        elif match.status == MatchStatus.FINISHED:
            finished.append(match)
    return MatchPartition(upcoming=tuple(upcoming), live=tuple(live), finished=tuple(finished))
