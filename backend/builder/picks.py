"""
Confidence pick ranker ("Smart Algorithm Picks").

Only matches carrying a prediction with a finite confidence in [0, 100] are
considered. Within each group (league by default) matches are ordered by
confidence descending, then earliest start time, then match id, and the
top N are kept. Groups are emitted in order of first appearance.
"""
from __future__ import annotations

from typing import Callable, Iterable

from shared.errors import ValidationError
from shared.models.domain import Match, Pick

DEFAULT_TOP_N = 2


def by_league(match: Match) -> str:
    return match.league


def rank_confident_picks(
    matches: Iterable[Match],
    top_n: int = DEFAULT_TOP_N,
    group_by: Callable[[Match], str] = by_league,
    min_confidence: float = 0.0,
) -> list[Pick]:
    """
    Select the top ``top_n`` most confident matches per group.

    Returns an empty list when nothing qualifies. Raises ValidationError only
    for structurally invalid input.
    """
    if isinstance(top_n, bool) or not isinstance(top_n, int) or top_n < 1:
        raise ValidationError(f"top_n must be a positive integer, got {top_n!r}")

    groups: dict[str, list[Match]] = {}
    for match in matches:
        if not isinstance(match, Match):
            raise ValidationError(f"expected Match, got {type(match).__name__}")
        prediction = match.prediction
        if prediction is None or not prediction.is_rankable:
            continue
        if prediction.confidence < min_confidence:
            continue
        groups.setdefault(group_by(match), []).append(match)

    picks: list[Pick] = []
    for group, members in groups.items():
        members.sort(key=lambda m: (-m.prediction.confidence, m.start_time, m.id))
        for rank, match in enumerate(members[:top_n], start=1):
            picks.append(
                Pick(match=match, confidence=match.prediction.confidence, group=group, rank=rank)
            )
    return picks
