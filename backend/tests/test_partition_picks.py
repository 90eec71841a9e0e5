"""
Unit tests for the match status partitioner and the confidence pick ranker.

Run: pytest backend/tests/test_partition_picks.py -v
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from builder.partition import partition_matches
from builder.picks import rank_confident_picks
from shared.errors import ValidationError
from shared.models.domain import Match
from shared.models.enums import MatchStatus


# ── Partitioner ─────────────────────────────────────────────────────────

def test_partition_by_status_preserves_order(make_match) -> None:
    matches = [
        make_match("a", status=MatchStatus.LIVE),
        make_match("b", status=MatchStatus.SCHEDULED),
        make_match("c", status=MatchStatus.FINISHED),
        make_match("d", status=MatchStatus.PRE),
        make_match("e", status=MatchStatus.LIVE),
    ]
    result = partition_matches(matches)
    assert [m.id for m in result.upcoming] == ["b", "d"]
    assert [m.id for m in result.live] == ["a", "e"]
    assert [m.id for m in result.finished] == ["c"]


def test_partition_excludes_unrecognized_statuses(make_match) -> None:
    matches = [
        make_match("a", status=MatchStatus.POSTPONED),
        make_match("b", status=MatchStatus.CANCELLED),
        make_match("c", status=MatchStatus.SUSPENDED),
        make_match("d", status=MatchStatus.FINISHED),
    ]
    result = partition_matches(matches)
    assert result.upcoming == ()
    assert result.live == ()
    assert [m.id for m in result.finished] == ["d"]


def test_partition_is_disjoint_cover(make_match) -> None:
    statuses = list(MatchStatus) * 3
    matches = [make_match(f"m{i}", status=s) for i, s in enumerate(statuses)]
    result = partition_matches(matches)
    ids = [m.id for m in (*result.upcoming, *result.live, *result.finished)]
    recognized = [
        m.id
        for m in matches
        if m.status in (MatchStatus.SCHEDULED, MatchStatus.PRE, MatchStatus.LIVE, MatchStatus.FINISHED)
    ]
    assert sorted(ids) == sorted(recognized)
    assert len(ids) == len(set(ids))


def test_partition_is_idempotent(make_match) -> None:
    matches = [make_match(f"m{i}", status=s) for i, s in enumerate(MatchStatus)]
    assert partition_matches(matches) == partition_matches(matches)


def test_partition_empty_input() -> None:
    result = partition_matches([])
    assert (result.upcoming, result.live, result.finished) == ((), (), ())


def test_partition_rejects_non_match() -> None:
    with pytest.raises(ValidationError):
        partition_matches([{"id": "x", "status": "live"}])


# ── Pick ranker ─────────────────────────────────────────────────────────

def test_top_one_per_league(make_match) -> None:
    matches = [
        make_match("t1", league="NBA", confidence=82, start_offset_h=1),
        make_match("t2", league="NBA", confidence=91, start_offset_h=2),
        make_match("t3", league="NFL", confidence=70, start_offset_h=3),
    ]
    picks = rank_confident_picks(matches, top_n=1)
    assert [(p.group, p.confidence, p.match.id) for p in picks] == [
        ("NBA", 91, "t2"),
        ("NFL", 70, "t3"),
    ]
    assert all(p.rank == 1 for p in picks)


def test_equal_confidence_ordered_by_start_time(make_match) -> None:
    matches = [
        make_match("late", confidence=75, start_offset_h=5),
        make_match("early", confidence=75, start_offset_h=1),
        make_match("mid", confidence=75, start_offset_h=3),
    ]
    picks = rank_confident_picks(matches, top_n=3)
    assert [p.match.id for p in picks] == ["early", "mid", "late"]
    assert [p.rank for p in picks] == [1, 2, 3]


def test_full_tie_broken_by_match_id(make_match) -> None:
    matches = [make_match("b", confidence=60), make_match("a", confidence=60)]
    assert [p.match.id for p in rank_confident_picks(matches, top_n=2)] == ["a", "b"]


def test_naive_start_time_rejected(make_match) -> None:
    aware = make_match("aware", confidence=80)
    naive = aware.model_dump()
    naive["start_time"] = datetime(2024, 1, 15, 0, 0)
    with pytest.raises(PydanticValidationError):
        Match(**naive)


def test_tie_across_utc_offsets_compares_instants(make_match) -> None:
    utc = make_match("utc", confidence=80, start_offset_h=2)
    # 00:30 at UTC-05:00 is 05:30 UTC, after the UTC match
    eastern = make_match("eastern", confidence=80).model_copy(
        update={"start_time": datetime(2024, 1, 15, 0, 30, tzinfo=timezone(timedelta(hours=-5)))}
    )
    picks = rank_confident_picks([eastern, utc], top_n=2)
    assert [p.match.id for p in picks] == ["utc", "eastern"]


@pytest.mark.parametrize("confidence", [math.nan, math.inf, -math.inf, -1.0, 100.5, None])
def test_unrankable_confidence_never_picked(make_match, confidence) -> None:
    matches = [
        make_match("bad", confidence=confidence, with_prediction=True),
        make_match("good", confidence=55),
    ]
    picks = rank_confident_picks(matches, top_n=5)
    assert [p.match.id for p in picks] == ["good"]


def test_matches_without_prediction_skipped(make_match) -> None:
    assert rank_confident_picks([make_match("a")], top_n=1) == []


def test_empty_input_returns_empty_list() -> None:
    assert rank_confident_picks([], top_n=2) == []


def test_boundary_confidences_are_rankable(make_match) -> None:
    picks = rank_confident_picks(
        [make_match("zero", confidence=0.0), make_match("hundred", confidence=100.0)], top_n=2
    )
    assert [p.match.id for p in picks] == ["hundred", "zero"]


def test_min_confidence_filters(make_match) -> None:
    matches = [make_match("a", confidence=40), make_match("b", confidence=65)]
    picks = rank_confident_picks(matches, top_n=2, min_confidence=50)
    assert [p.match.id for p in picks] == ["b"]


def test_groups_emitted_in_first_appearance_order(make_match) -> None:
    matches = [
        make_match("n1", league="NHL", confidence=50),
        make_match("b1", league="NBA", confidence=99),
        make_match("n2", league="NHL", confidence=60),
    ]
    picks = rank_confident_picks(matches, top_n=1)
    assert [p.group for p in picks] == ["NHL", "NBA"]
    assert picks[0].match.id == "n2"


def test_custom_grouping(make_match) -> None:
    matches = [
        make_match("a", league="NBA", confidence=80),
        make_match("b", league="NFL", confidence=90),
    ]
    picks = rank_confident_picks(matches, top_n=1, group_by=lambda m: "all")
    assert [(p.group, p.match.id) for p in picks] == [("all", "b")]


def test_ranker_is_deterministic(make_match) -> None:
    matches = [
        make_match(f"m{i}", league="NBA" if i % 2 else "NFL", confidence=50 + (i % 4), start_offset_h=i % 3)
        for i in range(20)
    ]
    assert rank_confident_picks(matches, top_n=3) == rank_confident_picks(matches, top_n=3)


@pytest.mark.parametrize("top_n", [0, -1, 1.5, True])
def test_invalid_top_n_rejected(make_match, top_n) -> None:
    with pytest.raises(ValidationError):
        rank_confident_picks([make_match("a", confidence=50)], top_n=top_n)


def test_non_match_element_rejected(make_match) -> None:
    with pytest.raises(ValidationError):
        rank_confident_picks([make_match("a", confidence=50), "not-a-match"], top_n=1)
