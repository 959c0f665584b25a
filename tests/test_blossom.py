import random

import pytest

from matchcore.services.aggregation import PairScore
from matchcore.services.blossom import (
    SOURCE_BLOSSOM,
    SOURCE_FALLBACK,
    MatchEdge,
    Match,
    build_edges,
    max_weight_matching,
    run_blossom_with_fallback,
    to_weight,
    unmatched_report,
    validate_matching,
)


def _edge(a, b, score):
    return MatchEdge(a, b, to_weight(score))


def _pair(a, b, score, hard_filtered=False, meets_threshold=True, a_to_b=None, b_to_a=None):
    return PairScore(
        user_a=a,
        user_b=b,
        score_a_to_b=score if a_to_b is None else a_to_b,
        score_b_to_a=score if b_to_a is None else b_to_a,
        total_score=score,
        bidirectional_score=score,
        hard_filtered=hard_filtered,
        meets_threshold=meets_threshold,
    )


def _pairs(matches):
    return [(m.user_a, m.user_b, m.source) for m in matches]


def _counts(matches):
    out = {}
    for m in matches:
        out[m.user_a] = out.get(m.user_a, 0) + 1
        out[m.user_b] = out.get(m.user_b, 0) + 1
    return out


TRIANGLE = [_edge("a", "b", 90), _edge("b", "c", 85), _edge("a", "c", 40)]


def test_triangle_quota_one_leaves_third_user_unmatched():
    matches = run_blossom_with_fallback(TRIANGLE, ["a", "b", "c"], quota=1)
    assert _pairs(matches) == [("a", "b", SOURCE_BLOSSOM)]
    assert matches[0].score == 90.0


def test_triangle_quota_three_fills_from_remaining_edges():
    matches = run_blossom_with_fallback(TRIANGLE, ["a", "b", "c"], quota=3)
    assert _pairs(matches) == [
        ("a", "b", SOURCE_BLOSSOM),
        ("a", "c", SOURCE_FALLBACK),
        ("b", "c", SOURCE_FALLBACK),
    ]


def test_primary_pass_maximizes_total_not_best_edge():
    # greedy would take b-c alone; the optimum is a-b plus c-d
    edges = [_edge("a", "b", 10), _edge("b", "c", 11), _edge("c", "d", 10)]
    matches = max_weight_matching(edges, ["a", "b", "c", "d"])
    assert [(m.user_a, m.user_b) for m in matches] == [("a", "b"), ("c", "d")]
    assert sum(m.score for m in matches) == 20.0


def test_fallback_respects_counterpart_capacity():
    edges = [_edge("h", "x", 90), _edge("h", "y", 80), _edge("h", "z", 70)]
    matches = run_blossom_with_fallback(edges, ["h", "x", "y", "z"], quota=2)
    assert _pairs(matches) == [("h", "x", SOURCE_BLOSSOM), ("h", "y", SOURCE_FALLBACK)]
    assert "z" not in _counts(matches)


def test_no_edges_means_no_matches():
    assert run_blossom_with_fallback([], ["a", "b"], quota=3) == []


def test_quota_must_be_positive():
    with pytest.raises(ValueError):
        run_blossom_with_fallback(TRIANGLE, ["a", "b", "c"], quota=0)


def test_self_edges_are_ignored():
    matches = run_blossom_with_fallback([MatchEdge("a", "a", 99000), _edge("a", "b", 50)], ["a", "b"], quota=3)
    assert _pairs(matches) == [("a", "b", SOURCE_BLOSSOM)]


def test_edge_order_does_not_change_result():
    # every perfect matching of the square has the same weight
    edges = [_edge("a", "b", 50), _edge("b", "c", 50), _edge("c", "d", 50), _edge("a", "d", 50), _edge("a", "c", 30)]
    expected = _pairs(run_blossom_with_fallback(edges, ["a", "b", "c", "d"], quota=2))
    rng = random.Random(7)
    for _ in range(10):
        shuffled = list(edges)
        rng.shuffle(shuffled)
        flipped = [MatchEdge(e.user_b, e.user_a, e.weight) if rng.random() < 0.5 else e for e in shuffled]
        assert _pairs(run_blossom_with_fallback(flipped, ["d", "c", "b", "a"], quota=2)) == expected


def test_every_user_within_quota_and_no_pair_repeats():
    rng = random.Random(11)
    users = [f"u{i:02d}" for i in range(12)]
    edges = [
        _edge(users[i], users[j], rng.randint(30, 100))
        for i in range(len(users))
        for j in range(i + 1, len(users))
        if rng.random() < 0.5
    ]
    matches = run_blossom_with_fallback(edges, users, quota=3)
    assert all(count <= 3 for count in _counts(matches).values())
    keys = [(m.user_a, m.user_b) for m in matches]
    assert len(keys) == len(set(keys))
    assert all(a < b for a, b in keys)
    primary = [m for m in matches if m.source == SOURCE_BLOSSOM]
    assert all(count == 1 for count in _counts(primary).values())


def test_build_edges_drops_filtered_and_below_threshold_pairs():
    pairs = [
        _pair("b", "a", 80.0),
        _pair("a", "c", -1.0, hard_filtered=True),
        _pair("b", "c", 20.0, meets_threshold=False),
        _pair("c", "d", 55.5),
    ]
    edges = build_edges(pairs)
    assert edges == [MatchEdge("a", "b", 80000), MatchEdge("c", "d", 55500)]


def test_equal_weight_ties_resolve_the_same_way_every_time():
    square = [_edge("a", "b", 50), _edge("c", "d", 50), _edge("a", "d", 50), _edge("b", "c", 50)]
    for _ in range(5):
        matches = max_weight_matching(square, ["a", "b", "c", "d"])
        assert [(m.user_a, m.user_b) for m in matches] == [("a", "d"), ("b", "c")]


def test_build_edges_applies_relative_threshold():
    pairs = [_pair("a", "b", 90.0), _pair("a", "c", 40.0), _pair("c", "d", 70.0)]
    # best(a) is 90, so a-c at 40 is under 0.6 x 90
    assert [(e.user_a, e.user_b) for e in build_edges(pairs, relative_beta=0.6)] == [("a", "b"), ("c", "d")]
    assert len(build_edges(pairs)) == 3


def test_relative_threshold_checks_each_direction():
    pairs = [_pair("a", "b", 80.0), _pair("a", "c", 60.0, a_to_b=70.0, b_to_a=50.0), _pair("c", "d", 90.0)]
    # c's side of a-c is 50, under 0.6 x best(c) = 54
    assert [(e.user_a, e.user_b) for e in build_edges(pairs, relative_beta=0.6)] == [("a", "b"), ("c", "d")]


def test_relative_threshold_ignores_hard_filtered_pairs_for_best_scores():
    pairs = [_pair("a", "b", 95.0, hard_filtered=True), _pair("a", "c", 50.0)]
    assert [(e.user_a, e.user_b) for e in build_edges(pairs, relative_beta=0.6)] == [("a", "c")]


def test_unmatched_report_names_best_partner_taken():
    matches = run_blossom_with_fallback(TRIANGLE, ["a", "b", "c"], quota=1)
    (entry,) = unmatched_report(TRIANGLE, ["a", "b", "c"], matches)
    assert entry.user_id == "c"
    assert entry.reason == "best_match_paired_elsewhere"
    assert entry.best_possible_score == 85.0
    assert entry.best_possible_match_id == "b"


def test_unmatched_report_without_edges_and_odd_one_out():
    report = unmatched_report([_edge("a", "b", 60)], ["a", "b", "z"], [])
    assert [(u.user_id, u.reason) for u in report] == [
        ("a", "odd_number_of_users"),
        ("b", "odd_number_of_users"),
        ("z", "no_eligible_pairs"),
    ]
    assert report[2].best_possible_score is None


def test_validate_matching_accepts_matcher_output():
    matches = run_blossom_with_fallback(TRIANGLE, ["a", "b", "c"], quota=3)
    assert validate_matching(matches, quota=3) == []


def test_validate_matching_reports_broken_sets():
    matches = [
        Match("a", "b", 80.0),
        Match("b", "a", 80.0, SOURCE_FALLBACK),
        Match("a", "c", 70.0),
        Match("d", "d", 50.0, SOURCE_FALLBACK),
        Match("e", "f", 120.0),
    ]
    errors = validate_matching(matches, quota=1)
    assert "pair a-b appears more than once" in errors
    assert "user a appears in more than one primary match" in errors
    assert "user d is matched with themselves" in errors
    assert "invalid score 120.0 for e-f" in errors
    assert "user a exceeds quota 1 with 3 matches" in errors
