"""Maximum-weight matching over the compatibility graph.

The primary pass is Edmonds' blossom algorithm (networkx) on a general graph,
so every user takes part in at most one primary pair. A fallback pass then
tops users up to the per-user quota from their remaining edges.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

import networkx as nx

from matchcore.services.aggregation import PairScore, best_pair_scores, canonical_pair, passes_relative_threshold

logger = logging.getLogger(__name__)

WEIGHT_SCALE = 1000
SOURCE_BLOSSOM = "blossom"
SOURCE_FALLBACK = "fallback"

REASON_NO_ELIGIBLE_PAIRS = "no_eligible_pairs"
REASON_BEST_MATCH_TAKEN = "best_match_paired_elsewhere"
REASON_ODD_ONE_OUT = "odd_number_of_users"


@dataclass(frozen=True)
class MatchEdge:
    user_a: str
    user_b: str
    weight: int


@dataclass(frozen=True)
class Match:
    user_a: str
    user_b: str
    score: float
    source: str = SOURCE_BLOSSOM

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user_a, self.user_b)


def to_weight(score: float) -> int:
    return int(round(score * WEIGHT_SCALE))


def from_weight(weight: int) -> float:
    return weight / WEIGHT_SCALE


def build_edges(pair_scores: Iterable[PairScore], relative_beta: float = 0.0) -> list[MatchEdge]:
    """Edges for every pair that survived hard filters and both thresholds, in canonical order."""
    pair_scores = list(pair_scores)
    best = best_pair_scores(pair_scores)
    edges: dict[tuple[str, str], MatchEdge] = {}
    for p in pair_scores:
        if p.hard_filtered or not p.meets_threshold:
            continue
        if not passes_relative_threshold(p, best, relative_beta):
            continue
        a, b = canonical_pair(p.user_a, p.user_b)
        if a == b:
            continue
        edges[(a, b)] = MatchEdge(a, b, to_weight(p.bidirectional_score))
    return [edges[k] for k in sorted(edges)]


def _sorted_edges(edges: Iterable[MatchEdge]) -> list[MatchEdge]:
    out: dict[tuple[str, str], MatchEdge] = {}
    for e in edges:
        a, b = canonical_pair(e.user_a, e.user_b)
        if a == b:
            continue
        out[(a, b)] = MatchEdge(a, b, int(e.weight))
    return [out[k] for k in sorted(out)]


def max_weight_matching(edges: Iterable[MatchEdge], user_ids: Iterable[str]) -> list[Match]:
    """Disjoint pairs maximizing total weight.

    Vertices and edges are inserted in sorted order. Among matchings of equal
    total weight, networkx then resolves the choice by that insertion order, so
    the same input always yields the same pairs.
    """
    ordered = _sorted_edges(edges)
    if not ordered:
        return []

    graph = nx.Graph()
    graph.add_nodes_from(sorted(set(user_ids) | {e.user_a for e in ordered} | {e.user_b for e in ordered}))
    for e in ordered:
        graph.add_edge(e.user_a, e.user_b, weight=e.weight)

    matched = nx.max_weight_matching(graph, maxcardinality=False, weight="weight")

    out: list[Match] = []
    for u, v in matched:
        a, b = canonical_pair(u, v)
        out.append(Match(a, b, from_weight(graph[a][b]["weight"]), SOURCE_BLOSSOM))
    out.sort(key=lambda m: (m.user_a, m.user_b))
    return out


def fill_quota(
    primary: list[Match],
    edges: Iterable[MatchEdge],
    user_ids: Iterable[str],
    quota: int,
) -> list[Match]:
    """Greedy top-up after the primary pass.

    Users below ``quota`` walk their unused edges by descending weight (ties by
    counterpart id) and take each one whose counterpart still has capacity.
    """
    counts: dict[str, int] = defaultdict(int)
    used: set[tuple[str, str]] = set()
    for m in primary:
        counts[m.user_a] += 1
        counts[m.user_b] += 1
        used.add(canonical_pair(m.user_a, m.user_b))

    by_user: dict[str, list[tuple[int, str]]] = defaultdict(list)
    for e in _sorted_edges(edges):
        by_user[e.user_a].append((e.weight, e.user_b))
        by_user[e.user_b].append((e.weight, e.user_a))

    extra: list[Match] = []
    for user_id in sorted(set(user_ids)):
        if counts[user_id] >= quota:
            continue
        for weight, other in sorted(by_user.get(user_id, []), key=lambda t: (-t[0], t[1])):
            if counts[user_id] >= quota:
                break
            key = canonical_pair(user_id, other)
            if key in used or counts[other] >= quota:
                continue
            used.add(key)
            counts[user_id] += 1
            counts[other] += 1
            extra.append(Match(key[0], key[1], from_weight(weight), SOURCE_FALLBACK))
    return extra


def run_blossom_with_fallback(edges: list[MatchEdge], user_ids: Iterable[str], quota: int) -> list[Match]:
    if quota < 1:
        raise ValueError("quota must be at least 1")
    users = sorted(set(user_ids))
    if not edges:
        logger.info("[BLOSSOM] no edges for %s users; returning no matches", len(users))
        return []

    primary = max_weight_matching(edges, users)
    extra = fill_quota(primary, edges, users, quota)
    logger.info(
        "[BLOSSOM] users=%s edges=%s primary=%s fallback=%s",
        len(users),
        len(edges),
        len(primary),
        len(extra),
    )
    return primary + extra


@dataclass(frozen=True)
class UnmatchedUser:
    user_id: str
    reason: str
    best_possible_score: float | None = None
    best_possible_match_id: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "reason": self.reason,
            "best_possible_score": self.best_possible_score,
            "best_possible_match_id": self.best_possible_match_id,
        }


def unmatched_report(edges: Iterable[MatchEdge], user_ids: Iterable[str], matches: list[Match]) -> list[UnmatchedUser]:
    """Why each user without a match ended up alone, with their best available edge."""
    matched = {m.user_a for m in matches} | {m.user_b for m in matches}
    best: dict[str, tuple[int, str]] = {}
    for e in _sorted_edges(edges):
        for user_id, other in ((e.user_a, e.user_b), (e.user_b, e.user_a)):
            current = best.get(user_id)
            if current is None or e.weight > current[0] or (e.weight == current[0] and other < current[1]):
                best[user_id] = (e.weight, other)

    out: list[UnmatchedUser] = []
    for user_id in sorted(set(user_ids)):
        if user_id in matched:
            continue
        if user_id not in best:
            out.append(UnmatchedUser(user_id, REASON_NO_ELIGIBLE_PAIRS))
            continue
        weight, other = best[user_id]
        reason = REASON_BEST_MATCH_TAKEN if other in matched else REASON_ODD_ONE_OUT
        out.append(UnmatchedUser(user_id, reason, from_weight(weight), other))
    return out


def validate_matching(matches: list[Match], quota: int) -> list[str]:
    """Structural checks on a match set; an empty list means it is valid."""
    errors: list[str] = []
    seen: set[tuple[str, str]] = set()
    primary_users: set[str] = set()
    counts: dict[str, int] = defaultdict(int)
    for m in matches:
        if m.user_a == m.user_b:
            errors.append(f"user {m.user_a} is matched with themselves")
        key = canonical_pair(m.user_a, m.user_b)
        if key in seen:
            errors.append(f"pair {key[0]}-{key[1]} appears more than once")
        seen.add(key)
        if not 0.0 <= m.score <= 100.0:
            errors.append(f"invalid score {m.score} for {key[0]}-{key[1]}")
        if m.source == SOURCE_BLOSSOM:
            for user_id in (m.user_a, m.user_b):
                if user_id in primary_users:
                    errors.append(f"user {user_id} appears in more than one primary match")
                primary_users.add(user_id)
        counts[m.user_a] += 1
        counts[m.user_b] += 1
    for user_id in sorted(u for u, c in counts.items() if c > quota):
        errors.append(f"user {user_id} exceeds quota {quota} with {counts[user_id]} matches")
    return errors
